#!/usr/bin/env python
# -*- encoding: utf-8 -*-

import argparse
import os
import sys
import threading
from typing import NamedTuple, Type


class _ExceptionMapping(NamedTuple):
    exception: Type[BaseException]
    exit_code: int
    include_stacktrace: bool


def main():
    parser = argparse.ArgumentParser(formatter_class=argparse.ArgumentDefaultsHelpFormatter, allow_abbrev=False)

    parser.add_argument('-c', '--config-file', default=None, type=str, help='Specify a non-default configuration file')
    parser.add_argument('--log-level',
                        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
                        default=None,
                        help='Only log messages of this level or above on the console (overrides the configuration)')
    parser.add_argument('--no-color',
                        action='store_true',
                        default=False,
                        help='Disable colorization of console logging')
    parser.add_argument('-n',
                        '--namespace',
                        action='append',
                        dest='namespaces',
                        metavar='namespace',
                        default=None,
                        help='Only watch Postgres resources in this namespace (can be repeated)')

    args = parser.parse_args()

    import pgoperator.exception
    from pgoperator.config import Config
    from pgoperator.k8s_operator.settings import operator_log_level
    from pgoperator.logging import logger, init_logging
    if args.config_file is not None and args.config_file != '':
        try:
            cfg = open(args.config_file, 'r', encoding='utf-8').read()
        except FileNotFoundError:
            logger.error('File {} not found.'.format(args.config_file))
            sys.exit(os.EX_USAGE)
        config = Config(ad_hoc_config=cfg)
    else:
        config = Config()

    console_formatter = config.get('logFormatter', 'json', types=str)
    if args.no_color and console_formatter == 'console-colored':
        console_formatter = 'console-plain'
    console_level = args.log_level or operator_log_level or config.get('logLevel', 'INFO', types=str)

    init_logging(console_level=console_level, console_formatter=console_formatter)

    # yapf: disable
    exception_mappings = [
        _ExceptionMapping(exception=pgoperator.exception.UsageError, exit_code=os.EX_USAGE, include_stacktrace=False),
        _ExceptionMapping(exception=pgoperator.exception.InternalError, exit_code=os.EX_SOFTWARE, include_stacktrace=True),
        _ExceptionMapping(exception=pgoperator.exception.ConfigurationError, exit_code=os.EX_CONFIG, include_stacktrace=False),
        _ExceptionMapping(exception=PermissionError, exit_code=os.EX_NOPERM, include_stacktrace=False),
        _ExceptionMapping(exception=FileNotFoundError, exit_code=os.EX_NOINPUT, include_stacktrace=False),
        _ExceptionMapping(exception=ConnectionError, exit_code=os.EX_IOERR, include_stacktrace=True),
        _ExceptionMapping(exception=KeyboardInterrupt, exit_code=os.EX_NOINPUT, include_stacktrace=False),
        _ExceptionMapping(exception=BaseException, exit_code=os.EX_SOFTWARE, include_stacktrace=True),
    ]
    # yapf: enable

    try:
        import kopf

        from pgoperator.k8s_operator import OperatorContext
        # Registers the handlers with kopf
        import pgoperator.k8s_operator.crd.postgres

        context = OperatorContext.from_env(config)
        memo = kopf.Memo(context=context, cancel=threading.Event())
        logger.info('Starting operator.')
        kopf.run(clusterwide=not args.namespaces, namespaces=args.namespaces or [], memo=memo)
        sys.exit(os.EX_OK)
    except SystemExit:
        raise
    except BaseException as exception:
        for case in exception_mappings:
            if isinstance(exception, case.exception):
                message = str(exception)
                if message:
                    message = '{}: {}'.format(exception.__class__.__name__, message)
                else:
                    message = '{} exception occurred.'.format(exception.__class__.__name__)
                if case.include_stacktrace:
                    logger.error(message, exc_info=True)
                else:
                    logger.debug(message, exc_info=True)
                    logger.error(message)
                sys.exit(case.exit_code)


if __name__ == '__main__':
    main()
