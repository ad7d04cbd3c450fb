#!/usr/bin/env python
# -*- encoding: utf-8 -*-
import logging
import logging.config
import os
import string
import sys
import threading
from datetime import datetime
from io import StringIO
from typing import Dict, Union

import colorama
import structlog
from structlog._frames import _find_first_app_frame_and_name

from pgoperator.exception import UsageError

# Third party loggers which are too chatty at DEBUG
_QUIET_LOGGERS = {
    'urllib3': 'WARNING',
    'pykube': 'WARNING',
}


def _sl_processor_add_source_context(_, __, event_dict: Dict) -> Dict:
    frame, name = _find_first_app_frame_and_name([__name__, 'logging'])
    event_dict['file'] = frame.f_code.co_filename
    event_dict['line'] = frame.f_lineno
    event_dict['function'] = frame.f_code.co_name
    return event_dict


def _sl_processor_add_thread_context(_, __, event_dict: Dict) -> Dict:
    event_dict['process'] = os.getpid()
    event_dict['thread_name'] = threading.current_thread().name
    return event_dict


def _sl_processor_add_object_context(_, __, event_dict: Dict) -> Dict:
    """Replaces the k8s_ref attached by kopf's per-object loggers with namespace/name of the object."""
    reference = event_dict.pop('k8s_ref', None)
    event_dict.pop('k8s_skip', None)
    if reference:
        name = reference.get('name', '')
        namespace = reference.get('namespace')
        event_dict['object'] = f'{namespace}/{name}' if namespace else name
        if reference.get('kind'):
            event_dict['object_kind'] = reference['kind']
    return event_dict


_sl_processor_timestamper = structlog.processors.TimeStamper(utc=True)

_sl_foreign_pre_chain = [
    structlog.stdlib.add_log_level,
    structlog.stdlib.ExtraAdder(allow=['k8s_ref', 'k8s_skip']),
    _sl_processor_timestamper,
    _sl_processor_add_source_context,
    _sl_processor_add_thread_context,
    _sl_processor_add_object_context,
]

_sl_processors = [
    structlog.stdlib.add_log_level,
    structlog.stdlib.PositionalArgumentsFormatter(),
    _sl_processor_timestamper,
    _sl_processor_add_source_context,
    _sl_processor_add_thread_context,
    _sl_processor_add_object_context,
    structlog.processors.StackInfoRenderer(),
    structlog.processors.format_exc_info,
    structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
]


class _FormatRenderer:
    """Renders an event dict with a str.format style template.

    Besides the keys of the event the template can use log_color, log_color_reset, level_uc,
    timestamp_local_ctime and object_prefix, which is "<namespace>/<name>: " for events about a Kubernetes object.
    """

    _LEVEL_COLORS = {
        'critical': colorama.Fore.RED,
        'exception': colorama.Fore.RED,
        'error': colorama.Fore.RED,
        'warn': colorama.Fore.YELLOW,
        'warning': colorama.Fore.YELLOW,
        'info': colorama.Fore.GREEN,
        'debug': colorama.Fore.WHITE,
        'notset': colorama.Back.RED,
    }

    def __init__(self, fmt: str, colors: bool = True) -> None:
        if colors:
            colorama.init()
            self._level_to_color = self._LEVEL_COLORS
            self._reset = colorama.Style.RESET_ALL
        else:
            self._level_to_color = {}
            self._reset = ''

        self._vformat = string.Formatter().vformat
        self._fmt = fmt

    def __call__(self, _, __, event_dict: Dict) -> str:
        level = event_dict.get('level', '')
        event_dict['log_color'] = self._level_to_color.get(level, '')
        event_dict['log_color_reset'] = self._reset
        event_dict['level_uc'] = level.upper()
        event_dict['object_prefix'] = '{}: '.format(event_dict['object']) if event_dict.get('object') else ''
        if 'timestamp' in event_dict:
            event_dict['timestamp_local_ctime'] = datetime.fromtimestamp(event_dict['timestamp']).ctime()

        message = StringIO()
        message.write(self._vformat(self._fmt, [], event_dict))
        for key in ('stack', 'exception'):
            value = event_dict.pop(key, None)
            if value is not None:
                message.write('\n' + value)
        message.write(self._reset)

        return message.getvalue()


def _processor_formatter(processor) -> Dict:
    return {
        '()': structlog.stdlib.ProcessorFormatter,
        'processor': processor,
        'foreign_pre_chain': _sl_foreign_pre_chain,
    }


_CONSOLE_FORMAT = '{log_color}{level_uc:>8s}: {object_prefix}{event:s}'
_LEGACY_FORMAT = ('{timestamp_local_ctime} {process:d}/{thread_name:s} {file:s}:{line:d} {level_uc:s} '
                  '{object_prefix}{event:s}')


def init_logging(*, console_level: Union[str, int] = 'INFO', console_formatter: str = 'json') -> None:
    """Sends all log records to stderr rendered with console_formatter."""
    formatters = {
        'console-plain': _processor_formatter(_FormatRenderer(colors=False, fmt=_CONSOLE_FORMAT)),
        'console-colored': _processor_formatter(_FormatRenderer(colors=True, fmt=_CONSOLE_FORMAT)),
        'legacy': _processor_formatter(_FormatRenderer(colors=False, fmt=_LEGACY_FORMAT)),
        'json': _processor_formatter(structlog.processors.JSONRenderer()),
    }

    if console_formatter not in formatters:
        raise UsageError('Event formatter {} is unknown.'.format(console_formatter))

    logging_config: Dict = {
        'version': 1,
        'disable_existing_loggers': False,
        'formatters': formatters,
        'handlers': {
            'console': {
                'level': console_level,
                'class': 'logging.StreamHandler',
                'formatter': console_formatter,
                'stream': 'ext://sys.stderr',
            },
        },
        'loggers': {name: {'level': level} for name, level in _QUIET_LOGGERS.items()},
        'root': {
            'handlers': ['console'],
            'level': 'DEBUG',
        },
    }

    logging.config.dictConfig(logging_config)


# Source: https://stackoverflow.com/questions/6234405/logging-uncaught-exceptions-in-python/16993115#16993115
def _handle_exception(exc_type, exc_value, exc_traceback):
    if issubclass(exc_type, KeyboardInterrupt):
        sys.__excepthook__(exc_type, exc_value, exc_traceback)
        return

    structlog.get_logger().error("Uncaught exception", exc_info=(exc_type, exc_value, exc_traceback))


sys.excepthook = _handle_exception

structlog.configure(
    processors=_sl_processors,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    wrapper_class=structlog.stdlib.BoundLogger,
    cache_logger_on_first_use=True,
)

init_logging()

logger = structlog.get_logger()
