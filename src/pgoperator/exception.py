#!/usr/bin/env python
# -*- encoding: utf-8 -*-


class PgOperatorException(Exception):
    pass


class UsageError(PgOperatorException, RuntimeError):
    pass


class InternalError(PgOperatorException, RuntimeError):
    pass


class ConfigurationError(PgOperatorException, RuntimeError):
    pass


class NamingCollisionError(PgOperatorException, RuntimeError):
    pass


class ReadinessTimeoutError(PgOperatorException, TimeoutError):
    pass


class ReconciliationCancelled(PgOperatorException, RuntimeError):
    pass
