"""
Structured logging using structlog.

Configures structlog on top of the standard library ``logging`` module so that
routekit's own loggers and the host application's loggers share handlers,
levels and output format.

Key Features:
- JSON output for log aggregation, console output for local development
- ISO timestamps, log level and logger name on every event
- Request-scoped context (request id, ip, method, path) merged from
  ``structlog.contextvars`` into every event emitted while handling a request
- Exception rendering through ``format_exc_info``
"""

import logging
import logging.config
import sys
from typing import Any, Optional

import structlog
from flask import Flask

DEFAULT_LOG_LEVEL = 'INFO'
DEFAULT_LOG_FORMAT = 'json'


def _build_processors(log_format: str, colors: bool = False) -> list:
    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="ISO"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    if log_format == 'console':
        processors.append(structlog.dev.ConsoleRenderer(colors=colors))
    else:
        processors.append(structlog.processors.JSONRenderer())

    return processors


def setup_structured_logging(app: Optional[Flask] = None) -> structlog.stdlib.BoundLogger:
    """
    Configure structlog and the standard library root logger.

    Reads ``LOG_LEVEL``, ``LOG_FORMAT`` and ``LOG_COLORS`` from the Flask
    config when an application is given.

    Args:
        app: Optional Flask application supplying configuration

    Returns:
        Logger bound to the application name
    """
    config = app.config if app is not None else {}
    log_level = str(config.get('LOG_LEVEL', DEFAULT_LOG_LEVEL)).upper()
    log_format = str(config.get('LOG_FORMAT', DEFAULT_LOG_FORMAT)).lower()
    colors = bool(config.get('LOG_COLORS', False))

    structlog.configure(
        processors=_build_processors(log_format, colors=colors),
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        context_class=dict,
        cache_logger_on_first_use=True,
    )

    logging.config.dictConfig({
        'version': 1,
        'disable_existing_loggers': False,
        'formatters': {
            'plain': {'format': '%(message)s'},
        },
        'handlers': {
            'console': {
                'class': 'logging.StreamHandler',
                'formatter': 'plain',
                'stream': 'ext://sys.stdout',
            },
        },
        'root': {
            'handlers': ['console'],
            'level': log_level,
        },
    })

    name = app.name if app is not None else 'routekit'
    logger = structlog.get_logger(name)
    logger.info(
        "Structured logging initialized",
        log_level=log_level,
        log_format=log_format,
        python_version=sys.version.split()[0]
    )
    return logger


def get_logger(name: Optional[str] = None, **initial_values: Any) -> structlog.stdlib.BoundLogger:
    """Return a structlog logger, optionally bound to initial values."""
    logger = structlog.get_logger(name)
    if initial_values:
        logger = logger.bind(**initial_values)
    return logger


def bind_request_context(**values: Any) -> None:
    """Bind values to every log event emitted while handling this request."""
    structlog.contextvars.bind_contextvars(
        **{key: value for key, value in values.items() if value is not None}
    )


def clear_request_context() -> None:
    structlog.contextvars.clear_contextvars()
