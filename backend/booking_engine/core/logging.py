"""
structlog setup for the booking engine.

Every record carries the service name and environment. Request and
scheduler code bind their own keys (request_id, job) through
structlog.contextvars. Output is one JSON object per line when LOG_JSON
is set, or by default in production; otherwise a coloured console line.
"""

import logging
import sys
from typing import Optional

import structlog

from booking_engine.core.config import get_settings

# Marks the handler this module installs so a restart replaces it
HANDLER_NAME = "booking_engine"

QUIET_LOGGERS = {
    "uvicorn.access": logging.WARNING,
    "sqlalchemy.engine": logging.WARNING,
    "aiosqlite": logging.WARNING,
    "asyncio": logging.WARNING,
}


def add_service_context(logger, method_name, event_dict):
    settings = get_settings()
    event_dict.setdefault("service", settings.APP_NAME)
    event_dict.setdefault("env", settings.ENVIRONMENT)
    return event_dict


def _wants_json(json_output: Optional[bool]) -> bool:
    if json_output is not None:
        return json_output
    settings = get_settings()
    if settings.LOG_JSON is not None:
        return settings.LOG_JSON
    return settings.ENVIRONMENT == "production"


def _pre_chain(json_output: bool) -> list:
    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        add_service_context,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]
    if json_output:
        # The console renderer prints tracebacks itself
        processors.append(structlog.processors.format_exc_info)
    return processors


def _renderer(json_output: bool):
    if json_output:
        return structlog.processors.JSONRenderer(sort_keys=True)
    return structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())


def _install_handler(formatter: logging.Formatter, level: int) -> logging.Handler:
    handler = logging.StreamHandler(sys.stdout)
    handler.set_name(HANDLER_NAME)
    handler.setFormatter(formatter)

    root = logging.getLogger()
    for existing in [h for h in root.handlers if h.get_name() == HANDLER_NAME]:
        root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(level)
    return handler


def setup_logging(level: Optional[str] = None, json_output: Optional[bool] = None) -> logging.Handler:
    """
    Route structlog and stdlib logging through one stdout handler.

    Safe to call more than once (the app lifespan runs per test client);
    the previous handler is replaced, not stacked.
    """
    settings = get_settings()
    as_json = _wants_json(json_output)
    pre_chain = _pre_chain(as_json)

    structlog.configure(
        processors=[*pre_chain, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    # foreign_pre_chain gives plain stdlib records (uvicorn, sqlalchemy) the same keys
    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=pre_chain,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            _renderer(as_json),
        ],
    )

    level_name = (level or settings.LOG_LEVEL).upper()
    handler = _install_handler(formatter, getattr(logging, level_name, logging.INFO))

    for name, quiet_level in QUIET_LOGGERS.items():
        logging.getLogger(name).setLevel(quiet_level)
    return handler


def get_logger(name: str = __name__) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)
