"""
Structured logging configuration using structlog.
JSON lines in production, console output when DEBUG is on.

Import and sync jobs bind their identifiers into the contextvars so every
event emitted while a job runs carries job_id / empresa_id / canal.
"""

import logging
import sys
from decimal import Decimal
from typing import Optional

import structlog

from ecom_finance.config import settings


def _stringify_decimals(_logger, _method_name, event_dict: dict) -> dict:
    """Money travels as Decimal; JSONRenderer cannot serialise it."""
    for key, value in event_dict.items():
        if isinstance(value, Decimal):
            event_dict[key] = str(value)
    return event_dict


def _renderer(debug: bool):
    if debug:
        return structlog.dev.ConsoleRenderer()
    return structlog.processors.JSONRenderer(ensure_ascii=False)


def setup_logging(level: Optional[str] = None, debug: Optional[bool] = None) -> None:
    """Configure structlog and route stdlib logging through it."""
    debug = settings.DEBUG if debug is None else debug
    level_name = (level or settings.LOG_LEVEL).upper()

    shared_processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        _stringify_decimals,
    ]

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            _renderer(debug),
        ],
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, level_name, logging.INFO))

    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("aiohttp.access").setLevel(logging.WARNING)
    logging.getLogger("rq.worker").setLevel(logging.INFO)
    logging.getLogger("sqlalchemy.engine").setLevel(
        logging.INFO if settings.DB_ECHO else logging.WARNING
    )


def bind_job_context(**context) -> None:
    """Attach job identifiers to every log event in the current context."""
    structlog.contextvars.bind_contextvars(
        **{k: str(v) for k, v in context.items() if v is not None}
    )


def clear_job_context() -> None:
    structlog.contextvars.clear_contextvars()
