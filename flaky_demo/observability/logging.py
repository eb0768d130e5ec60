from __future__ import annotations

import logging
import sys
from typing import Any

import structlog


_CONFIGURED = False

# uvicorn.access is silenced: the pipeline emits its own http_request event.
_SERVER_LOGGERS = ("uvicorn", "uvicorn.error")


def resolve_level(level: int | str) -> int:
    if isinstance(level, int):
        return level
    resolved = logging.getLevelName(level.strip().upper())
    return resolved if isinstance(resolved, int) else logging.INFO


def _event_processors() -> list[Any]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.format_exc_info,
    ]


def _console_handler() -> logging.Handler:
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processor=structlog.processors.JSONRenderer(),
            foreign_pre_chain=_event_processors(),
        )
    )
    return handler


def configure_logging(level: int | str = logging.INFO) -> None:
    """Console echo of request events as JSON lines on stdout.

    The durable request log is written by ``LogSink``; this only covers what an
    operator watching the process sees. Only the first call has any effect.
    """

    global _CONFIGURED
    if _CONFIGURED:
        return

    numeric_level = resolve_level(level)
    structlog.configure(
        processors=[*_event_processors(), structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = _console_handler()
    logging.basicConfig(handlers=[handler], level=numeric_level, force=True)
    for name in _SERVER_LOGGERS:
        server_logger = logging.getLogger(name)
        server_logger.handlers = [handler]
        server_logger.propagate = False
        server_logger.setLevel(numeric_level)
    logging.getLogger("uvicorn.access").disabled = True

    _CONFIGURED = True
