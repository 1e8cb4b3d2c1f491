"""Structured logging for the reporting service.

``structlog`` renders events as JSON and ``loguru`` owns the single stdout
sink. Records emitted through the standard :mod:`logging` module (uvicorn,
SQLAlchemy) are forwarded to the same sink so every line carries the service
name and the current request identifier.
"""

from __future__ import annotations

import logging
import sys
import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from types import FrameType
from typing import Any, Iterator, Mapping

import structlog
from loguru import logger as loguru_logger

__all__ = [
    "configure_logging",
    "generate_request_id",
    "get_logger",
    "get_request_id",
    "request_context",
]

_REQUEST_ID: ContextVar[str | None] = ContextVar("request_id", default=None)
_CONFIGURED = False
_SERVICE_NAME: str | None = None

# Request lines are written by RequestContextMiddleware.
_QUIET_LOGGERS = ("uvicorn.access",)


def _format_record(record: Mapping[str, Any]) -> str:
    extra = record.get("extra") or {}
    service = extra.get("service", "-")
    request_id = extra.get("request_id", "-")
    source = extra.get("logger") or record.get("name") or "-"
    # JSON payloads contain braces; loguru re-applies str.format to the result.
    message = str(record.get("message", "")).replace("{", "{{").replace("}", "}}")
    return (
        f"{record['time'].isoformat()} | {record['level'].name:<8} | "
        f"{service} | {request_id} | {source} | {message}\n"
    )


def _resolve_level(level: str | int) -> tuple[int, str]:
    if isinstance(level, int):
        return level, logging.getLevelName(level)
    numeric = logging.getLevelName(level.upper())
    if not isinstance(numeric, int):
        raise ValueError(f"Unknown log level: {level}")
    return numeric, level.upper()


class _StdlibToLoguru(logging.Handler):
    """Forward standard library log records to the loguru sink."""

    def emit(self, record: logging.LogRecord) -> None:  # pragma: no cover - thin wrapper
        try:
            level: str | int = loguru_logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        frame: FrameType | None = logging.currentframe()
        depth = 2
        while frame and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        bound = loguru_logger.bind(logger=record.name)
        request_id = get_request_id()
        if request_id:
            bound = bound.bind(request_id=request_id)
        bound.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())


def configure_logging(
    *, service_name: str | None = None, level: str | int = "INFO"
) -> None:
    """Install the loguru sink and structlog processors once per process.

    Calling it again only updates the bound ``service_name``.
    """

    global _CONFIGURED, _SERVICE_NAME

    numeric_level, level_name = _resolve_level(level)

    if not _CONFIGURED:
        loguru_logger.remove()
        loguru_logger.add(
            sys.stdout,
            level=level_name,
            enqueue=True,
            backtrace=False,
            diagnose=False,
            format=_format_record,
        )
        logging.basicConfig(
            handlers=[_StdlibToLoguru()], level=numeric_level, force=True
        )
        logging.captureWarnings(True)
        for name in _QUIET_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)

        structlog.configure(
            processors=[
                structlog.contextvars.merge_contextvars,
                structlog.processors.add_log_level,
                structlog.processors.TimeStamper(fmt="iso"),
                structlog.processors.StackInfoRenderer(),
                structlog.processors.format_exc_info,
                structlog.processors.JSONRenderer(),
            ],
            context_class=dict,
            logger_factory=structlog.stdlib.LoggerFactory(),
            wrapper_class=structlog.stdlib.BoundLogger,
            cache_logger_on_first_use=True,
        )
        _CONFIGURED = True

    if service_name:
        _SERVICE_NAME = service_name
        loguru_logger.configure(extra={"service": service_name})
        structlog.contextvars.bind_contextvars(service=service_name)


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Return a structlog logger, optionally named after a module."""

    return structlog.get_logger(name) if name else structlog.get_logger()


def get_request_id() -> str | None:
    """Return the request identifier bound to the current context, if any."""

    return _REQUEST_ID.get()


def generate_request_id() -> str:
    return uuid.uuid4().hex


@contextmanager
def request_context(request_id: str | None = None, **extra: Any) -> Iterator[str]:
    """Bind ``request_id`` (and ``extra``) to every log line inside the block.

    Values that were bound before entering are restored on exit.
    """

    extra.pop("request_id", None)
    rid = request_id or generate_request_id()
    token = _REQUEST_ID.set(rid)

    values: dict[str, Any] = {"request_id": rid, **extra}
    if _SERVICE_NAME and "service" not in values:
        values["service"] = _SERVICE_NAME

    previous = structlog.contextvars.get_contextvars()
    structlog.contextvars.bind_contextvars(**values)
    try:
        with loguru_logger.contextualize(**values):
            yield rid
    finally:
        structlog.contextvars.unbind_contextvars(*values)
        restore = {key: previous[key] for key in values if key in previous}
        if restore:
            structlog.contextvars.bind_contextvars(**restore)
        _REQUEST_ID.reset(token)
