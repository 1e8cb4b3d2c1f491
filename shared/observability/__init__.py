"""Observability utilities for the reporting service."""

from .audit import AuditEntry, AuditRepository, LoggingAuditRepository, record_audit
from .logger import (
    configure_logging,
    generate_request_id,
    get_logger,
    get_request_id,
    request_context,
)
from .middleware import RequestContextMiddleware

__all__ = [
    "AuditEntry",
    "AuditRepository",
    "LoggingAuditRepository",
    "RequestContextMiddleware",
    "configure_logging",
    "generate_request_id",
    "get_logger",
    "get_request_id",
    "record_audit",
    "request_context",
]
