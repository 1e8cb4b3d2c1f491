"""Audit trail helpers for operator actions on data sources and cycles."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Protocol

from .logger import get_logger, get_request_id

__all__ = [
    "AuditEntry",
    "AuditRepository",
    "LoggingAuditRepository",
    "record_audit",
]


@dataclass(slots=True)
class AuditEntry:
    """One row of the ``audit_log`` table."""

    action_type: str
    table_name: str
    user_name: str
    details: dict[str, Any] = field(default_factory=dict)
    request_id: str | None = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict[str, Any]:
        return {
            "action_type": self.action_type,
            "table_name": self.table_name,
            "user_name": self.user_name,
            "details": dict(self.details),
            "request_id": self.request_id,
            "created_at": self.created_at.isoformat(),
        }


class AuditRepository(Protocol):
    """Storage backend for :class:`AuditEntry` records."""

    async def persist(self, entry: AuditEntry) -> None:  # pragma: no cover - interface definition
        ...


class LoggingAuditRepository:
    """Write audit entries to the structured log only."""

    def __init__(self) -> None:
        self._logger = get_logger("audit")

    async def persist(self, entry: AuditEntry) -> None:
        self._logger.info("audit_event", **entry.to_dict())


async def record_audit(
    action_type: str,
    *,
    table_name: str,
    user_name: str,
    details: dict[str, Any] | None = None,
    repository: AuditRepository | None = None,
) -> AuditEntry:
    """Build an :class:`AuditEntry` for the current request and persist it."""

    entry = AuditEntry(
        action_type=action_type,
        table_name=table_name,
        user_name=user_name,
        details=dict(details or {}),
        request_id=get_request_id(),
    )
    await (repository or LoggingAuditRepository()).persist(entry)
    return entry
