"""Async PostgreSQL access for the reporting service.

:class:`ReportingDatabase` is an explicitly constructed handle around a
SQLAlchemy :class:`AsyncEngine`. The application creates one on startup,
passes it to the repositories that need it, and disposes of it on shutdown.
"""

from __future__ import annotations

import json
import re
import time
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Mapping, Sequence

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine, create_async_engine

from shared.observability.logger import get_logger

__all__ = [
    "BatchInsertError",
    "DatabaseError",
    "InvalidIdentifierError",
    "ReportingDatabase",
    "quote_identifier",
    "render_procedure_call",
    "validate_identifier",
]

logger = get_logger(__name__)

_IDENTIFIER = re.compile(r"^[A-Za-z0-9_]+$")
_PREVIEW_LENGTH = 100

Row = dict[str, Any]


class DatabaseError(RuntimeError):
    """Raised when a statement or stored procedure fails."""

    def __init__(self, message: str, *, original: Exception | None = None) -> None:
        super().__init__(message)
        self.original = original


class BatchInsertError(DatabaseError):
    """Raised when one batch of a bulk insert is rejected."""

    def __init__(
        self,
        table: str,
        start_row: int,
        sample_row: Mapping[str, Any] | None,
        *,
        original: Exception,
    ) -> None:
        super().__init__(
            f"Failed to insert batch at row {start_row}", original=original
        )
        self.table = table
        self.start_row = start_row
        self.sample_row = dict(sample_row) if sample_row else None


class InvalidIdentifierError(ValueError):
    """Raised when a table or column name is not a plain SQL identifier."""


def validate_identifier(name: str, *, kind: str = "table") -> str:
    """Return ``name`` unchanged when it is safe to splice into SQL."""

    if not name or not _IDENTIFIER.match(name):
        raise InvalidIdentifierError(f"Invalid {kind} name")
    return name


def quote_identifier(name: str, *, kind: str = "table") -> str:
    """Validate ``name`` and double-quote it so PostgreSQL keeps its case."""

    return f'"{validate_identifier(name, kind=kind)}"'


def render_procedure_call(
    name: str, args: Sequence[Any], kwargs: Mapping[str, Any]
) -> tuple[str, dict[str, Any]]:
    """Render ``SELECT name(...)`` with bound parameters.

    Positional arguments bind as ``:arg0``, ``:arg1``; keyword arguments use
    PostgreSQL named notation. Keyword values that are lists of mappings or
    mappings are sent as ``jsonb``.
    """

    validate_identifier(name, kind="procedure")
    placeholders: list[str] = []
    params: dict[str, Any] = {}

    for index, value in enumerate(args):
        key = f"arg{index}"
        placeholders.append(f":{key}")
        params[key] = value

    for key, value in kwargs.items():
        validate_identifier(key, kind="parameter")
        if isinstance(value, Mapping) or (
            isinstance(value, list) and value and isinstance(value[0], Mapping)
        ):
            placeholders.append(f"{key} => CAST(:{key} AS jsonb)")
            params[key] = json.dumps(value)
        else:
            placeholders.append(f"{key} => :{key}")
            params[key] = value

    return f"SELECT {name}({', '.join(placeholders)})", params


class ReportingDatabase:
    """Thin wrapper executing parameterised statements on an async engine."""

    def __init__(
        self,
        database_url: str,
        *,
        engine: AsyncEngine | None = None,
        pool_size: int = 5,
        echo: bool = False,
    ) -> None:
        self._engine: AsyncEngine = engine or create_async_engine(
            database_url, pool_size=pool_size, echo=echo, pool_pre_ping=True
        )

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[AsyncConnection]:
        """Provide a transactional connection scope."""

        async with self._engine.begin() as connection:
            yield connection

    async def _run(
        self,
        sql: str,
        params: Mapping[str, Any] | Sequence[Mapping[str, Any]] | None,
        connection: AsyncConnection | None,
    ) -> Any:
        statement = text(sql)
        start = time.perf_counter()
        success = False
        try:
            if connection is None:
                async with self.transaction() as tx:
                    result = await tx.execute(statement, params)
                    outcome = _collect(result)
            else:
                result = await connection.execute(statement, params)
                outcome = _collect(result)
            success = True
            return outcome
        except SQLAlchemyError as exc:
            raise DatabaseError(str(getattr(exc, "orig", None) or exc), original=exc) from exc
        finally:
            logger.debug(
                "query_executed",
                statement=sql[:_PREVIEW_LENGTH],
                duration_ms=(time.perf_counter() - start) * 1000.0,
                success=success,
            )

    async def fetch_all(
        self,
        sql: str,
        params: Mapping[str, Any] | None = None,
        *,
        connection: AsyncConnection | None = None,
    ) -> list[Row]:
        rows, _ = await self._run(sql, params, connection)
        return rows

    async def fetch_one(
        self,
        sql: str,
        params: Mapping[str, Any] | None = None,
        *,
        connection: AsyncConnection | None = None,
    ) -> Row | None:
        rows = await self.fetch_all(sql, params, connection=connection)
        return rows[0] if rows else None

    async def fetch_value(
        self,
        sql: str,
        params: Mapping[str, Any] | None = None,
        *,
        connection: AsyncConnection | None = None,
    ) -> Any:
        row = await self.fetch_one(sql, params, connection=connection)
        if row is None:
            return None
        return next(iter(row.values()), None)

    async def execute(
        self,
        sql: str,
        params: Mapping[str, Any] | Sequence[Mapping[str, Any]] | None = None,
        *,
        connection: AsyncConnection | None = None,
    ) -> int:
        """Execute a statement and return the affected row count."""

        _, rowcount = await self._run(sql, params, connection)
        return rowcount

    async def call_procedure(
        self,
        name: str,
        *args: Any,
        connection: AsyncConnection | None = None,
        **kwargs: Any,
    ) -> Any:
        """Invoke a stored procedure and return its scalar result."""

        sql, params = render_procedure_call(name, args, kwargs)
        logger.info("procedure_called", procedure=name)
        return await self.fetch_value(sql, params, connection=connection)

    async def insert_rows(
        self,
        table: str,
        rows: Sequence[Mapping[str, Any]],
        *,
        batch_size: int,
        connection: AsyncConnection | None = None,
    ) -> int:
        """Insert ``rows`` into ``table`` in batches of ``batch_size``.

        Columns are taken from the first row. Raises :class:`BatchInsertError`
        naming the 1-based row that started the failing batch.
        """

        if not rows:
            return 0
        quoted_table = quote_identifier(table)
        columns = list(rows[0])
        quoted_columns = ", ".join(
            quote_identifier(column, kind="column") for column in columns
        )
        placeholders = ", ".join(f":p{index}" for index in range(len(columns)))
        sql = f"INSERT INTO {quoted_table} ({quoted_columns}) VALUES ({placeholders})"

        inserted = 0
        for start in range(0, len(rows), batch_size):
            batch = rows[start : start + batch_size]
            params = [
                {f"p{index}": row.get(column) for index, column in enumerate(columns)}
                for row in batch
            ]
            try:
                await self._run(sql, params, connection)
            except DatabaseError as exc:
                raise BatchInsertError(
                    table, start + 1, batch[0], original=exc.original or exc
                ) from exc
            inserted += len(batch)
            logger.info(
                "batch_inserted", table=table, inserted=inserted, total=len(rows)
            )
        return inserted

    async def count_rows(
        self, table: str, *, connection: AsyncConnection | None = None
    ) -> int:
        sql = f"SELECT COUNT(*) AS count FROM {quote_identifier(table)}"
        value = await self.fetch_value(sql, connection=connection)
        return int(value or 0)

    async def select_rows(
        self,
        table: str,
        *,
        limit: int | None = None,
        offset: int = 0,
        connection: AsyncConnection | None = None,
    ) -> list[Row]:
        sql = f"SELECT * FROM {quote_identifier(table)}"
        params: dict[str, Any] = {}
        if limit is not None:
            sql += " LIMIT :limit OFFSET :offset"
            params = {"limit": limit, "offset": offset}
        return await self.fetch_all(sql, params, connection=connection)

    async def table_exists(self, table: str) -> bool:
        exists = await self.fetch_value(
            "SELECT to_regclass(:name) IS NOT NULL AS present",
            {"name": quote_identifier(table)},
        )
        return bool(exists)

    async def dispose(self) -> None:
        """Dispose of the underlying engine."""

        await self._engine.dispose()


def _collect(result: Any) -> tuple[list[Row], int]:
    rows = [dict(row) for row in result.mappings()] if result.returns_rows else []
    return rows, result.rowcount
