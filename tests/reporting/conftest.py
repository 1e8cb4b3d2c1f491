"""Shared fixtures for the reporting API tests."""

from __future__ import annotations

from datetime import date
from typing import Any, AsyncIterator, Sequence

import pytest
from httpx import ASGITransport, AsyncClient

from repositories.database import validate_identifier
from repositories.reporting import DatasetPage, TableKind, UpdateType
from shared.ddl import ColumnSpec


class FakeRepository:
    """Stand-in for :class:`ReportingRepository` that records every call."""

    def __init__(self) -> None:
        self.calls: list[tuple[Any, ...]] = []
        self.datasources: list[dict[str, Any]] = []
        self.cycles: list[dict[str, Any]] = []
        self.datasets: list[dict[str, Any]] = []
        self.views: list[dict[str, Any]] = []
        self.tables: dict[str, list[dict[str, Any]]] = {}
        self.raw_exists = True
        self.admitted = 0
        self.errors: dict[str, Exception] = {}
        self.dataset_page: DatasetPage | None = None
        self.staged: list[dict[str, Any]] = []

    def _record(self, method: str, *args: Any) -> None:
        self.calls.append((method, *args))
        if method in self.errors:
            raise self.errors[method]

    def called(self, method: str) -> list[tuple[Any, ...]]:
        return [call for call in self.calls if call[0] == method]

    async def list_datasources(self) -> list[dict[str, Any]]:
        self._record("list_datasources")
        return self.datasources

    async def create_datasource(
        self,
        name: str,
        *,
        description: str | None,
        update_type: UpdateType,
        columns: Sequence[ColumnSpec],
    ) -> int:
        self._record("create_datasource", name, description, update_type, tuple(columns))
        return 7

    async def admit(self, name: str) -> tuple[int, UpdateType]:
        self._record("admit", name)
        return self.admitted, UpdateType.REPLACE

    async def preview(
        self, name: str, table_kind: TableKind, *, limit: int
    ) -> tuple[str, list[dict[str, Any]], int]:
        self._record("preview", name, table_kind, limit)
        table = table_kind.table_for(name)
        rows = self.tables.get(table, [])
        return table, rows[:limit], len(rows)

    async def raw_table_exists(self, name: str) -> bool:
        self._record("raw_table_exists", name)
        return self.raw_exists

    async def stage_rows(
        self, name: str, rows: Sequence[dict[str, Any]], *, batch_size: int
    ) -> int:
        self._record("stage_rows", name, batch_size)
        self.staged.extend(rows)
        return len(rows)

    async def record_upload(
        self, upload_id: int, name: str, *, file_name: str, row_count: int
    ) -> None:
        self._record("record_upload", upload_id, name, file_name, row_count)

    async def update_lobby(self, name: str) -> int:
        self._record("update_lobby", name)
        return len(self.staged)

    async def list_cycles(self) -> list[dict[str, Any]]:
        self._record("list_cycles")
        return self.cycles

    async def create_cycle(self, cycle_type: str, cycle_date: date) -> str:
        self._record("create_cycle", cycle_type, cycle_date)
        return f"{cycle_type}_{cycle_date:%Y%m%d}_1700000000000"

    async def close_cycle(self, reference_id: str, datasource_names: Sequence[str]) -> None:
        self._record("close_cycle", reference_id, list(datasource_names))

    async def list_datasets(self) -> list[dict[str, Any]]:
        self._record("list_datasets")
        return self.datasets

    async def create_dataset(
        self, dataset_id: str, name: str, description: str | None
    ) -> None:
        self._record("create_dataset", dataset_id, name, description)

    async def query_dataset(self, dataset_id: str, *, page: int, limit: int) -> DatasetPage:
        self._record("query_dataset", dataset_id, page, limit)
        assert self.dataset_page is not None
        return self.dataset_page

    async def list_views(self) -> list[dict[str, Any]]:
        self._record("list_views")
        return self.views

    async def create_view(
        self, view_name: str, definition: str, dataset_id: str | None
    ) -> None:
        self._record("create_view", view_name, definition, dataset_id)

    async def preview_table(self, table: str, *, limit: int) -> list[dict[str, Any]]:
        self._record("preview_table", table, limit)
        validate_identifier(table)
        return self.tables.get(table, [])[:limit]

    async def export_rows(self, table: str) -> list[dict[str, Any]]:
        self._record("export_rows", table)
        validate_identifier(table)
        return self.tables.get(table, [])


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
def repository() -> FakeRepository:
    return FakeRepository()


@pytest.fixture
async def client(repository: FakeRepository) -> AsyncIterator[AsyncClient]:
    from services.reporting.app import app, get_repository

    app.dependency_overrides[get_repository] = lambda: repository
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as client:
        yield client
    app.dependency_overrides.clear()

