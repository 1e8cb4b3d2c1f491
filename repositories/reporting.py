"""Repository for data sources, report cycles, data sets and views."""

from __future__ import annotations

import json
import math
import time
from dataclasses import dataclass
from datetime import date
from enum import Enum
from typing import Any, Sequence

from shared.ddl import ColumnSpec, columns_payload
from shared.http.errors import InvalidRequestError, ResourceNotFoundError
from shared.observability.audit import AuditEntry, record_audit
from shared.observability.logger import get_logger

from .database import ReportingDatabase, Row, validate_identifier

__all__ = [
    "DatasetPage",
    "ReportingRepository",
    "TableKind",
    "UpdateType",
    "build_cycle_reference",
]

logger = get_logger(__name__)

QUERY_VIEW_SUFFIX = "_QRY02"


class UpdateType(str, Enum):
    """How ``admit_data`` merges RAW rows into the ACTIVE table."""

    REPLACE = "REPLACE"
    APPEND = "APPEND"


class TableKind(str, Enum):
    """Physical tables provisioned for each data source."""

    RAW = "RAW"
    ACTIVE = "ACTIVE"
    HIST = "HIST"

    def table_for(self, datasource_name: str) -> str:
        return validate_identifier(f"{datasource_name}_{self.value}")


@dataclass(slots=True, frozen=True)
class DatasetPage:
    """One page of rows read from a data set's query view."""

    dataset: Row
    view_name: str
    rows: list[Row]
    page: int
    limit: int
    total: int

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total / self.limit) if self.total else 1

    @property
    def has_more(self) -> bool:
        return self.page < self.total_pages


def build_cycle_reference(
    cycle_type: str, cycle_date: date, *, timestamp_ms: int | None = None
) -> str:
    """Return ``<TYPE>_<YYYYMMDD>_<epoch ms>``, e.g. ``QUARTERLY_20240331_1711843200000``."""

    stamp = timestamp_ms if timestamp_ms is not None else int(time.time() * 1000)
    return f"{cycle_type.upper()}_{cycle_date:%Y%m%d}_{stamp}"


class _DatabaseAuditRepository:
    """Persist audit entries into ``audit_log``."""

    def __init__(self, database: ReportingDatabase) -> None:
        self._database = database

    async def persist(self, entry: AuditEntry) -> None:
        await self._database.execute(
            "INSERT INTO audit_log (action_type, table_name, user_name, details) "
            "VALUES (:action_type, :table_name, :user_name, CAST(:details AS jsonb))",
            {
                "action_type": entry.action_type,
                "table_name": entry.table_name,
                "user_name": entry.user_name,
                "details": json.dumps(entry.details),
            },
        )
        logger.info("audit_recorded", **entry.to_dict())


class ReportingRepository:
    """Domain operations over a :class:`ReportingDatabase` handle."""

    def __init__(self, database: ReportingDatabase, *, operator_name: str) -> None:
        self._database = database
        self._operator = operator_name
        self._audit = _DatabaseAuditRepository(database)

    # ------------------------------------------------------------------
    # Data sources
    # ------------------------------------------------------------------

    async def list_datasources(self) -> list[Row]:
        return await self._database.fetch_all(
            "SELECT * FROM data_sources ORDER BY datasource_created_at DESC"
        )

    async def create_datasource(
        self,
        name: str,
        *,
        description: str | None,
        update_type: UpdateType,
        columns: Sequence[ColumnSpec],
    ) -> int:
        """Register a data source and provision its RAW, ACTIVE and HIST tables.

        Both steps share one transaction, so a failing
        ``create_datasource_tables`` call leaves no ``data_sources`` row behind.
        """

        validate_identifier(name)
        async with self._database.transaction() as connection:
            datasource_id = await self._database.fetch_value(
                "INSERT INTO data_sources "
                "(datasource_name, datasource_description, datasource_update_type, created_by) "
                "VALUES (:name, :description, :update_type, :created_by) "
                "RETURNING datasource_id",
                {
                    "name": name,
                    "description": description,
                    "update_type": update_type.value,
                    "created_by": self._operator,
                },
                connection=connection,
            )
            await self._database.call_procedure(
                "create_datasource_tables",
                connection=connection,
                p_datasource_name=name,
                p_columns=columns_payload(columns),
            )

        logger.info(
            "datasource_created",
            datasource=name,
            datasource_id=datasource_id,
            columns=len(columns),
        )
        return datasource_id

    async def get_update_type(self, name: str) -> UpdateType | None:
        value = await self._database.fetch_value(
            "SELECT datasource_update_type FROM data_sources WHERE datasource_name = :name",
            {"name": name},
        )
        return UpdateType(value) if value is not None else None

    async def admit(self, name: str) -> tuple[int, UpdateType]:
        """Promote staged RAW rows into the ACTIVE table via ``admit_data``."""

        update_type = await self.get_update_type(name)
        if update_type is None:
            raise ResourceNotFoundError("Data source", name, detail="Data source not found")

        staged = await self._database.count_rows(TableKind.RAW.table_for(name))
        if staged == 0:
            raise InvalidRequestError("No data in RAW table to admit")

        affected = await self._database.call_procedure(
            "admit_data",
            p_datasource_name=name,
            p_update_type=update_type.value,
        )
        rows_affected = int(affected or 0)

        await self._database.execute(
            "UPDATE data_sources SET lobby = 0 WHERE datasource_name = :name",
            {"name": name},
        )
        await record_audit(
            "ADMIT_DATA",
            table_name=name,
            user_name=self._operator,
            details={"rows_affected": rows_affected, "update_type": update_type.value},
            repository=self._audit,
        )
        return rows_affected, update_type

    async def preview(
        self, name: str, table_kind: TableKind, *, limit: int
    ) -> tuple[str, list[Row], int]:
        table = table_kind.table_for(name)
        rows = await self._database.select_rows(table, limit=limit)
        count = await self._database.count_rows(table)
        return table, rows, count

    # ------------------------------------------------------------------
    # Uploads
    # ------------------------------------------------------------------

    async def raw_table_exists(self, name: str) -> bool:
        return await self._database.table_exists(TableKind.RAW.table_for(name))

    async def stage_rows(
        self, name: str, rows: Sequence[dict[str, Any]], *, batch_size: int
    ) -> int:
        """Insert ``rows`` into RAW; a failing batch rolls back the whole upload."""

        async with self._database.transaction() as connection:
            return await self._database.insert_rows(
                TableKind.RAW.table_for(name),
                rows,
                batch_size=batch_size,
                connection=connection,
            )

    async def record_upload(
        self, upload_id: int, name: str, *, file_name: str, row_count: int
    ) -> None:
        await self._database.execute(
            "INSERT INTO upload_sessions "
            "(upload_id, datasource_name, file_name, row_count, status, uploaded_by) "
            "VALUES (:upload_id, :name, :file_name, :row_count, 'UPLOADED', :uploaded_by)",
            {
                "upload_id": upload_id,
                "name": name,
                "file_name": file_name,
                "row_count": row_count,
                "uploaded_by": self._operator,
            },
        )

    async def update_lobby(self, name: str) -> int:
        """Set ``lobby`` to the number of rows currently staged in RAW."""

        staged = await self._database.count_rows(TableKind.RAW.table_for(name))
        await self._database.execute(
            "UPDATE data_sources SET lobby = :lobby WHERE datasource_name = :name",
            {"lobby": staged, "name": name},
        )
        return staged

    # ------------------------------------------------------------------
    # Report cycles
    # ------------------------------------------------------------------

    async def list_cycles(self) -> list[Row]:
        return await self._database.fetch_all(
            "SELECT cycle_id, cycle_type, cycle_date, cycle_reference_id, opened_by, "
            "opened_at, status, closed_at, closed_by "
            "FROM report_cycles ORDER BY opened_at DESC"
        )

    async def create_cycle(self, cycle_type: str, cycle_date: date) -> str:
        reference_id = build_cycle_reference(cycle_type, cycle_date)
        await self._database.execute(
            "INSERT INTO report_cycles (cycle_type, cycle_date, cycle_reference_id, opened_by) "
            "VALUES (:cycle_type, :cycle_date, :reference_id, :opened_by)",
            {
                "cycle_type": cycle_type,
                "cycle_date": cycle_date,
                "reference_id": reference_id,
                "opened_by": self._operator,
            },
        )
        logger.info("cycle_opened", cycle_reference_id=reference_id)
        return reference_id

    async def close_cycle(
        self, reference_id: str, datasource_names: Sequence[str]
    ) -> None:
        """Move ACTIVE rows of ``datasource_names`` into history for the cycle."""

        await self._database.call_procedure(
            "close_cycle", reference_id, list(datasource_names)
        )
        logger.info(
            "cycle_closed",
            cycle_reference_id=reference_id,
            datasources=list(datasource_names),
        )

    # ------------------------------------------------------------------
    # Data sets and views
    # ------------------------------------------------------------------

    async def list_datasets(self) -> list[Row]:
        return await self._database.fetch_all(
            "SELECT dataset_id, dataset_name, dataset_description, dataset_updated_at "
            "FROM data_sets ORDER BY dataset_updated_at DESC"
        )

    async def create_dataset(
        self, dataset_id: str, name: str, description: str | None
    ) -> None:
        await self._database.execute(
            "INSERT INTO data_sets (dataset_id, dataset_name, dataset_description) "
            "VALUES (:dataset_id, :name, :description)",
            {"dataset_id": dataset_id, "name": name, "description": description},
        )

    async def query_dataset(self, dataset_id: str, *, page: int, limit: int) -> DatasetPage:
        """Read one page from the data set's active ``*_QRY02`` view."""

        dataset = await self._database.fetch_one(
            "SELECT dataset_id, dataset_name, dataset_description "
            "FROM data_sets WHERE dataset_id = :dataset_id",
            {"dataset_id": dataset_id},
        )
        if dataset is None:
            raise ResourceNotFoundError("Dataset", dataset_id, detail="Dataset not found")

        views = await self._database.fetch_all(
            "SELECT view_name FROM sql_views WHERE dataset_id = :dataset_id AND is_active",
            {"dataset_id": dataset_id},
        )
        view_name = next(
            (
                view["view_name"]
                for view in views
                if str(view["view_name"]).endswith(QUERY_VIEW_SUFFIX)
            ),
            None,
        )
        if view_name is None:
            raise ResourceNotFoundError(
                "Dataset", dataset_id, detail="No query view found for this dataset"
            )

        logger.info("dataset_queried", view=view_name, page=page, limit=limit)
        total = await self._database.count_rows(view_name)
        rows = await self._database.select_rows(
            view_name, limit=limit, offset=(page - 1) * limit
        )
        return DatasetPage(
            dataset=dataset,
            view_name=view_name,
            rows=rows,
            page=page,
            limit=limit,
            total=total,
        )

    async def list_views(self) -> list[Row]:
        rows = await self._database.fetch_all(
            "SELECT v.view_id, v.view_name, v.view_definition, v.dataset_id, "
            "d.dataset_name, v.created_at, v.created_by, v.is_active "
            "FROM sql_views v LEFT JOIN data_sets d ON d.dataset_id = v.dataset_id "
            "WHERE v.is_active ORDER BY v.created_at DESC"
        )
        for row in rows:
            row["data_sets"] = {"dataset_name": row.pop("dataset_name", None)}
        return rows

    async def create_view(
        self, view_name: str, definition: str, dataset_id: str | None
    ) -> None:
        """Execute ``definition`` through ``exec_sql`` and register the view."""

        await self._database.call_procedure("exec_sql", query=definition)
        await self._database.execute(
            "INSERT INTO sql_views (view_name, view_definition, dataset_id, created_by) "
            "VALUES (:view_name, :definition, :dataset_id, :created_by)",
            {
                "view_name": view_name,
                "definition": definition,
                "dataset_id": dataset_id,
                "created_by": self._operator,
            },
        )
        logger.info("view_created", view=view_name, dataset_id=dataset_id)

    # ------------------------------------------------------------------
    # Generic table access
    # ------------------------------------------------------------------

    async def preview_table(self, table: str, *, limit: int) -> list[Row]:
        return await self._database.select_rows(table, limit=limit)

    async def export_rows(self, table: str) -> list[Row]:
        return await self._database.select_rows(table)
