"""FastAPI application for the reinsurance reporting back office."""

from __future__ import annotations

import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, AsyncIterator

from fastapi import (
    APIRouter,
    Depends,
    FastAPI,
    File,
    Form,
    Query,
    Request,
    Response,
    UploadFile,
    status,
)

from repositories.database import (
    BatchInsertError,
    DatabaseError,
    InvalidIdentifierError,
    ReportingDatabase,
)
from repositories.reporting import ReportingRepository, TableKind
from shared.config.settings import Settings, get_settings
from shared.ddl import DDLParseError, extract_columns
from shared.http.errors import (
    DatabaseOperationError,
    InvalidDDLError,
    InvalidRequestError,
    register_exception_handlers,
)
from shared.observability.logger import configure_logging, get_logger
from shared.observability.middleware import RequestContextMiddleware

from .csv_io import (
    CSVParseError,
    read_upload,
    rows_to_csv,
    rows_to_json,
    upload_matches_datasource,
)
from .schemas import (
    AdmitResponse,
    CycleCloseRequest,
    CycleCreateRequest,
    CycleCreateResponse,
    DataSourceCreateRequest,
    DataSourceCreateResponse,
    DataSourcePreviewResponse,
    DatasetCreateRequest,
    DatasetQueryResponse,
    OperationResponse,
    Pagination,
    TablePreviewResponse,
    UploadResponse,
    ViewCreateRequest,
)

logger = get_logger(__name__)

DATASOURCE_PREFIX = "DS_"

_TRANSLATIONS = {
    DatabaseError: lambda exc: DatabaseOperationError(str(exc)),
    InvalidIdentifierError: lambda exc: InvalidRequestError(str(exc)),
}


def get_repository(
    request: Request, settings: Settings = Depends(get_settings)
) -> ReportingRepository:
    """Return a repository bound to the application's database handle."""

    return ReportingRepository(
        request.app.state.database, operator_name=settings.app.operator_name
    )


datasources = APIRouter(prefix="/datasources", tags=["datasources"])
cycles = APIRouter(prefix="/cycles", tags=["cycles"])
datasets = APIRouter(prefix="/datasets", tags=["datasets"])
views = APIRouter(prefix="/views", tags=["views"])
tables = APIRouter(tags=["tables"])


# ---------------------------------------------------------------------------
# Data sources
# ---------------------------------------------------------------------------


@datasources.get("", response_model=list[dict[str, Any]])
async def list_datasources(
    repository: ReportingRepository = Depends(get_repository),
) -> list[dict[str, Any]]:
    return await repository.list_datasources()


@datasources.post("", response_model=DataSourceCreateResponse)
async def create_datasource(
    payload: DataSourceCreateRequest,
    repository: ReportingRepository = Depends(get_repository),
) -> DataSourceCreateResponse:
    """Create a data source from a ``CREATE TABLE`` statement.

    The parser diagnostic is returned unchanged with a 400 when the statement
    yields no columns.
    """

    if not payload.datasource_name.startswith(DATASOURCE_PREFIX):
        raise InvalidRequestError(
            f"Datasource name must start with {DATASOURCE_PREFIX}"
        )

    try:
        columns = extract_columns(payload.sql_query)
    except DDLParseError as exc:
        logger.info(
            "datasource_ddl_rejected",
            datasource=payload.datasource_name,
            reason=type(exc).__name__,
        )
        raise InvalidDDLError(exc) from exc

    datasource_id = await repository.create_datasource(
        payload.datasource_name,
        description=payload.datasource_description,
        update_type=payload.datasource_update_type,
        columns=columns,
    )
    return DataSourceCreateResponse(datasource_id=datasource_id)


@datasources.post("/{datasource_name}/admit", response_model=AdmitResponse)
async def admit_datasource(
    datasource_name: str,
    repository: ReportingRepository = Depends(get_repository),
) -> AdmitResponse:
    """Promote staged RAW rows into the ACTIVE table."""

    rows_affected, _ = await repository.admit(datasource_name)
    return AdmitResponse(
        rows_affected=rows_affected,
        message=f"Successfully admitted {rows_affected} rows to active table",
    )


@datasources.get(
    "/{datasource_name}/preview", response_model=DataSourcePreviewResponse
)
async def preview_datasource(
    datasource_name: str,
    table: TableKind = Query(default=TableKind.ACTIVE),
    limit: int | None = Query(default=None, ge=1),
    repository: ReportingRepository = Depends(get_repository),
    settings: Settings = Depends(get_settings),
) -> DataSourcePreviewResponse:
    resolved_limit = limit or settings.upload.preview_limit
    table_name, rows, count = await repository.preview(
        datasource_name, table, limit=resolved_limit
    )
    return DataSourcePreviewResponse(
        table_name=table_name, data=rows, count=count, limit=resolved_limit
    )


@tables.post("/upload", response_model=UploadResponse)
async def upload_csv(
    file: UploadFile | None = File(default=None),
    datasource_name: str | None = Form(default=None, alias="datasourceName"),
    repository: ReportingRepository = Depends(get_repository),
    settings: Settings = Depends(get_settings),
) -> UploadResponse:
    """Load ``<datasource>.csv`` into the data source's RAW table."""

    if file is None:
        raise InvalidRequestError("No file provided")
    if not datasource_name:
        raise InvalidRequestError("Datasource name is required")

    file_name = file.filename or ""
    if not upload_matches_datasource(file_name, datasource_name):
        raise InvalidRequestError(
            "File name must match datasource name. "
            f"Expected: {datasource_name}.csv, Got: {file_name}",
            extensions={"details": f"Please rename your file to {datasource_name}.csv"},
        )

    try:
        rows = read_upload(await file.read())
    except CSVParseError as exc:
        raise InvalidRequestError(str(exc), extensions={"details": exc.details[:5]}) from exc
    if not rows:
        raise InvalidRequestError("No data found in CSV")

    logger.info(
        "upload_parsed",
        datasource=datasource_name,
        file_name=file_name,
        rows=len(rows),
        columns=list(rows[0]),
    )

    raw_table = TableKind.RAW.table_for(datasource_name)
    if not await repository.raw_table_exists(datasource_name):
        raise InvalidRequestError(
            f"Table {raw_table} does not exist. Please create the datasource first."
        )

    try:
        inserted = await repository.stage_rows(
            datasource_name, rows, batch_size=settings.upload.batch_size
        )
    except BatchInsertError as exc:
        raise DatabaseOperationError(
            str(exc),
            extensions={
                "details": str(exc.original),
                "hint": "Check that CSV columns match table structure",
                "sampleRow": exc.sample_row,
            },
        ) from exc

    upload_id = int(time.time() * 1000)
    try:
        await repository.record_upload(
            upload_id, datasource_name, file_name=file_name, row_count=inserted
        )
    except DatabaseError as exc:
        logger.warning("upload_session_not_recorded", error=str(exc))
    try:
        await repository.update_lobby(datasource_name)
    except DatabaseError as exc:
        logger.warning("lobby_not_updated", error=str(exc))

    return UploadResponse(
        upload_id=upload_id,
        row_count=inserted,
        message=f"Successfully uploaded {inserted} rows to {raw_table}",
    )


# ---------------------------------------------------------------------------
# Report cycles
# ---------------------------------------------------------------------------


@cycles.get("", response_model=list[dict[str, Any]])
async def list_cycles(
    repository: ReportingRepository = Depends(get_repository),
) -> list[dict[str, Any]]:
    return await repository.list_cycles()


@cycles.post("", response_model=CycleCreateResponse)
async def create_cycle(
    payload: CycleCreateRequest,
    repository: ReportingRepository = Depends(get_repository),
) -> CycleCreateResponse:
    reference_id = await repository.create_cycle(payload.cycle_type, payload.cycle_date)
    return CycleCreateResponse(
        reference_id=reference_id, message="Cycle created successfully"
    )


@cycles.post("/{cycle_id}/close", response_model=OperationResponse)
async def close_cycle(
    cycle_id: str,
    payload: CycleCloseRequest,
    repository: ReportingRepository = Depends(get_repository),
) -> OperationResponse:
    """Close the cycle and move ACTIVE data of the listed sources to history."""

    await repository.close_cycle(payload.cycle_reference_id, payload.datasource_names)
    return OperationResponse(message=f"Cycle {cycle_id} closed successfully")


# ---------------------------------------------------------------------------
# Data sets and views
# ---------------------------------------------------------------------------


@datasets.get("", response_model=list[dict[str, Any]])
async def list_datasets(
    repository: ReportingRepository = Depends(get_repository),
) -> list[dict[str, Any]]:
    return await repository.list_datasets()


@datasets.post("", response_model=OperationResponse)
async def create_dataset(
    payload: DatasetCreateRequest,
    repository: ReportingRepository = Depends(get_repository),
) -> OperationResponse:
    await repository.create_dataset(
        payload.dataset_id, payload.dataset_name, payload.dataset_description
    )
    return OperationResponse(message="Dataset created successfully")


@datasets.get("/{dataset_id}/query", response_model=DatasetQueryResponse)
async def query_dataset(
    dataset_id: str,
    page: int = Query(default=1, ge=1),
    limit: int | None = Query(default=None, ge=1),
    repository: ReportingRepository = Depends(get_repository),
    settings: Settings = Depends(get_settings),
) -> DatasetQueryResponse:
    """Return one page of the data set's report view."""

    result = await repository.query_dataset(
        dataset_id, page=page, limit=limit or settings.upload.query_page_size
    )
    return DatasetQueryResponse(
        dataset=result.dataset,
        view_name=result.view_name,
        data=result.rows,
        pagination=Pagination(
            page=result.page,
            limit=result.limit,
            total=result.total,
            total_pages=result.total_pages,
            has_more=result.has_more,
        ),
        generated_at=datetime.now(timezone.utc),
    )


@views.get("", response_model=list[dict[str, Any]])
async def list_views(
    repository: ReportingRepository = Depends(get_repository),
) -> list[dict[str, Any]]:
    return await repository.list_views()


@views.post(
    "", response_model=OperationResponse, status_code=status.HTTP_201_CREATED
)
async def create_view(
    payload: ViewCreateRequest,
    repository: ReportingRepository = Depends(get_repository),
) -> OperationResponse:
    await repository.create_view(
        payload.view_name, payload.view_definition, payload.dataset_id
    )
    return OperationResponse(message="View created successfully")


# ---------------------------------------------------------------------------
# Generic tables
# ---------------------------------------------------------------------------


@tables.get("/preview", response_model=TablePreviewResponse)
async def preview_table(
    table: str | None = Query(default=None),
    limit: int | None = Query(default=None, ge=1),
    repository: ReportingRepository = Depends(get_repository),
    settings: Settings = Depends(get_settings),
) -> TablePreviewResponse:
    if not table:
        raise InvalidRequestError("Table name is required")
    rows = await repository.preview_table(
        table, limit=limit or settings.upload.preview_limit
    )
    return TablePreviewResponse(rows=rows, count=len(rows))


@tables.get("/export")
async def export_table(
    table: str | None = Query(default=None),
    format: str = Query(default="csv"),
    repository: ReportingRepository = Depends(get_repository),
) -> Response:
    """Download every row of ``table`` as a CSV or JSON attachment."""

    if not table:
        raise InvalidRequestError("Table name is required")
    if format not in ("csv", "json"):
        raise InvalidRequestError("Invalid format")

    rows = await repository.export_rows(table)
    file_name = f"{table}_{int(time.time() * 1000)}.{format}"
    headers = {"Content-Disposition": f'attachment; filename="{file_name}"'}
    if format == "csv":
        return Response(rows_to_csv(rows), media_type="text/csv", headers=headers)
    return Response(rows_to_json(rows), media_type="application/json", headers=headers)


def create_app(settings: Settings | None = None) -> FastAPI:
    """Create and configure the FastAPI application instance."""

    resolved = settings or get_settings()
    configure_logging(
        service_name=resolved.app.service_name, level=resolved.logging.level
    )

    @asynccontextmanager
    async def lifespan(application: FastAPI) -> AsyncIterator[None]:
        database = ReportingDatabase(
            resolved.database.url,
            pool_size=resolved.database.pool_size,
            echo=resolved.database.echo,
        )
        application.state.database = database
        logger.info("database_ready", service=resolved.app.service_name)
        try:
            yield
        finally:
            await database.dispose()
            logger.info("database_disposed")

    application = FastAPI(title="Reinsurance Reporting Service", lifespan=lifespan)
    application.add_middleware(RequestContextMiddleware)
    register_exception_handlers(application, translations=_TRANSLATIONS)

    @application.get("/health", tags=["health"])
    async def health() -> dict[str, str]:
        """Return a simple health payload for orchestration checks."""

        return {"status": "ok", "service": resolved.app.service_name}

    for router in (datasources, cycles, datasets, views, tables):
        application.include_router(router)
    return application


app = create_app()

__all__ = ["app", "create_app", "get_repository"]
