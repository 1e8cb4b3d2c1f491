"""Request and response payloads for the reporting API.

Field names follow what the dashboard sends: data source and data set bodies
are snake_case, everything else is camelCase.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from repositories.reporting import UpdateType


def to_camel(value: str) -> str:
    """Convert ``snake_case`` ``value`` into ``camelCase`` for JSON aliases."""

    first, *rest = value.split("_")
    return first + "".join(token.capitalize() for token in rest)


class CamelModel(BaseModel):
    """Base model applying camelCase aliases and ignoring unknown fields."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


class OperationResponse(CamelModel):
    success: bool = True
    message: str


# ---------------------------------------------------------------------------
# Data sources
# ---------------------------------------------------------------------------


class DataSourceCreateRequest(BaseModel):
    """Definition of a new data source including its ``CREATE TABLE`` text."""

    datasource_name: str = Field(..., min_length=1)
    datasource_description: str | None = None
    datasource_update_type: UpdateType = Field(default=UpdateType.REPLACE)
    sql_query: str = Field(..., description="CREATE TABLE statement describing the columns")

    model_config = ConfigDict(extra="ignore")

    @field_validator("datasource_update_type", mode="before")
    @classmethod
    def _default_update_type(cls, value: Any) -> Any:
        return value or UpdateType.REPLACE


class DataSourceCreateResponse(BaseModel):
    success: bool = True
    message: str = "Data source created successfully"
    datasource_id: int | str | None = None


class AdmitResponse(OperationResponse):
    rows_affected: int


class DataSourcePreviewResponse(CamelModel):
    success: bool = True
    table_name: str
    data: list[dict[str, Any]] = Field(default_factory=list)
    count: int
    limit: int


class UploadResponse(OperationResponse):
    upload_id: int
    row_count: int


# ---------------------------------------------------------------------------
# Report cycles
# ---------------------------------------------------------------------------


class CycleCreateRequest(CamelModel):
    cycle_type: str = Field(..., min_length=1, description="e.g. MONTHLY, QUARTERLY")
    cycle_date: date


class CycleCreateResponse(OperationResponse):
    reference_id: str


class CycleCloseRequest(CamelModel):
    cycle_reference_id: str = Field(..., min_length=1)
    datasource_names: list[str] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Data sets and views
# ---------------------------------------------------------------------------


class DatasetCreateRequest(BaseModel):
    dataset_id: str = Field(..., min_length=1)
    dataset_name: str = Field(..., min_length=1)
    dataset_description: str | None = None

    model_config = ConfigDict(extra="ignore")


class Pagination(CamelModel):
    page: int
    limit: int
    total: int
    total_pages: int
    has_more: bool


class DatasetQueryResponse(CamelModel):
    dataset: dict[str, Any]
    view_name: str
    data: list[dict[str, Any]] = Field(default_factory=list)
    pagination: Pagination
    generated_at: datetime


class ViewCreateRequest(CamelModel):
    view_name: str = Field(..., min_length=1)
    view_definition: str = Field(..., min_length=1)
    dataset_id: str | None = None


# ---------------------------------------------------------------------------
# Generic tables
# ---------------------------------------------------------------------------


class TablePreviewResponse(BaseModel):
    rows: list[dict[str, Any]] = Field(default_factory=list)
    count: int


__all__ = [
    "AdmitResponse",
    "CamelModel",
    "CycleCloseRequest",
    "CycleCreateRequest",
    "CycleCreateResponse",
    "DataSourceCreateRequest",
    "DataSourceCreateResponse",
    "DataSourcePreviewResponse",
    "DatasetCreateRequest",
    "DatasetQueryResponse",
    "OperationResponse",
    "Pagination",
    "TablePreviewResponse",
    "UploadResponse",
    "ViewCreateRequest",
    "to_camel",
]
