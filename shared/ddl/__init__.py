"""DDL helpers shared by the reporting service and scripts."""

from .parser import (
    ColumnSpec,
    DDLInternalError,
    DDLParseError,
    DDLSyntaxError,
    EmptyColumnListError,
    ParseResult,
    columns_payload,
    extract_columns,
    parse_create_table,
)

__all__ = [
    "ColumnSpec",
    "DDLInternalError",
    "DDLParseError",
    "DDLSyntaxError",
    "EmptyColumnListError",
    "ParseResult",
    "columns_payload",
    "extract_columns",
    "parse_create_table",
]
