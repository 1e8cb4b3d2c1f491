"""CSV parsing for RAW uploads and CSV/JSON rendering for exports."""

from __future__ import annotations

import io
import json
import re
from pathlib import PurePath
from typing import Any, Iterable, Mapping

import pandas as pd
from fastapi.encoders import jsonable_encoder

__all__ = [
    "CSVParseError",
    "normalize_header",
    "read_upload",
    "rows_to_csv",
    "rows_to_json",
    "upload_matches_datasource",
]

_HEADER_WHITESPACE = re.compile(r"\s+")
_CSV_SUFFIX = re.compile(r"\.(csv|CSV)$")


class CSVParseError(ValueError):
    """Raised when an uploaded file cannot be read as CSV."""

    def __init__(self, message: str, *, details: list[str] | None = None) -> None:
        super().__init__(message)
        self.details = details or []


def normalize_header(header: str) -> str:
    """``" Policy Number "`` -> ``"policy_number"``."""

    return _HEADER_WHITESPACE.sub("_", str(header).strip().lower())


def upload_matches_datasource(file_name: str, datasource_name: str) -> bool:
    """Uploads must be named ``<datasource>.csv``."""

    return _CSV_SUFFIX.sub("", PurePath(file_name).name) == datasource_name


def read_upload(content: bytes) -> list[dict[str, Any]]:
    """Parse ``content`` into row dictionaries keyed by normalised headers.

    Column types are inferred, blank lines are skipped and missing values
    become ``None``.
    """

    try:
        frame = pd.read_csv(io.BytesIO(content), skip_blank_lines=True)
    except pd.errors.EmptyDataError:
        return []
    except (pd.errors.ParserError, UnicodeDecodeError) as exc:
        raise CSVParseError("CSV parsing failed", details=[str(exc)]) from exc

    frame.columns = [normalize_header(column) for column in frame.columns]
    frame = frame.dropna(how="all")
    cleaned = frame.astype(object).where(frame.notna(), None)
    return [
        {key: _to_native(value) for key, value in record.items()}
        for record in cleaned.to_dict(orient="records")
    ]


def _to_native(value: Any) -> Any:
    if hasattr(value, "item"):
        return value.item()
    return value


def rows_to_csv(rows: Iterable[Mapping[str, Any]]) -> str:
    records = list(rows)
    if not records:
        return ""
    return pd.DataFrame.from_records(records).to_csv(index=False)


def rows_to_json(rows: Iterable[Mapping[str, Any]]) -> str:
    return json.dumps(jsonable_encoder(list(rows)), indent=2)
