"""Column extraction for user supplied ``CREATE TABLE`` statements.

Data sources are declared by pasting a single ``CREATE TABLE`` statement. The
statement itself is never executed; this module only derives the ordered list
of ``(name, type)`` pairs that the ``create_datasource_tables`` procedure uses
to provision the RAW, ACTIVE and HIST tables. Column order is preserved because
it becomes the physical column order of the provisioned tables.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Iterator, Sequence

__all__ = [
    "ColumnSpec",
    "columns_payload",
    "DDLInternalError",
    "DDLParseError",
    "DDLSyntaxError",
    "EmptyColumnListError",
    "ParseResult",
    "extract_columns",
    "parse_create_table",
    "split_definitions",
    "strip_comments",
]

_LINE_COMMENT = re.compile(r"--[^\n]*")
_BLOCK_COMMENT = re.compile(r"/\*.*?\*/", re.DOTALL)
_CREATE_TABLE = re.compile(r"CREATE\s+TABLE\s+\w+\s*\(", re.IGNORECASE)
_TABLE_CONSTRAINT = re.compile(
    r"^(PRIMARY\s+KEY|FOREIGN\s+KEY|CONSTRAINT|UNIQUE|CHECK|INDEX)\b",
    re.IGNORECASE,
)
_PARAMETERISED_TYPE = re.compile(r"(\w+)\s*\(([^)]+)\)")
_WHITESPACE = re.compile(r"\s+")
_QUOTE_CHARACTERS = "\"`'"


class DDLParseError(ValueError):
    """Base error for statements that do not yield any column definitions."""


class DDLSyntaxError(DDLParseError):
    """Raised when the text does not contain a ``CREATE TABLE (...)`` statement."""

    def __init__(self, message: str = "Invalid CREATE TABLE syntax") -> None:
        super().__init__(message)


class EmptyColumnListError(DDLParseError):
    """Raised when the statement only holds constraints or malformed fragments."""

    def __init__(
        self, message: str = "No valid columns found in CREATE TABLE statement"
    ) -> None:
        super().__init__(message)


class DDLInternalError(DDLParseError):
    """Raised when scanning the column body fails unexpectedly."""

    def __init__(self, cause: Exception) -> None:
        super().__init__(f"Parser error: {cause}")
        self.cause = cause


@dataclass(slots=True, frozen=True)
class ColumnSpec:
    """A single column declared in a ``CREATE TABLE`` body."""

    name: str
    type: str

    def as_dict(self) -> dict[str, str]:
        """Return the JSON payload expected by ``create_datasource_tables``."""

        return {"name": self.name, "type": self.type}


@dataclass(slots=True, frozen=True)
class ParseResult:
    """Outcome of parsing one statement: either columns or a diagnostic."""

    columns: tuple[ColumnSpec, ...] = ()
    error: str | None = None

    def __post_init__(self) -> None:
        if bool(self.columns) == (self.error is not None):
            raise ValueError("ParseResult requires either columns or an error, not both.")

    @property
    def ok(self) -> bool:
        return self.error is None


def strip_comments(sql: str) -> str:
    """Remove ``--`` and ``/* */`` comments and surrounding whitespace."""

    without_line_comments = _LINE_COMMENT.sub("", sql)
    return _BLOCK_COMMENT.sub("", without_line_comments).strip()


def split_definitions(body: str) -> list[str]:
    """Split a column body on commas that sit outside any parentheses.

    ``amount DECIMAL(18,2), name TEXT`` yields two definitions, not three.
    """

    definitions: list[str] = []
    current: list[str] = []
    depth = 0
    for position, char in enumerate(body):
        if char == "(":
            depth += 1
        elif char == ")":
            depth -= 1
            if depth < 0:
                raise ValueError(f"unbalanced ')' at position {position}")
        elif char == "," and depth == 0:
            definitions.append("".join(current))
            current = []
            continue
        current.append(char)

    if depth != 0:
        raise ValueError(f"{depth} unclosed '(' in column definitions")
    definitions.append("".join(current))
    return definitions


def _column_body(text: str, start: int) -> str:
    """Return the text from ``start`` up to the ``)`` closing the table body.

    ``start`` is the index just after the opening parenthesis. Anything after
    the matching ``)``, such as table options or further statements, is left
    out.
    """

    depth = 1
    for position in range(start, len(text)):
        char = text[position]
        if char == "(":
            depth += 1
        elif char == ")":
            depth -= 1
            if depth == 0:
                return text[start:position]
    raise ValueError(f"{depth} unclosed '(' in column definitions")


def _parse_definition(definition: str) -> ColumnSpec | None:
    if _TABLE_CONSTRAINT.match(definition):
        return None

    tokens = definition.split()
    if len(tokens) < 2:
        return None

    name = tokens[0].strip(_QUOTE_CHARACTERS).lower()

    match = _PARAMETERISED_TYPE.search(definition)
    if match:
        parameters = _WHITESPACE.sub("", match.group(2))
        column_type = f"{match.group(1).upper()}({parameters})"
    else:
        column_type = tokens[1].upper()

    return ColumnSpec(name=name, type=column_type)


def _iter_columns(body: str) -> Iterator[ColumnSpec]:
    for raw_definition in split_definitions(body):
        definition = raw_definition.strip()
        if not definition:
            continue
        column = _parse_definition(definition)
        if column is not None:
            yield column


def extract_columns(sql: str) -> tuple[ColumnSpec, ...]:
    """Return the columns declared by the ``CREATE TABLE`` statement in ``sql``.

    The table name written in the statement is ignored; callers supply the
    authoritative data source name separately. Anything after the
    parenthesis closing the column body is ignored as well.

    Raises:
        DDLSyntaxError: ``sql`` holds no recognisable ``CREATE TABLE`` shape.
        EmptyColumnListError: every definition was a constraint or malformed.
        DDLInternalError: the body could not be scanned, e.g. the text ends
            before the column body is closed.
    """

    text = strip_comments(sql)
    match = _CREATE_TABLE.search(text)
    if match is None or ")" not in text[match.end() :]:
        raise DDLSyntaxError()

    try:
        columns = tuple(_iter_columns(_column_body(text, match.end())))
    except Exception as exc:
        raise DDLInternalError(exc) from exc

    if not columns:
        raise EmptyColumnListError()
    return columns


def parse_create_table(sql: str) -> ParseResult:
    """Non-raising variant of :func:`extract_columns`."""

    try:
        return ParseResult(columns=extract_columns(sql))
    except DDLParseError as exc:
        return ParseResult(error=str(exc))


def columns_payload(columns: Sequence[ColumnSpec]) -> list[dict[str, Any]]:
    """Serialise ``columns`` for the table provisioning procedure."""

    return [column.as_dict() for column in columns]
