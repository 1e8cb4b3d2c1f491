"""Tests for the async database handle."""

from __future__ import annotations

import json
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

import pytest
from sqlalchemy.exc import OperationalError

from repositories.database import (
    BatchInsertError,
    DatabaseError,
    InvalidIdentifierError,
    ReportingDatabase,
    quote_identifier,
    render_procedure_call,
    validate_identifier,
)


class _FakeResult:
    def __init__(self, rows: list[dict[str, Any]] | None, rowcount: int) -> None:
        self._rows = rows
        self.rowcount = rowcount

    @property
    def returns_rows(self) -> bool:
        return self._rows is not None

    def mappings(self) -> list[dict[str, Any]]:
        return list(self._rows or [])


class _FakeConnection:
    def __init__(self, engine: "_FakeEngine") -> None:
        self._engine = engine

    async def execute(self, statement: Any, params: Any = None) -> _FakeResult:
        sql = str(statement)
        self._engine.executed.append((sql, params))
        if self._engine.fail_on is not None and self._engine.fail_on(sql, params):
            raise OperationalError(sql, params, Exception("relation does not exist"))
        rows = self._engine.results.pop(0) if self._engine.results else None
        rowcount = len(params) if isinstance(params, list) else 1
        return _FakeResult(rows, rowcount)


class _FakeEngine:
    def __init__(self) -> None:
        self.executed: list[tuple[str, Any]] = []
        self.results: list[list[dict[str, Any]] | None] = []
        self.fail_on = None
        self.transactions = 0
        self.disposed = False

    @asynccontextmanager
    async def begin(self) -> AsyncIterator[_FakeConnection]:
        self.transactions += 1
        yield _FakeConnection(self)

    async def dispose(self) -> None:
        self.disposed = True


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
def engine() -> _FakeEngine:
    return _FakeEngine()


@pytest.fixture
def database(engine: _FakeEngine) -> ReportingDatabase:
    return ReportingDatabase("postgresql+asyncpg://test/reporting", engine=engine)


@pytest.mark.parametrize("name", ["DS_POLICIES_RAW", "audit_log", "v2"])
def test_validate_identifier_accepts_plain_names(name: str) -> None:
    assert validate_identifier(name) == name


@pytest.mark.parametrize(
    "name", ["", "DS_POLICIES; DROP TABLE x", "public.policies", "policy-number"]
)
def test_validate_identifier_rejects_everything_else(name: str) -> None:
    with pytest.raises(InvalidIdentifierError) as excinfo:
        validate_identifier(name, kind="column")

    assert str(excinfo.value) == "Invalid column name"


def test_quote_identifier_preserves_case() -> None:
    assert quote_identifier("DS_POLICIES_RAW") == '"DS_POLICIES_RAW"'

    with pytest.raises(InvalidIdentifierError):
        quote_identifier('DS_A"; DROP TABLE x; --')


def test_render_procedure_call_with_named_arguments() -> None:
    sql, params = render_procedure_call(
        "create_datasource_tables",
        (),
        {
            "p_datasource_name": "DS_POLICIES",
            "p_columns": [{"name": "id", "type": "INT"}],
        },
    )

    assert sql == (
        "SELECT create_datasource_tables(p_datasource_name => :p_datasource_name, "
        "p_columns => CAST(:p_columns AS jsonb))"
    )
    assert params["p_datasource_name"] == "DS_POLICIES"
    assert json.loads(params["p_columns"]) == [{"name": "id", "type": "INT"}]


def test_render_procedure_call_with_positional_arguments() -> None:
    sql, params = render_procedure_call("close_cycle", ("Q1_REF", ["DS_A"]), {})

    assert sql == "SELECT close_cycle(:arg0, :arg1)"
    assert params == {"arg0": "Q1_REF", "arg1": ["DS_A"]}


def test_render_procedure_call_rejects_unsafe_names() -> None:
    with pytest.raises(InvalidIdentifierError):
        render_procedure_call("exec_sql; --", (), {})


@pytest.mark.anyio("asyncio")
async def test_fetch_value_returns_first_column(
    database: ReportingDatabase, engine: _FakeEngine
) -> None:
    engine.results.append([{"count": 7, "other": 1}])

    assert await database.fetch_value("SELECT COUNT(*) AS count FROM t") == 7
    assert engine.transactions == 1


@pytest.mark.anyio("asyncio")
async def test_fetch_one_returns_none_for_empty_result(
    database: ReportingDatabase, engine: _FakeEngine
) -> None:
    engine.results.append([])

    assert await database.fetch_one("SELECT * FROM t") is None


@pytest.mark.anyio("asyncio")
async def test_sqlalchemy_errors_become_database_errors(
    database: ReportingDatabase, engine: _FakeEngine
) -> None:
    engine.fail_on = lambda sql, params: True

    with pytest.raises(DatabaseError) as excinfo:
        await database.execute("DELETE FROM t")

    assert "relation does not exist" in str(excinfo.value)
    assert isinstance(excinfo.value.original, OperationalError)


@pytest.mark.anyio("asyncio")
async def test_call_procedure_reuses_given_connection(
    database: ReportingDatabase, engine: _FakeEngine
) -> None:
    engine.results.append([{"admit_data": 12}])

    async with database.transaction() as connection:
        value = await database.call_procedure(
            "admit_data", connection=connection, p_datasource_name="DS_A"
        )

    assert value == 12
    assert engine.transactions == 1
    sql, params = engine.executed[0]
    assert sql == "SELECT admit_data(p_datasource_name => :p_datasource_name)"
    assert params == {"p_datasource_name": "DS_A"}


@pytest.mark.anyio("asyncio")
async def test_insert_rows_batches_by_size(
    database: ReportingDatabase, engine: _FakeEngine
) -> None:
    rows = [{"policy_number": f"P{index}", "premium": index} for index in range(5)]

    inserted = await database.insert_rows("DS_POLICIES_RAW", rows, batch_size=2)

    assert inserted == 5
    assert [len(params) for _, params in engine.executed] == [2, 2, 1]
    sql, params = engine.executed[0]
    assert sql == (
        'INSERT INTO "DS_POLICIES_RAW" ("policy_number", "premium") '
        "VALUES (:p0, :p1)"
    )
    assert params[1] == {"p0": "P1", "p1": 1}


@pytest.mark.anyio("asyncio")
async def test_insert_rows_reports_failing_batch(
    database: ReportingDatabase, engine: _FakeEngine
) -> None:
    rows = [{"id": index} for index in range(6)]
    engine.fail_on = lambda sql, params: params[0]["p0"] == 4

    with pytest.raises(BatchInsertError) as excinfo:
        await database.insert_rows("DS_A_RAW", rows, batch_size=2)

    error = excinfo.value
    assert str(error) == "Failed to insert batch at row 5"
    assert error.start_row == 5
    assert error.sample_row == {"id": 4}
    assert isinstance(error.original, OperationalError)


@pytest.mark.anyio("asyncio")
async def test_insert_rows_validates_column_names(database: ReportingDatabase) -> None:
    with pytest.raises(InvalidIdentifierError):
        await database.insert_rows("DS_A_RAW", [{"bad column": 1}], batch_size=10)


@pytest.mark.anyio("asyncio")
async def test_insert_rows_without_rows_is_a_no_op(
    database: ReportingDatabase, engine: _FakeEngine
) -> None:
    assert await database.insert_rows("DS_A_RAW", [], batch_size=10) == 0
    assert engine.executed == []


@pytest.mark.anyio("asyncio")
async def test_select_rows_applies_limit_and_offset(
    database: ReportingDatabase, engine: _FakeEngine
) -> None:
    engine.results.append([{"id": 1}])

    rows = await database.select_rows("DS_A_ACTIVE", limit=10, offset=20)

    assert rows == [{"id": 1}]
    assert engine.executed[0] == (
        'SELECT * FROM "DS_A_ACTIVE" LIMIT :limit OFFSET :offset',
        {"limit": 10, "offset": 20},
    )


@pytest.mark.anyio("asyncio")
async def test_table_exists_and_count_rows(
    database: ReportingDatabase, engine: _FakeEngine
) -> None:
    engine.results.extend([[{"present": True}], [{"count": 3}]])

    assert await database.table_exists("DS_A_RAW") is True
    assert await database.count_rows("DS_A_RAW") == 3
    assert engine.executed == [
        ("SELECT to_regclass(:name) IS NOT NULL AS present", {"name": '"DS_A_RAW"'}),
        ('SELECT COUNT(*) AS count FROM "DS_A_RAW"', None),
    ]


@pytest.mark.anyio("asyncio")
async def test_dispose_closes_engine(
    database: ReportingDatabase, engine: _FakeEngine
) -> None:
    await database.dispose()

    assert engine.disposed
