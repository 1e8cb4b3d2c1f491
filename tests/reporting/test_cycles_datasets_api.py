"""API tests for report cycles, data sets and SQL views."""

from __future__ import annotations

from datetime import date

import pytest
from httpx import AsyncClient

from repositories.reporting import DatasetPage
from shared.http.errors import ResourceNotFoundError


@pytest.mark.anyio("asyncio")
async def test_list_cycles(client: AsyncClient, repository) -> None:
    repository.cycles = [{"cycle_id": 1, "cycle_reference_id": "MONTHLY_20240131_1"}]

    response = await client.get("/cycles")

    assert response.status_code == 200
    assert response.json() == repository.cycles


@pytest.mark.anyio("asyncio")
async def test_create_cycle_returns_reference(client: AsyncClient, repository) -> None:
    response = await client.post(
        "/cycles", json={"cycleType": "MONTHLY", "cycleDate": "2024-01-31"}
    )

    assert response.status_code == 200
    assert response.json() == {
        "success": True,
        "message": "Cycle created successfully",
        "referenceId": "MONTHLY_20240131_1700000000000",
    }
    assert repository.called("create_cycle") == [
        ("create_cycle", "MONTHLY", date(2024, 1, 31))
    ]


@pytest.mark.anyio("asyncio")
async def test_create_cycle_validates_date(client: AsyncClient) -> None:
    response = await client.post(
        "/cycles", json={"cycleType": "MONTHLY", "cycleDate": "end of month"}
    )

    assert response.status_code == 422


@pytest.mark.anyio("asyncio")
async def test_close_cycle_moves_listed_datasources(client: AsyncClient, repository) -> None:
    response = await client.post(
        "/cycles/3/close",
        json={
            "cycleReferenceId": "MONTHLY_20240131_1",
            "datasourceNames": ["DS_POLICIES", "DS_CLAIMS"],
        },
    )

    assert response.status_code == 200
    assert response.json()["message"] == "Cycle 3 closed successfully"
    assert repository.called("close_cycle") == [
        ("close_cycle", "MONTHLY_20240131_1", ["DS_POLICIES", "DS_CLAIMS"])
    ]


@pytest.mark.anyio("asyncio")
async def test_create_and_list_datasets(client: AsyncClient, repository) -> None:
    repository.datasets = [{"dataset_id": "DSET_01", "dataset_name": "Bordereau"}]

    created = await client.post(
        "/datasets",
        json={"dataset_id": "DSET_01", "dataset_name": "Bordereau"},
    )
    listed = await client.get("/datasets")

    assert created.status_code == 200
    assert created.json()["message"] == "Dataset created successfully"
    assert repository.called("create_dataset") == [
        ("create_dataset", "DSET_01", "Bordereau", None)
    ]
    assert listed.json() == repository.datasets


@pytest.mark.anyio("asyncio")
async def test_query_dataset_returns_page(client: AsyncClient, repository) -> None:
    repository.dataset_page = DatasetPage(
        dataset={"dataset_id": "DSET_01", "dataset_name": "Bordereau"},
        view_name="BORDEREAU_QRY02",
        rows=[{"policy_number": "P0001"}],
        page=2,
        limit=1,
        total=3,
    )

    response = await client.get("/datasets/DSET_01/query", params={"page": 2, "limit": 1})

    assert response.status_code == 200
    payload = response.json()
    assert payload["viewName"] == "BORDEREAU_QRY02"
    assert payload["data"] == [{"policy_number": "P0001"}]
    assert payload["pagination"] == {
        "page": 2,
        "limit": 1,
        "total": 3,
        "totalPages": 3,
        "hasMore": True,
    }
    assert "generatedAt" in payload
    assert repository.called("query_dataset") == [("query_dataset", "DSET_01", 2, 1)]


@pytest.mark.anyio("asyncio")
async def test_query_dataset_uses_default_page_size(client: AsyncClient, repository) -> None:
    repository.dataset_page = DatasetPage(
        dataset={}, view_name="V_QRY02", rows=[], page=1, limit=1000, total=0
    )

    response = await client.get("/datasets/DSET_01/query")

    assert response.status_code == 200
    assert repository.called("query_dataset") == [("query_dataset", "DSET_01", 1, 1000)]


@pytest.mark.anyio("asyncio")
async def test_query_dataset_without_view(client: AsyncClient, repository) -> None:
    repository.errors["query_dataset"] = ResourceNotFoundError(
        "Dataset", "DSET_01", detail="No query view found for this dataset"
    )

    response = await client.get("/datasets/DSET_01/query")

    assert response.status_code == 404
    assert response.json()["detail"] == "No query view found for this dataset"


@pytest.mark.anyio("asyncio")
async def test_query_dataset_rejects_page_zero(client: AsyncClient) -> None:
    response = await client.get("/datasets/DSET_01/query", params={"page": 0})

    assert response.status_code == 422


@pytest.mark.anyio("asyncio")
async def test_create_view_returns_created(client: AsyncClient, repository) -> None:
    definition = "CREATE VIEW BORDEREAU_QRY02 AS SELECT * FROM DS_POLICIES_ACTIVE"

    response = await client.post(
        "/views",
        json={
            "viewName": "BORDEREAU_QRY02",
            "viewDefinition": definition,
            "datasetId": "DSET_01",
        },
    )

    assert response.status_code == 201
    assert response.json() == {"success": True, "message": "View created successfully"}
    assert repository.called("create_view") == [
        ("create_view", "BORDEREAU_QRY02", definition, "DSET_01")
    ]


@pytest.mark.anyio("asyncio")
async def test_list_views(client: AsyncClient, repository) -> None:
    repository.views = [
        {"view_name": "BORDEREAU_QRY02", "data_sets": {"dataset_name": "Bordereau"}}
    ]

    response = await client.get("/views")

    assert response.status_code == 200
    assert response.json() == repository.views
