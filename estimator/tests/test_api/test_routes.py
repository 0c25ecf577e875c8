"""
Tests for the v1 HTTP API.

The router is mounted on a bare FastAPI app with the database, storage,
redis and settings dependencies overridden by the in-memory test doubles.
"""

import uuid

import httpx
import pytest
import pytest_asyncio
from fastapi import FastAPI

from estimator.app.api.deps import get_app_settings, get_db, get_redis, get_storage_service
from estimator.app.api.v1 import router as api_v1_router


@pytest_asyncio.fixture
async def client(db_session, mock_storage, mock_redis, test_settings):
    app = FastAPI()
    app.include_router(api_v1_router)

    async def override_db():
        yield db_session

    app.dependency_overrides[get_db] = override_db
    app.dependency_overrides[get_storage_service] = lambda: mock_storage
    app.dependency_overrides[get_redis] = lambda: mock_redis
    app.dependency_overrides[get_app_settings] = lambda: test_settings

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as http_client:
        yield http_client


async def create_estimate(client, name="Office building"):
    response = await client.post("/api/v1/estimates", json={"name": name, "organization_id": 7})
    assert response.status_code == 201
    return response.json()["id"]


async def create_section(client, estimate_id, name, **extra):
    response = await client.post(
        f"/api/v1/estimates/{estimate_id}/sections", json={"name": name, **extra}
    )
    assert response.status_code == 201, response.text
    return response.json()


class TestEstimateRoutes:
    @pytest.mark.asyncio
    async def test_create_and_get(self, client):
        estimate_id = await create_estimate(client)

        response = await client.get(f"/api/v1/estimates/{estimate_id}")

        assert response.status_code == 200
        assert response.json()["name"] == "Office building"

    @pytest.mark.asyncio
    async def test_unknown_estimate(self, client):
        assert (await client.get("/api/v1/estimates/9999")).status_code == 404
        assert (await client.get("/api/v1/estimates/9999/sections")).status_code == 404


class TestSectionRoutes:
    @pytest.mark.asyncio
    async def test_section_lifecycle(self, client, mock_redis):
        estimate_id = await create_estimate(client)
        a = await create_section(client, estimate_id, "A")
        b = await create_section(client, estimate_id, "B")
        c = await create_section(client, estimate_id, "C", sort_order=0)
        assert c["section_number"] == "1"

        response = await client.get(f"/api/v1/estimates/{estimate_id}/sections")
        numbers = {s["name"]: s["section_number"] for s in response.json()}
        assert numbers == {"C": "1", "A": "2", "B": "3"}

        moved = await client.post(
            f"/api/v1/estimates/{estimate_id}/sections/{b['id']}/move",
            json={"parent_section_id": a["id"]},
        )
        assert moved.status_code == 200
        assert moved.json()["section_number"] == "2.1"

        deleted = await client.delete(f"/api/v1/estimates/{estimate_id}/sections/{c['id']}")
        assert deleted.json()["deleted_sections"] == 1

        report = await client.get(f"/api/v1/estimates/{estimate_id}/numbering")
        assert report.json()["is_valid"] is True
        assert mock_redis._notifications
        assert all(job_type == "GENERATE_SNAPSHOT" for _, job_type in mock_redis._notifications)

    @pytest.mark.asyncio
    async def test_cycle_rejected_with_conflict(self, client):
        estimate_id = await create_estimate(client)
        a = await create_section(client, estimate_id, "A")
        child = await create_section(client, estimate_id, "A1", parent_section_id=a["id"])

        response = await client.post(
            f"/api/v1/estimates/{estimate_id}/sections/{a['id']}/move",
            json={"parent_section_id": child["id"]},
        )

        assert response.status_code == 409
        assert response.json()["detail"]["error_type"] == "StructureInvariantError"

    @pytest.mark.asyncio
    async def test_rename(self, client):
        estimate_id = await create_estimate(client)
        a = await create_section(client, estimate_id, "A")

        response = await client.patch(
            f"/api/v1/estimates/{estimate_id}/sections/{a['id']}", json={"name": "Renamed"}
        )

        assert response.status_code == 200
        assert response.json()["name"] == "Renamed"
        assert response.json()["section_number"] == "1"

    @pytest.mark.asyncio
    async def test_renumber(self, client):
        estimate_id = await create_estimate(client)
        await create_section(client, estimate_id, "A")

        response = await client.post(f"/api/v1/estimates/{estimate_id}/renumber")

        assert response.json() == {"estimate_id": estimate_id, "changed_sections": 0}


class TestItemAndSnapshotRoutes:
    @pytest.mark.asyncio
    async def test_create_item(self, client):
        estimate_id = await create_estimate(client)
        section = await create_section(client, estimate_id, "A")

        response = await client.post(
            f"/api/v1/estimates/{estimate_id}/items",
            json={"name": "Excavation", "section_id": section["id"], "quantity": "2.5"},
        )

        assert response.status_code == 201
        body = response.json()
        assert body["position_number"] == 1
        assert body["classification_source"] == "unclassified"

    @pytest.mark.asyncio
    async def test_snapshot_trigger_and_missing_snapshot(self, client):
        estimate_id = await create_estimate(client)

        first = await client.post(f"/api/v1/estimates/{estimate_id}/snapshot")
        second = await client.post(f"/api/v1/estimates/{estimate_id}/snapshot")

        assert first.status_code == 202
        assert first.json()["id"] == second.json()["id"]
        assert (await client.get(f"/api/v1/estimates/{estimate_id}/snapshot")).status_code == 404


class TestImportRoutes:
    @pytest.mark.asyncio
    async def test_upload_and_cancel(self, client, mock_storage, mock_redis, workbook_bytes):
        estimate_id = await create_estimate(client)

        response = await client.post(
            f"/api/v1/estimates/{estimate_id}/imports",
            files={"file": ("estimate.xlsx", workbook_bytes([]), "application/octet-stream")},
        )

        assert response.status_code == 202
        body = response.json()
        session_id = body["session"]["id"]
        assert body["session"]["status"] == "PENDING"
        assert len(mock_storage.keys) == 1
        assert (body["job_id"], "IMPORT_CLASSIFY") in mock_redis._notifications

        listed = await client.get(f"/api/v1/estimates/{estimate_id}/imports")
        assert [s["id"] for s in listed.json()] == [session_id]

        cancelled = await client.post(f"/api/v1/imports/{session_id}/cancel")
        assert cancelled.json()["status"] == "FAILED"

    @pytest.mark.asyncio
    async def test_upload_rejections(self, client):
        estimate_id = await create_estimate(client)

        wrong_type = await client.post(
            f"/api/v1/estimates/{estimate_id}/imports",
            files={"file": ("estimate.csv", b"a,b", "text/csv")},
        )
        no_estimate = await client.post(
            "/api/v1/estimates/9999/imports",
            files={"file": ("estimate.xlsx", b"data", "application/octet-stream")},
        )

        assert wrong_type.status_code == 400
        assert no_estimate.status_code == 404

    @pytest.mark.asyncio
    async def test_unknown_session(self, client):
        response = await client.get(f"/api/v1/imports/{uuid.uuid4()}")
        assert response.status_code == 404


class TestJobRoutes:
    @pytest.mark.asyncio
    async def test_list_count_and_cancel(self, client):
        estimate_id = await create_estimate(client)
        job = (await client.post(f"/api/v1/estimates/{estimate_id}/snapshot")).json()

        listed = await client.get("/api/v1/jobs", params={"estimate_id": estimate_id})
        assert [j["id"] for j in listed.json()] == [job["id"]]

        counts = await client.get("/api/v1/jobs/counts")
        assert counts.json()["pending"] == 1

        cancelled = await client.post(f"/api/v1/jobs/{job['id']}/cancel")
        assert cancelled.status_code == 200
        again = await client.post(f"/api/v1/jobs/{job['id']}/cancel")
        assert again.status_code == 400
        missing = await client.post(f"/api/v1/jobs/{uuid.uuid4()}/cancel")
        assert missing.status_code == 404
