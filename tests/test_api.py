"""HTTP tests for the FastAPI app."""

import httpx
import pytest
import pytest_asyncio
from sqlalchemy import func, select

from marketplace import models
from marketplace.api import app

HEADERS = {"X-User-Id": "u-1", "X-Org-Id": "buyer-acme"}


@pytest_asyncio.fixture
async def client(session_factory, catalog):
    app.state.session_factory = session_factory
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
    del app.state.session_factory


async def submit(client, payload, **params):
    return await client.post("/intakes", json=payload, headers=HEADERS, params=params)


class TestHealth:
    @pytest.mark.asyncio
    async def test_health(self, client):
        response = await client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "ok"
        assert response.json()["database"] == "configured"


class TestIntakes:
    """Intake endpoints."""

    @pytest.mark.asyncio
    async def test_create_intake(self, client):
        response = await submit(client, {"category": "six axis", "payloadKg": 10, "integration": "PLC"})

        assert response.status_code == 201
        body = response.json()
        assert body["status"] == "MATCHED"
        assert body["requirement"]["category"] == "SixAxis"
        assert [m["rank"] for m in body["matches"]] == [1, 2, 3]
        assert body["matches"][0]["product_id"] == "p-arm-10"
        assert {c["rule_id"] for c in body["matches"][0]["criteria"]} >= {"category_match", "payload", "integration"}
        assert body["matches"][0]["sla"]["uptime_guarantee"] == 97.0

    @pytest.mark.asyncio
    async def test_max_results_query(self, client):
        response = await submit(client, {"category": "SixAxis"}, max_results=1)

        assert len(response.json()["matches"]) == 1

    @pytest.mark.asyncio
    async def test_missing_identity_headers(self, client):
        response = await client.post("/intakes", json={"category": "SixAxis"})

        assert response.status_code == 400
        assert set(response.json()["fields"]) == {"X-User-Id", "X-Org-Id"}

    @pytest.mark.asyncio
    async def test_invalid_requirement(self, client):
        response = await submit(client, {"category": "submarine", "payload_kg": -5})

        assert response.status_code == 400
        body = response.json()
        assert body["error"] == "validation_error"
        assert set(body["fields"]) == {"category", "payload_kg"}

    @pytest.mark.asyncio
    async def test_get_intake(self, client):
        intake_id = (await submit(client, {"category": "SixAxis", "payloadKg": 10})).json()["intake_id"]

        response = await client.get(f"/intakes/{intake_id}")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "MATCHED"
        assert [m["product_id"] for m in body["matches"]] == ["p-arm-10", "p-unverified", "p-arm-50"]

    @pytest.mark.asyncio
    async def test_unknown_intake(self, client):
        response = await client.get("/intakes/missing")

        assert response.status_code == 404
        assert response.json()["error"] == "intake_not_found"

    @pytest.mark.asyncio
    async def test_rematch_conflicts_when_matched(self, client):
        intake_id = (await submit(client, {"category": "SCARA"})).json()["intake_id"]

        response = await client.post(f"/intakes/{intake_id}/rematch")

        assert response.status_code == 409

    @pytest.mark.asyncio
    async def test_rematch_unknown_intake(self, client):
        assert (await client.post("/intakes/missing/rematch")).status_code == 404


class TestRecommendations:
    """Recommendation and tracking endpoints."""

    @pytest.mark.asyncio
    async def test_recommendations_logged(self, client, session):
        response = await client.get("/recommendations", params={"algorithm": "trending", "limit": "2"}, headers=HEADERS)

        assert response.status_code == 200
        body = response.json()
        assert body["limit"] == 2
        assert body["count"] == 2
        assert [r["product_id"] for r in body["recommendations"]] == ["p-amr", "p-arm-10"]
        assert body["recommendations"][0]["algorithm"] == "popular"

        logs = (await session.execute(select(models.RecommendationLog))).scalars().all()
        assert [log.product_ids for log in logs] == [["p-amr", "p-arm-10"]]

    @pytest.mark.asyncio
    async def test_exclusions_and_default_limit(self, client):
        response = await client.get(
            "/recommendations", params=[("exclude", "p-amr"), ("exclude", "p-scara")], headers=HEADERS
        )

        body = response.json()
        assert body["limit"] == 10
        assert [r["product_id"] for r in body["recommendations"]] == ["p-arm-10", "p-arm-50"]

    @pytest.mark.asyncio
    async def test_unknown_algorithm(self, client):
        response = await client.get("/recommendations", params={"algorithm": "magic"}, headers=HEADERS)

        assert response.status_code == 400
        assert "algorithm" in response.json()["fields"]

    @pytest.mark.asyncio
    async def test_non_integer_limit(self, client):
        response = await client.get("/recommendations", params={"limit": "ten"}, headers=HEADERS)

        assert response.status_code == 400
        assert "limit" in response.json()["fields"]

    @pytest.mark.asyncio
    async def test_track_view(self, client, session):
        response = await client.post("/products/p-amr/views", json={"source": "search"}, headers=HEADERS)

        assert response.status_code == 201
        assert response.json()["product_id"] == "p-amr"
        assert (await session.execute(select(func.count()).select_from(models.ProductView))).scalar_one() == 1

    @pytest.mark.asyncio
    async def test_track_view_of_draft_product(self, client):
        response = await client.post("/products/p-draft/views", json={}, headers=HEADERS)

        assert response.status_code == 404
        assert response.json()["error"] == "product_not_found"

    @pytest.mark.asyncio
    async def test_click_attribution(self, client):
        served = await client.get("/recommendations", params={"algorithm": "trending"}, headers=HEADERS)
        product_id = served.json()["recommendations"][0]["product_id"]

        response = await client.post("/recommendations/clicks", json={"product_id": product_id}, headers=HEADERS)

        assert response.status_code == 200
        assert response.json()["attributed"] is True

    @pytest.mark.asyncio
    async def test_click_without_served_list(self, client):
        response = await client.post("/recommendations/clicks", json={"product_id": "p-amr"}, headers=HEADERS)

        assert response.json()["attributed"] is False
