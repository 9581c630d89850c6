"""
tests.test_api

HTTP surface: health probes, create/status/cancel and the admin clear.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from pathlib import Path

import httpx
import pytest
import pytest_asyncio
from conftest import FakeFeature, FakeProvider, make_settings

from cluster_provisioner.api.app import create_app


@pytest_asyncio.fixture
async def client(tmp_path: Path, provider: FakeProvider) -> AsyncIterator[httpx.AsyncClient]:
    app = create_app(settings=make_settings(tmp_path), provider=provider, feature=FakeFeature())

    # httpx ASGITransport does not manage lifespan automatically; do it explicitly.
    async with app.router.lifespan_context(app):
        transport = httpx.ASGITransport(app=app)
        async with httpx.AsyncClient(transport=transport, base_url="http://test") as http:
            yield http


@pytest.mark.asyncio
async def test_health_endpoints(client: httpx.AsyncClient) -> None:
    r = await client.get("/healthz")
    assert r.status_code == 200
    assert r.json()["status"] == "ok"
    assert "x-request-id" in r.headers

    r = await client.get("/readyz")
    assert r.status_code == 200
    assert r.json()["status"] == "ready"


@pytest.mark.asyncio
async def test_create_then_status(client: httpx.AsyncClient) -> None:
    r = await client.post("/v1/clusters", json={"name": "app-1", "tier": "M10"})
    assert r.status_code == 200
    request_id = r.json()["request_id"]

    r = await client.get(f"/v1/clusters/{request_id}")
    assert r.status_code == 200
    body = r.json()
    assert body["request_id"] == request_id
    assert body["name"] == "app-1"
    assert body["state"] in ("INITIALIZING", "CREATING")
    assert 0 <= body["progress_percent"] < 100
    assert body["status_message"]

    r = await client.get("/v1/clusters")
    assert [item["request_id"] for item in r.json()] == [request_id]


@pytest.mark.asyncio
async def test_create_rejections_are_400(client: httpx.AsyncClient) -> None:
    r = await client.post("/v1/clusters", json={"name": "bad name", "tier": "M10"})
    assert r.status_code == 400

    r = await client.post("/v1/clusters", json={"name": "app-1", "tier": "huge"})
    assert r.status_code == 400
    assert "M10" in r.json()["detail"]

    assert (await client.post("/v1/clusters", json={"name": "app-1", "tier": "M10"})).status_code == 200
    r = await client.post("/v1/clusters", json={"name": "app-1", "tier": "M10"})
    assert r.status_code == 400
    assert "already exists" in r.json()["detail"]


@pytest.mark.asyncio
async def test_unknown_request_is_404(client: httpx.AsyncClient) -> None:
    assert (await client.get("/v1/clusters/req-missing")).status_code == 404
    assert (await client.post("/v1/clusters/req-missing/cancel", json={})).status_code == 404


@pytest.mark.asyncio
async def test_cancel_is_accepted(client: httpx.AsyncClient, provider: FakeProvider) -> None:
    request_id = (await client.post("/v1/clusters", json={"name": "app-1", "tier": "M10"})).json()["request_id"]

    r = await client.post(f"/v1/clusters/{request_id}/cancel", json={"comment": "changed my mind"})
    assert r.status_code == 200
    assert r.json() == {"accepted": True}

    body = (await client.get(f"/v1/clusters/{request_id}")).json()
    assert body["state"] == "DELETING"
    assert body["cancelled"] is True

    # Cancelling again is accepted and changes nothing.
    r = await client.post(f"/v1/clusters/{request_id}/cancel")
    assert r.status_code == 200


@pytest.mark.asyncio
async def test_clear_all_requests(client: httpx.AsyncClient) -> None:
    await client.post("/v1/clusters", json={"name": "app-1", "tier": "M10"})
    await client.post("/v1/clusters", json={"name": "app-2", "tier": "M20"})

    r = await client.delete("/v1/clusters")
    assert r.status_code == 200
    assert r.json() == {"cleared": 2}
    assert (await client.get("/v1/clusters")).json() == []


@pytest.mark.asyncio
async def test_clear_is_not_exposed_in_prod(tmp_path: Path, provider: FakeProvider) -> None:
    app = create_app(settings=make_settings(tmp_path, env="prod"), provider=provider)
    async with app.router.lifespan_context(app):
        transport = httpx.ASGITransport(app=app)
        async with httpx.AsyncClient(transport=transport, base_url="http://test") as http:
            r = await http.delete("/v1/clusters")
            assert r.status_code == 405


# --- Module Notes -----------------------------------------------------------
# Provider calls go to the in-memory fake; see test_provider_client for HTTP decoding.
