"""
Tests for the /health endpoint.

Verifies:
  - Returns HTTP 200 with status="ok" (API liveness check)
  - Reports the database as connected / disconnected without raising
  - Root / endpoint returns API metadata

No lifespan runs under ASGITransport, so unless a test hangs a db_client on
app.state the database is reported as disconnected.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest


@pytest.fixture()
def db_client_state(app_state):
    yield app_state
    if hasattr(app_state, "db_client"):
        del app_state.db_client


@pytest.mark.asyncio
async def test_health_returns_200(client):
    """Health endpoint must always return 200 if the API process is alive."""
    response = await client.get("/health")
    assert response.status_code == 200


@pytest.mark.asyncio
async def test_health_response_schema(client):
    data = (await client.get("/health")).json()

    assert data["status"] == "ok"
    assert data["version"] == "0.1.0"
    assert data["environment"] == "test"
    assert data["database"] in ("connected", "disconnected")


@pytest.mark.asyncio
async def test_health_disconnected_when_no_db(client):
    data = (await client.get("/health")).json()
    assert data["database"] == "disconnected"


@pytest.mark.asyncio
async def test_health_connected_when_ping_succeeds(client, db_client_state):
    db_client = MagicMock()
    db_client.ping = AsyncMock(return_value=True)
    db_client_state.db_client = db_client

    data = (await client.get("/health")).json()
    assert data["database"] == "connected"


@pytest.mark.asyncio
async def test_health_survives_ping_error(client, db_client_state):
    db_client = MagicMock()
    db_client.ping = AsyncMock(side_effect=RuntimeError("server selection timeout"))
    db_client_state.db_client = db_client

    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json()["database"] == "disconnected"


@pytest.mark.asyncio
async def test_root_endpoint(client):
    """Root / must return API metadata with status=running."""
    data = (await client.get("/")).json()
    assert data["name"] == "HydroZen API"
    assert data["status"] == "running"


@pytest.mark.asyncio
async def test_health_lists_mock_services(client):
    data = (await client.get("/health")).json()
    assert data["mock_services"] == ["notifications", "storage", "telemetry", "verification"]
