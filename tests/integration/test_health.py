"""Tests for health check endpoints."""

import pytest
from httpx import AsyncClient

from rollbook.config import Settings
from rollbook.core.database import close_db, init_db
from rollbook.services.search import set_search_service


@pytest.mark.asyncio
async def test_liveness_probe(async_client: AsyncClient) -> None:
    """Test that liveness probe returns OK."""
    response = await async_client.get("/health/live")

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "ok"


@pytest.mark.asyncio
async def test_readiness_probe(
    async_client: AsyncClient, test_settings: Settings
) -> None:
    """Test that readiness probe checks the database and reports the cache."""
    await init_db(test_settings)
    try:
        response = await async_client.get("/health/ready")
    finally:
        await close_db()

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "ok"
    assert data["checks"] == {"database": "ok", "cache": "empty"}


@pytest.mark.asyncio
async def test_readiness_without_database(async_client: AsyncClient) -> None:
    """Test that readiness reports an uninitialized database as an error."""
    response = await async_client.get("/health/ready")

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "error"
    assert data["checks"]["database"] == "error"


@pytest.mark.asyncio
async def test_readiness_without_search_service(async_client: AsyncClient) -> None:
    """Test the cache check before the search service is registered."""
    set_search_service(None)

    response = await async_client.get("/health/ready")

    assert response.json()["checks"]["cache"] == "unavailable"


@pytest.mark.asyncio
async def test_root_endpoint(async_client: AsyncClient) -> None:
    """Test that root endpoint returns service info."""
    response = await async_client.get("/")

    assert response.status_code == 200
    data = response.json()
    assert data["service"] == "Rollbook"
    assert "version" in data
    assert data["docs"] == "/docs"
    assert data["health"] == "/health/live"


@pytest.mark.asyncio
async def test_request_id_header(async_client: AsyncClient) -> None:
    """Test that response includes X-Request-ID header."""
    response = await async_client.get("/health/live")

    assert response.status_code == 200
    assert "X-Request-ID" in response.headers


@pytest.mark.asyncio
async def test_custom_request_id(async_client: AsyncClient) -> None:
    """Test that custom X-Request-ID is echoed back."""
    custom_id = "test-request-id-12345"
    response = await async_client.get(
        "/health/live", headers={"X-Request-ID": custom_id}
    )

    assert response.status_code == 200
    assert response.headers["X-Request-ID"] == custom_id
