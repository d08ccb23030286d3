"""Tests for the student, routing and cache API endpoints.

Tests /api/v1/students, /api/v1/routing and /api/v1/cache against the
in-memory store and registry doubles.
"""

import pytest
from httpx import AsyncClient

from rollbook.services.directory_cache import DirectoryCache

# =============================================================================
# Student Lookups
# =============================================================================


class TestPointLookups:
    """Tests for GET /api/v1/students/admission and /roll."""

    @pytest.mark.asyncio
    async def test_admission_number_found(self, async_client: AsyncClient) -> None:
        """Test a lookup that smart-loads the routed partition."""
        response = await async_client.get("/api/v1/students/admission/22015112001")

        assert response.status_code == 200
        data = response.json()
        assert data["found"] is True
        assert data["smart_loaded"] is True
        assert data["partition_name"] == "students_cse_1"
        assert data["student"]["name"] == "Asha Reddy"
        assert data["student"]["roll_number"] == "22B81A0501"

    @pytest.mark.asyncio
    async def test_admission_number_not_found(
        self, async_client: AsyncClient
    ) -> None:
        """Test that not found is a 200 with found=false."""
        response = await async_client.get("/api/v1/students/admission/invalid123")

        assert response.status_code == 200
        data = response.json()
        assert data["found"] is False
        assert data["student"] is None
        assert data["error"] == "Student not found"

    @pytest.mark.asyncio
    async def test_roll_number(self, async_client: AsyncClient) -> None:
        """Test a roll number lookup through a full load."""
        response = await async_client.get("/api/v1/students/roll/22B81A0561")

        assert response.status_code == 200
        data = response.json()
        assert data["found"] is True
        assert data["student"]["admission_number"] == "22015212001"
        assert data["department"] == "CSE (Section 2)"


class TestBatchSearch:
    """Tests for POST /api/v1/students/batch-search."""

    @pytest.mark.asyncio
    async def test_every_input_is_accounted_for(
        self, async_client: AsyncClient
    ) -> None:
        """Test that found, not_found and errors add up to the input."""
        ids = ["22015112001", "22015112001", "invalid123", "22017112001"]

        response = await async_client.post(
            "/api/v1/students/batch-search", json={"admission_numbers": ids}
        )

        assert response.status_code == 200
        data = response.json()
        assert data["summary"] == {
            "total": 4,
            "found": 3,
            "not_found": 1,
            "errors": 0,
        }
        assert data["method"] == "direct"
        assert data["reason"] == "Cache needs refresh"
        assert [m["identifier"] for m in data["not_found"]] == ["invalid123"]

    @pytest.mark.asyncio
    async def test_forced_cached_method(self, async_client: AsyncClient) -> None:
        """Test that the caller can force the cached path."""
        response = await async_client.post(
            "/api/v1/students/batch-search",
            json={"admission_numbers": ["22015112001"], "method": "cached"},
        )

        assert response.status_code == 200
        data = response.json()
        assert data["method"] == "cached"
        assert data["found"][0]["from_cache"] is True

    @pytest.mark.asyncio
    async def test_empty_batch_is_rejected(self, async_client: AsyncClient) -> None:
        """Test request validation of the id list."""
        response = await async_client.post(
            "/api/v1/students/batch-search", json={"admission_numbers": []}
        )

        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_unknown_method_is_rejected(self, async_client: AsyncClient) -> None:
        """Test that only cached and direct are accepted."""
        response = await async_client.post(
            "/api/v1/students/batch-search",
            json={"admission_numbers": ["22015112001"], "method": "fastest"},
        )

        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_both_paths_down_is_503(
        self, async_client: AsyncClient, store
    ) -> None:
        """Test the error response when no path can answer."""
        store.fail_all = True

        response = await async_client.post(
            "/api/v1/students/batch-search",
            json={"admission_numbers": ["22015112001"]},
        )

        assert response.status_code == 503
        error = response.json()["error"]
        assert error["code"] == "SEARCH_UNAVAILABLE"
        assert error["details"]["attempted"] == "direct, cached"

    @pytest.mark.asyncio
    async def test_roll_number_batch(self, async_client: AsyncClient) -> None:
        """Test POST /api/v1/students/batch-search/roll."""
        response = await async_client.post(
            "/api/v1/students/batch-search/roll",
            json={"roll_numbers": ["22B81A0501", "22B81A1201", "22B81A9999"]},
        )

        assert response.status_code == 200
        data = response.json()
        assert data["summary"]["found"] == 2
        assert data["summary"]["not_found"] == 1


# =============================================================================
# Routing
# =============================================================================


class TestRoutingEndpoints:
    """Tests for /api/v1/routing."""

    @pytest.mark.asyncio
    async def test_route_valid(self, async_client: AsyncClient) -> None:
        """Test routing a valid admission number."""
        response = await async_client.get("/api/v1/routing/220114112001")

        assert response.status_code == 200
        data = response.json()
        assert data["is_valid"] is True
        assert data["partition_name"] == "students_aids_1"
        assert data["parsed"]["section_code"] == "141"
        assert data["parsed"]["department"]["short_name"] == "AIDS"

    @pytest.mark.asyncio
    async def test_route_invalid_lenient(self, async_client: AsyncClient) -> None:
        """Test that an invalid number is reported, not rejected, by default."""
        response = await async_client.get("/api/v1/routing/invalid123")

        assert response.status_code == 200
        data = response.json()
        assert data["is_valid"] is False
        assert data["partition_name"] is None
        assert data["valid_department_codes"]

    @pytest.mark.asyncio
    async def test_route_invalid_strict(self, async_client: AsyncClient) -> None:
        """Test that strict mode rejects unroutable numbers with 400."""
        response = await async_client.get(
            "/api/v1/routing/invalid123", params={"strict": "true"}
        )

        assert response.status_code == 400
        error = response.json()["error"]
        assert error["code"] == "INVALID_ADMISSION_NUMBER"
        assert error["details"]["admission_number"] == "invalid123"

    @pytest.mark.asyncio
    async def test_analyze(self, async_client: AsyncClient) -> None:
        """Test batch routing analysis."""
        response = await async_client.post(
            "/api/v1/routing/analyze",
            json={"admission_numbers": ["22015112001", "22015212001", "bad"]},
        )

        assert response.status_code == 200
        data = response.json()
        assert data["routable"] == 2
        assert data["unroutable"] == ["bad"]
        assert data["distribution"] == {"students_cse_1": 1, "students_cse_2": 1}


# =============================================================================
# Cache Management
# =============================================================================


class TestCacheEndpoints:
    """Tests for /api/v1/cache."""

    @pytest.mark.asyncio
    async def test_preload(self, async_client: AsyncClient) -> None:
        """Test warming the cache."""
        response = await async_client.post("/api/v1/cache/preload")

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["stats"]["total_records"] == 7
        assert data["stats"]["state"] == "ready_fresh"

    @pytest.mark.asyncio
    async def test_refresh(self, async_client: AsyncClient, store) -> None:
        """Test a forced reload with a failing partition."""
        store.failing.add("students_ece_1")

        response = await async_client.post("/api/v1/cache/refresh")

        assert response.status_code == 200
        data = response.json()
        assert data["total_records"] == 6
        assert data["partitions_loaded"] == 4
        assert data["failed_partitions"] == ["students_ece_1"]

    @pytest.mark.asyncio
    async def test_refresh_registry_down_is_503(
        self, async_client: AsyncClient, registry
    ) -> None:
        """Test that a registry outage surfaces as 503."""
        registry.fail = True

        response = await async_client.post("/api/v1/cache/refresh")

        assert response.status_code == 503
        assert response.json()["error"]["code"] == "PARTITION_REGISTRY_UNAVAILABLE"

    @pytest.mark.asyncio
    async def test_clear(
        self, async_client: AsyncClient, cache: DirectoryCache
    ) -> None:
        """Test clearing a loaded cache."""
        await cache.load_all()

        response = await async_client.delete("/api/v1/cache")

        assert response.status_code == 200
        data = response.json()
        assert data["total_records"] == 0
        assert data["state"] == "empty"
        assert len(cache) == 0

    @pytest.mark.asyncio
    async def test_stats(self, async_client: AsyncClient) -> None:
        """Test the stats envelope after one monitored lookup."""
        await async_client.get("/api/v1/students/admission/22015112001")

        response = await async_client.get("/api/v1/cache/stats")

        assert response.status_code == 200
        data = response.json()
        assert data["cache"]["total_records"] == 2
        assert data["cache"]["partitions_loaded"] == ["students_cse_1"]
        assert data["performance"]["operations"] == 1

    @pytest.mark.asyncio
    async def test_health(self, async_client: AsyncClient) -> None:
        """Test the cache health report on a cold cache."""
        response = await async_client.get("/api/v1/cache/health")

        assert response.status_code == 200
        data = response.json()
        assert data["is_healthy"] is False
        assert data["recommendation"] == "Cache not loaded - performance may be slow"
