"""Tests for the FastAPI application, middleware, and exception handlers."""

import pytest
from httpx import ASGITransport, AsyncClient

from nexus_quota.core.config import settings
from nexus_quota.core.errors import (
    InsufficientCreditsError,
    NotFoundError,
    QuotaExceededError,
    ValidationError,
)
from nexus_quota.main import create_app


@pytest.fixture
def app():
    """Create test application instance."""
    return create_app()


@pytest.fixture
async def client(app):
    """Create async HTTP client for testing."""
    transport = ASGITransport(app=app, raise_app_exceptions=False)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


class TestHealthEndpoint:
    """Tests for health check endpoint."""

    async def test_health_returns_healthy_status(self, client):
        response = await client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "healthy"}

    async def test_v1_router_mounted(self, client):
        """Unknown v1 paths are 404, not a routing failure."""
        response = await client.get("/api/v1/nonexistent")
        assert response.status_code == 404


class TestExceptionHandlers:
    """Custom exceptions are rendered in the error envelope."""

    async def test_validation_error_returns_400(self, app, client):
        @app.get("/test/validation-error")
        async def raise_validation_error():
            raise ValidationError("Invalid input", details=[{"field": "test"}])

        response = await client.get("/test/validation-error")

        assert response.status_code == 400
        assert response.json()["error"] == {
            "code": "VALIDATION_ERROR",
            "message": "Invalid input",
            "details": [{"field": "test"}],
        }

    async def test_not_found_has_no_data_key(self, app, client):
        @app.get("/test/not-found")
        async def raise_not_found():
            raise NotFoundError("Item")

        data = (await client.get("/test/not-found")).json()

        assert data["error"]["code"] == "NOT_FOUND"
        assert "data" not in data

    async def test_quota_errors_carry_details(self, app, client):
        @app.get("/test/credits")
        async def raise_insufficient():
            raise InsufficientCreditsError(available=3, required=15)

        response = await client.get("/test/credits")

        assert response.status_code == 402
        detail = response.json()["error"]["details"][0]
        assert detail["available"] == 3
        assert detail["upgrade_path"] == "/plans"

    async def test_daily_limit_serializes_reset_time(self, app, client):
        from datetime import UTC, datetime

        @app.get("/test/daily")
        async def raise_exceeded():
            raise QuotaExceededError(
                requests_used=20,
                requests_max=20,
                resets_at=datetime(2026, 3, 1, 15, 0, tzinfo=UTC),
            )

        response = await client.get("/test/daily")

        assert response.status_code == 429
        detail = response.json()["error"]["details"][0]
        assert detail["requests_remaining"] == 0
        assert detail["resets_at"] == "2026-03-01T15:00:00+00:00"

    async def test_request_validation_uses_envelope(self, app, client):
        @app.get("/test/query")
        async def needs_int(count: int):
            return {"count": count}

        response = await client.get("/test/query", params={"count": "many"})

        assert response.status_code == 400
        error = response.json()["error"]
        assert error["code"] == "VALIDATION_ERROR"
        assert error["details"][0]["loc"] == ["query", "count"]

    async def test_unhandled_exception_returns_generic_500(self, app, client):
        @app.get("/test/boom")
        async def boom():
            raise RuntimeError("connection to db-primary-01 refused")

        response = await client.get("/test/boom")

        assert response.status_code == 500
        error = response.json()["error"]
        assert error["code"] == "INTERNAL_ERROR"
        assert "db-primary-01" not in error["message"]


class TestSecurityHeaders:
    """Security headers on every response."""

    async def test_common_headers(self, client):
        response = await client.get("/health")

        assert response.headers["X-Frame-Options"] == "DENY"
        assert response.headers["X-Content-Type-Options"] == "nosniff"
        assert "Strict-Transport-Security" not in response.headers

    async def test_api_responses_are_not_cached(self, client):
        response = await client.get("/api/v1/nonexistent")
        assert response.headers["Cache-Control"] == "no-store, max-age=0"

    async def test_health_is_cacheable(self, client):
        response = await client.get("/health")
        assert "Cache-Control" not in response.headers

    async def test_hsts_in_production(self, client, monkeypatch):
        monkeypatch.setattr(settings, "environment", "production")

        response = await client.get("/health")

        assert "max-age=31536000" in response.headers["Strict-Transport-Security"]


class TestCORSMiddleware:
    """CORS honors the configured origins."""

    async def test_preflight_for_configured_origin(self, client):
        origin = settings.allowed_origins[0]

        response = await client.options(
            "/api/v1/quota",
            headers={
                "Origin": origin,
                "Access-Control-Request-Method": "POST",
            },
        )

        assert response.headers["access-control-allow-origin"] == origin

    async def test_preflight_allows_billing_secret_header(self, client):
        response = await client.options(
            "/api/v1/billing/events",
            headers={
                "Origin": settings.allowed_origins[0],
                "Access-Control-Request-Method": "POST",
                "Access-Control-Request-Headers": "X-Billing-Secret",
            },
        )

        assert response.status_code == 200
        assert "x-billing-secret" in response.headers[
            "access-control-allow-headers"
        ].lower()
