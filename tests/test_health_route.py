"""Tests for the health check route."""

from fastapi import FastAPI
from fastapi.testclient import TestClient

from core.rate_limited_executor import RateLimiterService
from core.types import SourceConfig
from services.api.routes.health import router as health_router
from services.api.dependencies import get_rate_limiter


def _limiter() -> RateLimiterService:
    config = SourceConfig(
        max_requests_per_minute=10,
        max_requests_per_hour=100,
        max_concurrent=2,
        timeout_seconds=5,
        max_retries=1,
        circuit_breaker_threshold=3,
    )
    return RateLimiterService({"page-fetch": config, "ai-extractor": config})


def _create_test_app(limiter: RateLimiterService) -> FastAPI:
    app = FastAPI()

    async def _get_rate_limiter_override():
        return limiter

    app.dependency_overrides[get_rate_limiter] = _get_rate_limiter_override
    app.include_router(health_router, prefix="/api")
    return app


def test_health_check_success() -> None:
    app = _create_test_app(_limiter())

    with TestClient(app) as client:
        response = client.get("/api/health")

    assert response.status_code == 200
    payload = response.json()
    assert payload == {
        "status": "ok",
        "emergency_stop": False,
        "circuits": {"page-fetch": "closed", "ai-extractor": "closed"},
    }


def test_health_check_degraded_during_emergency_stop() -> None:
    limiter = _limiter()
    limiter.set_emergency_stop(True)
    app = _create_test_app(limiter)

    with TestClient(app) as client:
        response = client.get("/api/health")

    assert response.status_code == 200
    payload = response.json()
    assert payload["status"] == "degraded"
    assert payload["emergency_stop"] is True
