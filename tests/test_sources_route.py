"""Tests for the source administration and product resolution routes."""

from __future__ import annotations

from typing import Optional

from fastapi import FastAPI
from fastapi.testclient import TestClient

from core.product_resolver import ProductResolver
from core.rate_limited_executor import RateLimiterService
from core.types import ExtractionMethod, ResolvedProduct, SourceConfig
from services.api.config import Settings, get_settings
from services.api.dependencies import (
    get_crawl_client,
    get_rate_limiter,
    get_resolver,
    get_source_wrappers,
)
from services.api.routes.products import router as products_router
from services.api.routes.sources import router as sources_router

ADMIN = {"X-Admin-Token": "secret"}


def _config(**overrides) -> SourceConfig:
    values = dict(
        max_requests_per_minute=10,
        max_requests_per_hour=100,
        max_concurrent=2,
        timeout_seconds=5,
        max_retries=1,
        circuit_breaker_threshold=3,
        cost_per_request=0.01,
    )
    values.update(overrides)
    return SourceConfig(**values)


class _Wrapper:
    def __init__(self, source_name: str, available: bool, reason: Optional[str] = None) -> None:
        self.source_name = source_name
        self.available = available
        self.unavailable_reason = reason

    def is_available(self) -> bool:
        return self.available


class _Crawl(_Wrapper):
    def __init__(self, available: bool = True, credits: Optional[int] = 120) -> None:
        super().__init__("crawl-service", available)
        self.credits = credits

    async def check_credits(self) -> Optional[int]:
        return self.credits


class _Resolver:
    def __init__(self) -> None:
        self.calls = []

    async def resolve_product(self, url: str, accept_partial: bool = False) -> ResolvedProduct:
        self.calls.append((url, accept_partial))
        return ResolvedProduct(
            url=url,
            name="Fone Bluetooth JBL",
            price=199.9,
            store="Mercado Livre",
            extraction_method=ExtractionMethod.CATALOG_API,
        )


def _create_test_app(
    limiter: Optional[RateLimiterService] = None,
    crawl: Optional[_Crawl] = None,
    resolver=None,
    admin_token: Optional[str] = "secret",
) -> FastAPI:
    app = FastAPI()
    limiter = limiter or RateLimiterService(
        {"ai-extractor": _config(), "crawl-service": _config(cost_per_request=0.05)}
    )
    crawl = crawl or _Crawl()
    wrappers = {
        "ai-extractor": _Wrapper("ai-extractor", False, "GEMINI_API_KEY is not set"),
        "crawl-service": crawl,
    }

    async def _get_rate_limiter_override():
        return limiter

    async def _get_wrappers_override():
        return wrappers

    async def _get_crawl_override():
        return crawl

    async def _get_resolver_override():
        return resolver or _Resolver()

    app.dependency_overrides[get_rate_limiter] = _get_rate_limiter_override
    app.dependency_overrides[get_source_wrappers] = _get_wrappers_override
    app.dependency_overrides[get_crawl_client] = _get_crawl_override
    app.dependency_overrides[get_resolver] = _get_resolver_override
    app.dependency_overrides[get_settings] = lambda: Settings(admin_token=admin_token)
    app.include_router(sources_router, prefix="/api")
    app.include_router(products_router, prefix="/api")
    app.state.limiter = limiter
    return app


def test_stats_for_all_and_single_source() -> None:
    app = _create_test_app()

    with TestClient(app) as client:
        all_stats = client.get("/api/sources/stats")
        single = client.get("/api/sources/stats/crawl-service")
        missing = client.get("/api/sources/stats/unknown")

    assert all_stats.status_code == 200
    assert set(all_stats.json()) == {"ai-extractor", "crawl-service"}
    assert single.status_code == 200
    assert single.json()["circuit_state"] == "closed"
    assert single.json()["total_requests"] == 0
    assert missing.status_code == 404


def test_queue_and_cost() -> None:
    app = _create_test_app()

    with TestClient(app) as client:
        queue = client.get("/api/sources/queue")
        cost = client.get("/api/sources/cost")

    assert queue.json()["ai-extractor"]["length"] == 0
    assert cost.json() == {
        "total_cost": 0.0,
        "max_daily_cost": 10.0,
        "emergency_stop": False,
        "by_source": {"ai-extractor": 0.0, "crawl-service": 0.0},
    }


def test_availability_reports_wrapper_state() -> None:
    app = _create_test_app()

    with TestClient(app) as client:
        response = client.get("/api/sources/availability")

    payload = response.json()
    assert payload["ai-extractor"] == {
        "available": False,
        "reason": "GEMINI_API_KEY is not set",
        "circuit_state": "closed",
    }
    assert payload["crawl-service"]["available"] is True


def test_emergency_stop_requires_admin_token() -> None:
    app = _create_test_app()
    limiter = app.state.limiter

    with TestClient(app) as client:
        denied = client.post("/api/sources/emergency-stop", json={"active": True})
        wrong = client.post(
            "/api/sources/emergency-stop", json={"active": True}, headers={"X-Admin-Token": "nope"}
        )
        assert limiter.is_emergency_active() is False

        allowed = client.post("/api/sources/emergency-stop", json={"active": True}, headers=ADMIN)
        assert limiter.is_emergency_active() is True

        cleared = client.post("/api/sources/emergency-stop", json={"active": False}, headers=ADMIN)

    assert denied.status_code == 401
    assert wrong.status_code == 401
    assert allowed.json() == {"emergency_stop": True}
    assert cleared.json() == {"emergency_stop": False}


def test_admin_routes_unavailable_without_configured_token() -> None:
    app = _create_test_app(admin_token=None)
    limiter = app.state.limiter
    limiter.set_emergency_stop(True)

    with TestClient(app) as client:
        cleared = client.post(
            "/api/sources/emergency-stop", json={"active": False}, headers=ADMIN
        )
        patched = client.patch(
            "/api/sources/ai-extractor/config", json={"cost_per_request": 0}, headers=ADMIN
        )
        reset = client.post("/api/sources/reset")
        stats = client.get("/api/sources/stats")

    assert cleared.status_code == 503
    assert patched.status_code == 503
    assert reset.status_code == 503
    assert stats.status_code == 200
    assert limiter.is_emergency_active() is True
    assert limiter.get_config("ai-extractor").cost_per_request == 0.01


def test_update_source_config() -> None:
    app = _create_test_app()
    limiter = app.state.limiter

    with TestClient(app) as client:
        updated = client.patch(
            "/api/sources/ai-extractor/config",
            json={"max_concurrent": 4, "enabled": False},
            headers=ADMIN,
        )
        empty = client.patch("/api/sources/ai-extractor/config", json={}, headers=ADMIN)
        invalid = client.patch(
            "/api/sources/ai-extractor/config", json={"max_concurrent": 0}, headers=ADMIN
        )
        missing = client.patch(
            "/api/sources/unknown/config", json={"max_concurrent": 2}, headers=ADMIN
        )
        unauthorized = client.patch("/api/sources/ai-extractor/config", json={"max_concurrent": 2})

    assert updated.status_code == 200
    assert updated.json()["max_concurrent"] == 4
    assert updated.json()["enabled"] is False
    assert limiter.get_config("ai-extractor").max_concurrent == 4
    assert empty.status_code == 400
    assert invalid.status_code == 422
    assert missing.status_code == 404
    assert unauthorized.status_code == 401


def test_reset_stats() -> None:
    app = _create_test_app()

    with TestClient(app) as client:
        everything = client.post("/api/sources/reset", headers=ADMIN)
        single = client.post("/api/sources/reset?source=crawl-service", headers=ADMIN)
        missing = client.post("/api/sources/reset?source=unknown", headers=ADMIN)

    assert everything.json() == {"reset": ["ai-extractor", "crawl-service"]}
    assert single.json() == {"reset": ["crawl-service"]}
    assert missing.status_code == 404


def test_crawl_credits() -> None:
    with TestClient(_create_test_app(crawl=_Crawl(credits=120))) as client:
        configured = client.get("/api/anycrawl/credits")
    with TestClient(_create_test_app(crawl=_Crawl(available=False))) as client:
        unconfigured = client.get("/api/anycrawl/credits")

    assert configured.json() == {"available": True, "remaining_credits": 120}
    assert unconfigured.json() == {"available": False, "remaining_credits": None}


def test_resolve_product() -> None:
    resolver = _Resolver()
    app = _create_test_app(resolver=resolver)

    with TestClient(app) as client:
        response = client.post(
            "/api/products/resolve",
            json={"url": "https://produto.mercadolivre.com.br/MLB-1-fone-_JM", "accept_partial": True},
        )

    assert response.status_code == 200
    payload = response.json()
    assert payload["name"] == "Fone Bluetooth JBL"
    assert payload["extraction_method"] == "catalog-api"
    assert payload["needs_manual_input"] is False
    assert resolver.calls == [("https://produto.mercadolivre.com.br/MLB-1-fone-_JM", True)]


def test_resolve_rejects_malformed_url() -> None:
    app = _create_test_app(resolver=ProductResolver())

    with TestClient(app) as client:
        response = client.post("/api/products/resolve", json={"url": "not-a-url"})

    assert response.status_code == 400
    assert "Invalid product URL" in response.json()["detail"]
