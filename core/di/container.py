from __future__ import annotations

from functools import lru_cache
from typing import Any, Callable, Dict, Optional

from core.product_resolver import ProductResolver
from core.rate_limited_executor import RateLimiterService
from core.settings import PipelineSettings, build_source_configs, get_settings
from network.ai_extractor import AIExtractor
from network.catalog_apis import CatalogAPIClient
from network.crawl_client import CrawlServiceClient
from network.headless_browser import HeadlessBrowser
from network.page_fetcher import PageFetcher


class Container:
    def __init__(self) -> None:
        self._providers: Dict[str, Callable[["Container"], Any]] = {}
        self._cache: Dict[str, Any] = {}

    def register(self, key: str, provider: Callable[["Container"], Any]) -> None:
        self._providers[key] = provider
        self._cache.pop(key, None)

    def resolve(self, key: str) -> Any:
        if key in self._cache:
            return self._cache[key]
        provider = self._providers[key]
        instance = provider(self)
        self._cache[key] = instance
        return instance

    def resolved(self, key: str) -> Optional[Any]:
        """Return the instance for ``key`` only if it was already built."""
        return self._cache.get(key)


def _rate_limiter(c: Container) -> RateLimiterService:
    settings: PipelineSettings = c.resolve("settings")
    return RateLimiterService(
        build_source_configs(settings),
        max_daily_cost=settings.max_daily_cost,
        queue_timeout_seconds=settings.queue_timeout_seconds,
        circuit_cooldown_seconds=settings.circuit_cooldown_seconds,
    )


def _browser(c: Container) -> HeadlessBrowser:
    settings: PipelineSettings = c.resolve("settings")
    return HeadlessBrowser(
        c.resolve("rate_limiter"),
        {
            "enabled": settings.playwright_enabled,
            "navigation_timeout_ms": settings.playwright_timeout_ms,
        },
    )


def create_container(settings: Optional[PipelineSettings] = None) -> Container:
    container = Container()

    container.register("settings", lambda _: settings or get_settings())
    container.register("rate_limiter", _rate_limiter)
    container.register("page_fetcher", lambda c: PageFetcher(c.resolve("rate_limiter")))
    container.register("browser", _browser)
    container.register(
        "crawl_service",
        lambda c: CrawlServiceClient(
            c.resolve("rate_limiter"),
            api_key=c.resolve("settings").anycrawl_api_key,
            api_keys=c.resolve("settings").anycrawl_api_keys,
        ),
    )
    container.register(
        "ai_extractor",
        lambda c: AIExtractor(
            c.resolve("rate_limiter"),
            api_key=c.resolve("settings").gemini_api_key,
            model=c.resolve("settings").gemini_model,
        ),
    )
    container.register(
        "catalog",
        lambda c: CatalogAPIClient(
            c.resolve("rate_limiter"),
            google_api_key=c.resolve("settings").google_api_key,
            google_engine_id=c.resolve("settings").google_custom_search_engine_id,
        ),
    )
    container.register(
        "product_resolver",
        lambda c: ProductResolver(
            catalog=c.resolve("catalog"),
            page_fetcher=c.resolve("page_fetcher"),
            browser=c.resolve("browser"),
            crawl_service=c.resolve("crawl_service"),
            ai_extractor=c.resolve("ai_extractor"),
        ),
    )

    return container


@lru_cache(maxsize=1)
def build_container() -> Container:
    return create_container()


async def shutdown_container(container: Container) -> None:
    """Close the HTTP clients and the browser that were actually created."""
    for key in ("page_fetcher", "crawl_service", "catalog"):
        wrapper = container.resolved(key)
        if wrapper is not None:
            await wrapper.close()
    browser = container.resolved("browser")
    if browser is not None:
        await browser.stop()
    rate_limiter = container.resolved("rate_limiter")
    if rate_limiter is not None:
        await rate_limiter.stop()
