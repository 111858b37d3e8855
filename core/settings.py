"""Pipeline configuration using pydantic-settings."""
from functools import lru_cache
from typing import Dict, List, Optional

from pydantic_settings import BaseSettings

from core.types import (
    SOURCE_AI_EXTRACTOR,
    SOURCE_CATALOG_API,
    SOURCE_CRAWL_SERVICE,
    SOURCE_HEADLESS_BROWSER,
    SOURCE_PAGE_FETCH,
    SourceConfig,
)


class PipelineSettings(BaseSettings):
    """Source limits and credentials loaded from environment variables."""

    # Credentials
    gemini_api_key: Optional[str] = None
    gemini_model: str = "gemini-2.5-flash"
    anycrawl_api_key: Optional[str] = None
    anycrawl_api_keys: List[str] = []
    google_api_key: Optional[str] = None
    google_custom_search_engine_id: Optional[str] = None

    # AI extractor
    gemini_rate_limit_per_minute: int = 10
    gemini_rate_limit_per_hour: int = 100
    gemini_max_concurrent: int = 3
    gemini_timeout_ms: int = 30000
    gemini_max_retries: int = 3
    gemini_circuit_breaker_threshold: int = 5
    gemini_cost_per_request: float = 0.01

    # Crawl service
    anycrawl_rate_limit_per_minute: int = 5
    anycrawl_rate_limit_per_hour: int = 50
    anycrawl_max_concurrent: int = 2
    anycrawl_timeout_ms: int = 45000
    anycrawl_max_retries: int = 2
    anycrawl_circuit_breaker_threshold: int = 3
    anycrawl_cost_per_request: float = 0.05

    # Headless browser
    playwright_enabled: bool = True
    playwright_rate_limit_per_minute: int = 30
    playwright_rate_limit_per_hour: int = 300
    playwright_max_concurrent: int = 5
    playwright_timeout_ms: int = 30000
    playwright_max_retries: int = 2
    playwright_circuit_breaker_threshold: int = 3

    # Store catalog APIs
    catalog_rate_limit_per_minute: int = 60
    catalog_rate_limit_per_hour: int = 1000
    catalog_max_concurrent: int = 5
    catalog_timeout_ms: int = 15000
    catalog_max_retries: int = 2
    catalog_circuit_breaker_threshold: int = 5

    # Plain page fetches
    http_fetch_rate_limit_per_minute: int = 60
    http_fetch_rate_limit_per_hour: int = 1000
    http_fetch_max_concurrent: int = 10
    http_fetch_timeout_ms: int = 20000
    http_fetch_max_retries: int = 1
    http_fetch_circuit_breaker_threshold: int = 5

    # Global
    max_daily_cost: float = 10.0
    queue_timeout_seconds: float = 300.0
    circuit_cooldown_seconds: float = 60.0

    class Config:
        env_file = ".env"
        case_sensitive = False
        extra = "ignore"


def build_source_configs(settings: PipelineSettings) -> Dict[str, SourceConfig]:
    """Build the per-source ``SourceConfig`` map from settings."""
    return {
        SOURCE_AI_EXTRACTOR: SourceConfig(
            max_requests_per_minute=settings.gemini_rate_limit_per_minute,
            max_requests_per_hour=settings.gemini_rate_limit_per_hour,
            max_concurrent=settings.gemini_max_concurrent,
            timeout_seconds=settings.gemini_timeout_ms / 1000,
            max_retries=settings.gemini_max_retries,
            circuit_breaker_threshold=settings.gemini_circuit_breaker_threshold,
            cost_per_request=settings.gemini_cost_per_request,
        ),
        SOURCE_CRAWL_SERVICE: SourceConfig(
            max_requests_per_minute=settings.anycrawl_rate_limit_per_minute,
            max_requests_per_hour=settings.anycrawl_rate_limit_per_hour,
            max_concurrent=settings.anycrawl_max_concurrent,
            timeout_seconds=settings.anycrawl_timeout_ms / 1000,
            max_retries=settings.anycrawl_max_retries,
            circuit_breaker_threshold=settings.anycrawl_circuit_breaker_threshold,
            cost_per_request=settings.anycrawl_cost_per_request,
        ),
        SOURCE_HEADLESS_BROWSER: SourceConfig(
            max_requests_per_minute=settings.playwright_rate_limit_per_minute,
            max_requests_per_hour=settings.playwright_rate_limit_per_hour,
            max_concurrent=settings.playwright_max_concurrent,
            timeout_seconds=settings.playwright_timeout_ms / 1000,
            max_retries=settings.playwright_max_retries,
            circuit_breaker_threshold=settings.playwright_circuit_breaker_threshold,
            enabled=settings.playwright_enabled,
        ),
        SOURCE_CATALOG_API: SourceConfig(
            max_requests_per_minute=settings.catalog_rate_limit_per_minute,
            max_requests_per_hour=settings.catalog_rate_limit_per_hour,
            max_concurrent=settings.catalog_max_concurrent,
            timeout_seconds=settings.catalog_timeout_ms / 1000,
            max_retries=settings.catalog_max_retries,
            circuit_breaker_threshold=settings.catalog_circuit_breaker_threshold,
        ),
        SOURCE_PAGE_FETCH: SourceConfig(
            max_requests_per_minute=settings.http_fetch_rate_limit_per_minute,
            max_requests_per_hour=settings.http_fetch_rate_limit_per_hour,
            max_concurrent=settings.http_fetch_max_concurrent,
            timeout_seconds=settings.http_fetch_timeout_ms / 1000,
            max_retries=settings.http_fetch_max_retries,
            circuit_breaker_threshold=settings.http_fetch_circuit_breaker_threshold,
        ),
    }


@lru_cache
def get_settings() -> PipelineSettings:
    """
    Get cached pipeline settings.

    Returns:
        PipelineSettings: Settings read once from the environment
    """
    return PipelineSettings()
