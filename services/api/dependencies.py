"""FastAPI dependencies."""
from typing import Dict, Optional

from fastapi import Depends, Header, HTTPException, Request

from .config import Settings, get_settings
from core.product_resolver import ProductResolver
from core.rate_limited_executor import RateLimiterService
from network.base_source import SourceWrapper
from network.crawl_client import CrawlServiceClient


async def get_rate_limiter(request: Request) -> RateLimiterService:
    """
    Get the shared rate limiter service from app state.

    The service is built by the DI container during application startup and
    stored in app.state, so every route sees the same windows, circuits and
    cost accounting.

    Args:
        request: FastAPI request object

    Returns:
        RateLimiterService: Process-wide rate limiter

    Example usage:
        ```python
        @router.get("/sources/stats")
        async def stats(limiter: RateLimiterService = Depends(get_rate_limiter)):
            return limiter.get_stats()
        ```
    """
    return request.app.state.rate_limiter


async def get_resolver(request: Request) -> ProductResolver:
    """Get the product resolver cascade from app state."""
    return request.app.state.resolver


async def get_crawl_client(request: Request) -> CrawlServiceClient:
    """Get the crawl service client from app state."""
    return request.app.state.crawl_client


async def require_admin(
    x_admin_token: Optional[str] = Header(default=None),
    settings: Settings = Depends(get_settings),
) -> None:
    """
    Reject the request unless ``X-Admin-Token`` matches the configured token.

    Raises:
        HTTPException: 503 if no admin token is configured,
            401 if the header is missing or wrong
    """
    if not settings.admin_token:
        raise HTTPException(status_code=503, detail="Admin token is not configured")
    if not x_admin_token or x_admin_token != settings.admin_token:
        raise HTTPException(status_code=401, detail="Invalid or missing admin token")


async def get_source_wrappers(request: Request) -> Dict[str, SourceWrapper]:
    """Get the source wrappers keyed by source name from app state."""
    return request.app.state.sources
