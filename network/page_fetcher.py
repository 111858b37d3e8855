"""Plain HTTP page fetches through the ``page-fetch`` source."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Optional

import httpx

from core.rate_limited_executor import RateLimiterService
from core.types import SOURCE_PAGE_FETCH, Priority
from network.base_source import SourceWrapper
from utils.error_handling import InvalidResponseError
from utils.helpers import MIN_HTML_LENGTH, looks_like_guard_html
from utils.logger import get_logger

logger = get_logger(__name__)

DEFAULT_HEADERS: Dict[str, str] = {
    "User-Agent": (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/124.0 Safari/537.36"
    ),
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
    "Accept-Language": "pt-BR,pt;q=0.9,en-US;q=0.8,en;q=0.7",
}


@dataclass
class FetchedPage:
    url: str
    final_url: str
    status_code: int
    html: str
    content_type: str = ""

    @property
    def blocked(self) -> bool:
        return looks_like_guard_html(self.html)


class PageFetcher(SourceWrapper):
    """Fetch raw HTML with httpx; retries and timeouts belong to the executor."""

    source_name = SOURCE_PAGE_FETCH

    def __init__(
        self,
        rate_limiter: RateLimiterService,
        *,
        client: Optional[httpx.AsyncClient] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> None:
        self._client = client
        self._owns_client = client is None
        self.headers = dict(headers or DEFAULT_HEADERS)
        super().__init__(rate_limiter)

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                follow_redirects=True,
                timeout=httpx.Timeout(None),
                headers=self.headers,
            )
        return self._client

    async def close(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def _get(self, url: str) -> FetchedPage:
        response = await self._get_client().get(url)
        response.raise_for_status()
        return FetchedPage(
            url=url,
            final_url=str(response.url),
            status_code=response.status_code,
            html=response.text,
            content_type=response.headers.get("content-type", ""),
        )

    @staticmethod
    def _validate(page: FetchedPage) -> None:
        if len(page.html or "") <= MIN_HTML_LENGTH:
            raise InvalidResponseError(
                f"Page body too short ({len(page.html or '')} chars)",
                source=SOURCE_PAGE_FETCH,
            )

    async def fetch(self, url: str, priority: Priority = Priority.NORMAL) -> FetchedPage:
        page = await self._call(self._get, url, priority=priority, validate=self._validate)
        if page.blocked:
            logger.info("Fetched %s but it looks like an anti-bot page", url)
        return page
