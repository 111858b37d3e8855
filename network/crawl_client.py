"""AnyCrawl client used as the paid fallback for pages that need rendering."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

import httpx

from core.rate_limited_executor import RateLimiterService
from core.types import SOURCE_CRAWL_SERVICE, Priority, ProductDraft
from network.base_source import SourceWrapper
from utils.error_handling import (
    InsufficientCreditsError,
    InvalidResponseError,
    NetworkError,
    PipelineError,
)
from utils.helpers import is_plausible_name, normalize_price, sanitize_text
from utils.store_mapping import extract_store_from_url
from utils.logger import get_logger


logger = get_logger(__name__)

DEFAULT_ENDPOINTS: List[str] = [
    "https://api.anycrawl.com/v2/crawl",
    "https://api.anycrawl.com/v1/crawl",
    "https://anycrawl.com/api/v1/crawl",
]
DEFAULT_CREDITS_URL = "https://api.anycrawl.com/v1/credits"

# Statuses that mean "this endpoint does not exist here", so the next one is tried.
_ENDPOINT_MISSING = {404, 405}


class CrawlServiceClient(SourceWrapper):
    """HTTP wrapper around the AnyCrawl ``/crawl`` endpoints with key rotation."""

    source_name = SOURCE_CRAWL_SERVICE

    def __init__(
        self,
        rate_limiter: RateLimiterService,
        *,
        api_key: Optional[str] = None,
        api_keys: Optional[List[str]] = None,
        endpoints: Optional[List[str]] = None,
        credits_url: str = DEFAULT_CREDITS_URL,
        render_timeout_ms: int = 30000,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        keys: List[str] = []
        for key in api_keys or []:
            if isinstance(key, str) and key.strip() and key.strip() not in keys:
                keys.append(key.strip())
        primary_key = (api_key or "").strip()
        if primary_key:
            if primary_key in keys:
                keys.remove(primary_key)
            keys.insert(0, primary_key)

        self.api_keys: List[str] = keys
        self._key_index = 0
        self.endpoints = list(endpoints or DEFAULT_ENDPOINTS)
        self.credits_url = credits_url
        self.render_timeout_ms = render_timeout_ms
        self._client = client
        self._owns_client = client is None
        self._insufficient_credits = False
        super().__init__(rate_limiter)

    # Availability -----------------------------------------------------------
    def _check_availability(self) -> tuple[bool, Optional[str]]:
        if not self.api_keys:
            return False, "ANYCRAWL_API_KEY is not set"
        return True, None

    @property
    def api_key(self) -> str:
        return self.api_keys[self._key_index] if self.api_keys else ""

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=httpx.Timeout(None))
        return self._client

    async def close(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

    def _rotate_key(self) -> bool:
        if self._key_index + 1 >= len(self.api_keys):
            self._insufficient_credits = True
            logger.warning("AnyCrawl API keys exhausted; further requests disabled")
            return False
        self._key_index += 1
        logger.info(
            "Rotated AnyCrawl API key (index %s/%s)",
            self._key_index + 1,
            len(self.api_keys),
        )
        return True

    # Public API -------------------------------------------------------------
    async def scrape_url(
        self,
        url: str,
        *,
        extract_metadata: bool = True,
        screenshot: bool = False,
        wait_for: str = "networkidle",
        priority: Priority = Priority.NORMAL,
    ) -> Dict[str, Any]:
        """Crawl ``url`` and return the provider payload (``data`` holds html/metadata)."""
        if self._insufficient_credits:
            raise InsufficientCreditsError(
                "AnyCrawl credits exhausted for every configured key",
                source=self.source_name,
            )
        payload = {
            "url": url,
            "extract_metadata": extract_metadata,
            "screenshot": screenshot,
            "wait_for": wait_for,
            "timeout": self.render_timeout_ms,
        }
        logger.info("AnyCrawl scrape requested for %s (consumes credits)", url)
        return await self._call(
            self._crawl, payload, priority=priority, validate=self._validate_payload
        )

    async def _crawl(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        last_error: Optional[Exception] = None
        for endpoint in self.endpoints:
            try:
                response = await self._get_client().post(
                    endpoint, json=payload, headers=self._headers()
                )
            except httpx.TransportError as exc:
                logger.debug("AnyCrawl endpoint %s unreachable: %s", endpoint, exc)
                last_error = exc
                continue

            if response.status_code in _ENDPOINT_MISSING:
                last_error = InvalidResponseError(
                    f"AnyCrawl endpoint {endpoint} returned {response.status_code}",
                    source=self.source_name,
                    status_code=response.status_code,
                )
                continue

            if response.status_code == 402 and self._rotate_key():
                return await self._crawl(payload)

            response.raise_for_status()
            try:
                result = response.json()
            except ValueError as exc:
                last_error = InvalidResponseError(
                    f"AnyCrawl endpoint {endpoint} returned invalid JSON: {exc}",
                    source=self.source_name,
                )
                continue

            if isinstance(result, dict) and (result.get("success") or result.get("data")):
                logger.info(
                    "AnyCrawl scrape finished via %s (credits used: %s)",
                    endpoint,
                    result.get("credits_used", "N/A"),
                )
                return result

            last_error = InvalidResponseError(
                f"AnyCrawl endpoint {endpoint} reported failure: "
                f"{result.get('error') if isinstance(result, dict) else result}",
                source=self.source_name,
            )

        if isinstance(last_error, PipelineError):
            raise last_error
        if last_error is not None:
            raise NetworkError(
                f"All AnyCrawl endpoints failed: {last_error}", source=self.source_name
            ) from last_error
        raise NetworkError("No AnyCrawl endpoint configured", source=self.source_name)

    def _validate_payload(self, result: Any) -> None:
        data = result.get("data") if isinstance(result, dict) else None
        if not isinstance(data, dict):
            raise InvalidResponseError(
                "AnyCrawl payload has no data object", source=self.source_name
            )
        if not data.get("html") and not data.get("metadata"):
            raise InvalidResponseError(
                "AnyCrawl payload has neither html nor metadata", source=self.source_name
            )

    async def check_credits(self) -> Optional[int]:
        """Remaining credits for the active key, bypassing the rate limiter."""
        if not self.available:
            return None
        try:
            response = await self._get_client().get(
                self.credits_url, headers={"Authorization": f"Bearer {self.api_key}"}
            )
            response.raise_for_status()
            return int(response.json().get("remaining_credits") or 0)
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("Failed to query AnyCrawl credits: %s", exc)
            return None

    # Helpers ----------------------------------------------------------------
    @staticmethod
    def html_from(result: Dict[str, Any]) -> Optional[str]:
        data = result.get("data") if isinstance(result, dict) else None
        if isinstance(data, dict) and isinstance(data.get("html"), str):
            return data["html"]
        return None

    @staticmethod
    def product_from_metadata(result: Dict[str, Any], url: str) -> Optional[ProductDraft]:
        """Build a draft from the crawl ``metadata`` block when it has a usable title."""
        data = result.get("data") if isinstance(result, dict) else None
        metadata = data.get("metadata") if isinstance(data, dict) else None
        if not isinstance(metadata, dict):
            return None

        name = sanitize_text(metadata.get("title") or "")
        if not is_plausible_name(name):
            return None

        price = normalize_price(metadata.get("price"))
        description = metadata.get("description")
        return ProductDraft(
            name=name,
            price=price if price and price > 0 else None,
            image_url=metadata.get("image") or None,
            store=extract_store_from_url(url),
            description=sanitize_text(description) if isinstance(description, str) else None,
        )
