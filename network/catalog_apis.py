"""Store catalog lookups (Mercado Livre items API, Google Custom Search)."""

from __future__ import annotations

import re
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse

import httpx

from core.rate_limited_executor import RateLimiterService
from core.types import SOURCE_CATALOG_API, Priority, ProductDraft
from network.base_source import SourceWrapper
from utils.error_handling import (
    InvalidResponseError,
    MissingCredentialsError,
)
from utils.helpers import (
    extract_name_from_url,
    normalize_price,
    sanitize_text,
    upgrade_mercadolivre_image,
)
from utils.store_mapping import (
    detect_platform,
    extract_category_from_url,
    extract_product_id,
    extract_store_from_url,
)
from utils.logger import get_logger

logger = get_logger(__name__)

MERCADOLIVRE_ITEMS_URL = "https://api.mercadolibre.com/items/{item_id}"
GOOGLE_SEARCH_URL = "https://www.googleapis.com/customsearch/v1"

MERCADOLIVRE_CATEGORIES: Dict[str, str] = {
    "MLB1051": "Eletrônicos",
    "MLB1430": "Roupas",
    "MLB1367": "Casa",
    "MLB1196": "Livros",
    "MLB1144": "Games",
    "MLB1132": "Automotivo",
    "MLB1276": "Esportes",
}

_SNIPPET_PRICE = re.compile(r"R\$\s*(\d{1,3}(?:\.\d{3})*(?:,\d{2})?)")
_META_PRICE_FIELDS = ("product:price:amount", "og:price:amount", "twitter:data1")


def draft_from_mercadolivre_item(data: Dict[str, Any]) -> ProductDraft:
    pictures = data.get("pictures") or []
    image_url = None
    if pictures and isinstance(pictures[0], dict):
        image_url = pictures[0].get("secure_url") or pictures[0].get("url")
    image_url = image_url or data.get("thumbnail")
    if image_url:
        image_url = re.sub(r"\.webp$", ".jpg", image_url, flags=re.IGNORECASE)
        image_url = upgrade_mercadolivre_image(image_url)

    brand = None
    for attribute in data.get("attributes") or []:
        if isinstance(attribute, dict) and attribute.get("id") == "BRAND":
            brand = attribute.get("value_name") or None
            break

    price = normalize_price(data.get("price"))
    original_price = normalize_price(data.get("original_price"))
    return ProductDraft(
        name=sanitize_text(data.get("title") or "") or None,
        price=price,
        original_price=original_price if original_price and original_price > (price or 0) else None,
        image_url=image_url,
        store="Mercado Livre",
        category=MERCADOLIVRE_CATEGORIES.get(data.get("category_id"), "Outros"),
        brand=brand,
    )


def _price_from_search_item(item: Dict[str, Any]) -> Optional[float]:
    match = _SNIPPET_PRICE.search(item.get("snippet") or "")
    if match:
        price = normalize_price(match.group(1))
        if price:
            return price
    metatags = ((item.get("pagemap") or {}).get("metatags") or [{}])[0]
    for field in _META_PRICE_FIELDS:
        price = normalize_price(metatags.get(field))
        if price:
            return price
    return None


def _image_from_search_item(item: Dict[str, Any]) -> Optional[str]:
    pagemap = item.get("pagemap") or {}
    images = pagemap.get("cse_image") or []
    if images and images[0].get("src"):
        return images[0]["src"]
    metatags = (pagemap.get("metatags") or [{}])[0]
    return metatags.get("og:image") or metatags.get("twitter:image")


def drafts_from_search(data: Dict[str, Any]) -> List[ProductDraft]:
    drafts: List[ProductDraft] = []
    for item in (data.get("items") or [])[:3]:
        if not isinstance(item, dict) or not item.get("title"):
            continue
        link = item.get("link") or ""
        title = re.sub(r"\s[|\-].*$", "", item["title"]).strip()
        drafts.append(
            ProductDraft(
                name=sanitize_text(title) or None,
                price=_price_from_search_item(item),
                image_url=_image_from_search_item(item),
                store=extract_store_from_url(link) if link else None,
                description=sanitize_text(item.get("snippet") or "") or None,
                category=extract_category_from_url(f"{link} {title}"),
            )
        )
    return drafts


def build_search_query(url: str) -> str:
    parsed = urlparse(url)
    domain = (parsed.hostname or "").removeprefix("www.")
    name = extract_name_from_url(url)
    if name:
        return f'"{name}" site:{domain}'
    segments = [s for s in parsed.path.split("/") if len(s) > 2]
    return f"{' '.join(segments).replace('-', ' ').replace('_', ' ')} site:{domain}".strip()


class CatalogAPIClient(SourceWrapper):
    """Public store APIs; Google Custom Search only when a key and engine id are set."""

    source_name = SOURCE_CATALOG_API

    def __init__(
        self,
        rate_limiter: RateLimiterService,
        *,
        google_api_key: Optional[str] = None,
        google_engine_id: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.google_api_key = (google_api_key or "").strip()
        self.google_engine_id = (google_engine_id or "").strip()
        self._client = client
        self._owns_client = client is None
        super().__init__(rate_limiter)

    @property
    def google_available(self) -> bool:
        return bool(self.google_api_key and self.google_engine_id)

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=httpx.Timeout(None))
        return self._client

    async def close(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def _get_json(self, url: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        response = await self._get_client().get(url, params=params)
        response.raise_for_status()
        try:
            data = response.json()
        except ValueError as exc:
            raise InvalidResponseError(
                f"Catalog API returned invalid JSON: {exc}", source=self.source_name
            ) from exc
        if not isinstance(data, dict):
            raise InvalidResponseError("Catalog API returned a non-object", source=self.source_name)
        return data

    def _validate_item(self, data: Dict[str, Any]) -> None:
        if not data.get("title"):
            raise InvalidResponseError("Mercado Livre item has no title", source=self.source_name)

    async def fetch_mercadolivre_item(
        self, item_id: str, priority: Priority = Priority.NORMAL
    ) -> ProductDraft:
        data = await self._call(
            self._get_json,
            MERCADOLIVRE_ITEMS_URL.format(item_id=item_id),
            priority=priority,
            validate=self._validate_item,
        )
        draft = draft_from_mercadolivre_item(data)
        logger.info("Mercado Livre item %s: %s", item_id, draft.name)
        return draft

    async def google_search(
        self, url_or_query: str, priority: Priority = Priority.NORMAL
    ) -> List[ProductDraft]:
        if not self.google_available:
            raise MissingCredentialsError(
                "GOOGLE_API_KEY / GOOGLE_CUSTOM_SEARCH_ENGINE_ID are not set",
                source=self.source_name,
            )
        query = (
            build_search_query(url_or_query)
            if url_or_query.startswith("http")
            else url_or_query[:100]
        )
        params = {
            "key": self.google_api_key,
            "cx": self.google_engine_id,
            "q": query,
            "num": 5,
        }
        data = await self._call(self._get_json, GOOGLE_SEARCH_URL, params, priority=priority)
        drafts = drafts_from_search(data)
        logger.info("Google search for %r returned %d candidates", query, len(drafts))
        return drafts

    async def lookup(self, url: str, priority: Priority = Priority.NORMAL) -> Optional[ProductDraft]:
        """Catalog data for ``url`` when its store is recognised, else ``None``.

        Mercado Livre URLs with an item id go to the items API; other stores
        fall back to Google Custom Search when it is configured.
        """
        platform = detect_platform(url)
        if platform == "mercadolivre":
            item_id = extract_product_id(url)
            if item_id:
                return await self.fetch_mercadolivre_item(item_id, priority=priority)

        if self.google_available:
            for draft in await self.google_search(url, priority=priority):
                if draft.name and draft.price:
                    return draft
        return None
