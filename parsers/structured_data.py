"""Extract product data from JSON-LD blocks and Open Graph / product meta tags."""

from __future__ import annotations

import json
from typing import Any, Dict, Iterable, List, Optional

from bs4 import BeautifulSoup

from core.types import ProductDraft
from utils.helpers import build_soup, normalize_price, sanitize_text
from utils.logger import get_logger

logger = get_logger(__name__)

_PRODUCT_TYPES = {"product", "productgroup", "individualproduct", "productmodel"}


def _is_product(node: Any) -> bool:
    if not isinstance(node, dict):
        return False
    node_type = node.get("@type")
    types = node_type if isinstance(node_type, list) else [node_type]
    return any(isinstance(t, str) and t.lower() in _PRODUCT_TYPES for t in types)


def find_product_node(data: Any) -> Optional[Dict[str, Any]]:
    """Search a decoded JSON-LD document for the first Product node.

    Looks through top-level arrays, ``@graph``, ``mainEntity`` and
    ``itemListElement`` containers.
    """
    if isinstance(data, list):
        for item in data:
            found = find_product_node(item)
            if found:
                return found
        return None

    if not isinstance(data, dict):
        return None
    if _is_product(data):
        return data

    for key in ("@graph", "mainEntity", "itemListElement", "item"):
        nested = data.get(key)
        if nested:
            found = find_product_node(nested)
            if found:
                return found
    return None


def _first_offer(offers: Any) -> Optional[Dict[str, Any]]:
    if isinstance(offers, list):
        for offer in offers:
            if isinstance(offer, dict):
                return offer
        return None
    return offers if isinstance(offers, dict) else None


def _offer_prices(offers: Any) -> tuple[Optional[float], Optional[float]]:
    offer = _first_offer(offers)
    if offer is None:
        return None, None

    price = normalize_price(offer.get("price"))
    if price is None:
        spec = offer.get("priceSpecification")
        if isinstance(spec, list):
            spec = spec[0] if spec else None
        if isinstance(spec, dict):
            price = normalize_price(spec.get("price"))
    if price is None:
        price = normalize_price(offer.get("lowPrice"))

    original = normalize_price(offer.get("highPrice"))
    if original is not None and price is not None and original <= price:
        original = None
    return price, original


def _image_from(value: Any) -> Optional[str]:
    if isinstance(value, str):
        return value or None
    if isinstance(value, list):
        for item in value:
            found = _image_from(item)
            if found:
                return found
        return None
    if isinstance(value, dict):
        return _image_from(value.get("url") or value.get("contentUrl"))
    return None


def _text_from(value: Any) -> Optional[str]:
    if isinstance(value, dict):
        value = value.get("name")
    if isinstance(value, list):
        value = value[0] if value else None
    if isinstance(value, str):
        cleaned = sanitize_text(value)
        return cleaned or None
    return None


def product_from_json_ld(node: Dict[str, Any]) -> ProductDraft:
    price, original_price = _offer_prices(node.get("offers"))
    description = _text_from(node.get("description"))
    return ProductDraft(
        name=_text_from(node.get("name")),
        price=price,
        original_price=original_price,
        image_url=_image_from(node.get("image")),
        description=description[:500] if description else None,
        category=_text_from(node.get("category")),
        brand=_text_from(node.get("brand")),
    )


def _json_ld_documents(soup: BeautifulSoup) -> Iterable[Any]:
    for script in soup.find_all("script", attrs={"type": "application/ld+json"}):
        raw = script.string or script.get_text()
        if not raw or not raw.strip():
            continue
        try:
            yield json.loads(raw.strip())
        except json.JSONDecodeError as exc:
            logger.debug("Skipping malformed JSON-LD block: %s", exc)


def extract_json_ld(html: str) -> Optional[ProductDraft]:
    soup = build_soup(html)
    for document in _json_ld_documents(soup):
        node = find_product_node(document)
        if node:
            return product_from_json_ld(node)
    return None


def _meta(soup: BeautifulSoup, *keys: str) -> Optional[str]:
    for key in keys:
        tag = soup.find("meta", attrs={"property": key}) or soup.find(
            "meta", attrs={"name": key}
        )
        if tag and tag.get("content"):
            content = sanitize_text(tag["content"])
            if content:
                return content
    return None


def extract_meta_tags(html: str) -> Optional[ProductDraft]:
    soup = build_soup(html)
    draft = ProductDraft(
        name=_meta(soup, "og:title", "twitter:title"),
        price=normalize_price(
            _meta(soup, "product:price:amount", "og:price:amount", "twitter:data1")
        ),
        image_url=_meta(soup, "og:image", "og:image:secure_url", "twitter:image"),
        description=_meta(soup, "og:description", "description"),
        brand=_meta(soup, "product:brand", "og:brand"),
        category=_meta(soup, "product:category"),
    )
    if draft.filled_fields() == 0:
        return None
    return draft


def extract_structured_data(html: str) -> Optional[ProductDraft]:
    """JSON-LD product data completed with meta tags where fields are missing."""
    if not html:
        return None

    candidates: List[ProductDraft] = []
    json_ld = extract_json_ld(html)
    if json_ld:
        candidates.append(json_ld)
    meta = extract_meta_tags(html)
    if meta:
        candidates.append(meta)

    if not candidates:
        return None
    draft = candidates[0]
    for other in candidates[1:]:
        draft = draft.merged_with(other)
    return draft
