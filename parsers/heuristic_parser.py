"""Last-resort CSS selector heuristics for product pages without structured data."""

from typing import List, Optional

from bs4 import BeautifulSoup

from core.types import ProductDraft
from utils.helpers import (
    build_soup,
    extract_name_from_url,
    normalize_price,
    sanitize_text,
)
from utils.logger import get_logger

logger = get_logger(__name__)

NAME_SELECTORS: List[str] = [
    "h1",
    '[data-testid*="title"]',
    '[class*="product-title"]',
    '[class*="ProductTitle"]',
]

PRICE_SELECTORS: List[str] = [
    '[itemprop="price"]',
    '[data-testid*="price"]',
    ".andes-money-amount__fraction",
    ".product-price",
    "#product-price",
    ".price-value",
    '[class*="price"]:not([class*="old"]):not([class*="original"])',
]

IMAGE_SELECTORS: List[str] = [
    '[data-testid*="image"] img',
    ".product-image img",
    '[class*="ProductImage"] img',
    'img[itemprop="image"]',
    'img[src*="product"]',
    'img[alt*="product" i]',
    "main img",
    "article img",
]

DESCRIPTION_SELECTORS: List[str] = [
    '[itemprop="description"]',
    '[class*="description"]',
]


def _first_text(soup: BeautifulSoup, selectors: List[str]) -> Optional[str]:
    for selector in selectors:
        element = soup.select_one(selector)
        if element is None:
            continue
        text = element.get("content") or element.get_text(" ", strip=True)
        text = sanitize_text(text)
        if text:
            return text
    return None


def _extract_price(soup: BeautifulSoup) -> Optional[float]:
    for selector in PRICE_SELECTORS:
        for element in soup.select(selector)[:3]:
            raw = element.get("content") or element.get_text(" ", strip=True)
            price = normalize_price(raw)
            if price and price > 0:
                return price
    return None


def _extract_image(soup: BeautifulSoup) -> Optional[str]:
    for selector in IMAGE_SELECTORS:
        element = soup.select_one(selector)
        if element is None:
            continue
        src = element.get("src") or element.get("data-src") or element.get("content")
        if not src:
            continue
        if src.startswith("//"):
            return f"https:{src}"
        if src.startswith("http"):
            return src
    return None


def _title_name(soup: BeautifulSoup) -> Optional[str]:
    if soup.title is None:
        return None
    title = sanitize_text(soup.title.get_text())
    return sanitize_text(title.split("|")[0]) or None


def extract_with_heuristics(html: str, url: str) -> ProductDraft:
    """Best-effort extraction; fields that cannot be found stay ``None``."""
    soup = build_soup(html or "")

    name = _first_text(soup, NAME_SELECTORS) or _title_name(soup) or extract_name_from_url(url)
    description = _first_text(soup, DESCRIPTION_SELECTORS)

    draft = ProductDraft(
        name=name[:300] if name else None,
        price=_extract_price(soup),
        image_url=_extract_image(soup),
        description=description[:500] if description else None,
    )
    logger.debug(
        "Heuristic extraction for %s: name=%s price=%s image=%s",
        url,
        draft.name,
        draft.price,
        bool(draft.image_url),
    )
    return draft
