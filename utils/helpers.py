import re
from typing import Any, Optional
from urllib.parse import unquote, urlparse

from bs4 import BeautifulSoup

from utils.logger import get_logger

# Configure logging
logger = get_logger(__name__)


GUARD_MARKERS = (
    "ddos-guard",
    "checking your browser",
    "attention required",
    "cloudflare",
    "please enable javascript",
    "captcha",
    "access denied",
)

GUARD_SNIPPETS = (
    'meta name="robots" content="noindex"',
    "adblock-blocker",
    "/protect",
    "var adb = 1",
)

MIN_HTML_LENGTH = 100


def build_soup(html: str) -> BeautifulSoup:
    return BeautifulSoup(html, "html.parser")


def looks_like_guard_html(html: Optional[str]) -> bool:
    """Detect common anti-bot interstitial responses."""

    if not isinstance(html, str) or not html:
        return False

    lowered = html.lower()
    if any(marker in lowered for marker in GUARD_MARKERS):
        return True
    return any(snippet in lowered for snippet in GUARD_SNIPPETS)


def is_usable_html(html: Optional[str]) -> bool:
    """HTML long enough to hold a product page and not an anti-bot wall."""
    if not isinstance(html, str) or len(html) <= MIN_HTML_LENGTH:
        return False
    return not looks_like_guard_html(html)


THOUSANDS_ONLY = re.compile(r"[1-9]\d{0,2}(?:[.,]\d{3})+")


def _unify_separators(token: str) -> str:
    """Turn ``1.234,56``, ``1,234.56``, ``1.299`` or ``12,5`` into a float literal."""
    token = token.rstrip(".,")
    if "," in token and "." in token:
        decimal = "," if token.rfind(",") > token.rfind(".") else "."
        thousands = "." if decimal == "," else ","
        return token.replace(thousands, "").replace(decimal, ".")
    if THOUSANDS_ONLY.fullmatch(token):
        return token.replace(".", "").replace(",", "")
    if token.count(",") == 1:
        return token.replace(",", ".")
    if token.count(",") > 1 or token.count(".") > 1:
        return token.replace(",", "").replace(".", "")
    return token


def normalize_price(price: Any) -> Optional[float]:
    """Parse a price given as number or text.

    Both Brazilian (``R$ 1.234,56``) and US (``$1,234.56``) notation are
    accepted: with both separators present the last one is the decimal
    point, and a lone separator followed by groups of three digits
    (``R$ 1.299``) is a thousands separator.
    """
    if isinstance(price, bool):
        return None
    if isinstance(price, (int, float)):
        return float(price) if price >= 0 else None
    if not isinstance(price, str) or not price.strip():
        return None

    cleaned = re.sub(r"[R$€£¥\s ]", "", price.strip())
    match = re.search(r"\d[\d.,]*", cleaned)
    if not match:
        logger.debug("No numeric value found in price text: %s", price)
        return None

    try:
        value = float(_unify_separators(match.group(0)))
    except ValueError:
        return None

    # Basic validation: reasonable price range
    if value < 0 or value > 10_000_000:
        logger.warning("Price out of reasonable range: %f", value)
        return None
    return value


def validate_url(url: str) -> bool:
    """Validate if the given string is an absolute http(s) URL."""
    if not isinstance(url, str) or not url.strip():
        return False

    try:
        result = urlparse(url.strip())
    except ValueError as e:
        logger.debug("Error validating URL '%s': %s", url, e)
        return False
    return result.scheme in ("http", "https") and bool(result.netloc) and "." in result.netloc


def sanitize_text(text: str) -> str:
    """Sanitize text by removing unwanted characters and normalizing whitespace."""
    if not isinstance(text, str):
        return ""

    # Remove control characters and normalize whitespace
    sanitized = re.sub(r"[\x00-\x1f\x7f-\x9f]", "", text)
    return re.sub(r"\s+", " ", sanitized).strip()


def is_plausible_name(name: Optional[str]) -> bool:
    if not isinstance(name, str):
        return False
    return 3 <= len(name.strip()) <= 300


def extract_name_from_url(url: str) -> Optional[str]:
    """Derive a readable product name from the URL path slug."""
    try:
        path = urlparse(url).path
    except ValueError:
        return None

    segments = [unquote(segment) for segment in path.split("/") if segment]
    best = ""
    for segment in segments:
        slug = re.sub(r"\.(html?|php|aspx?)$", "", segment, flags=re.IGNORECASE)
        slug = re.sub(r"^MLB-?\d+-?", "", slug, flags=re.IGNORECASE)
        slug = re.sub(r"_JM$", "", slug)
        words = [
            word
            for word in re.split(r"[-_+]+", slug)
            if word and not (word.isdigit() and len(word) > 4)
        ]
        candidate = " ".join(words)
        if len(words) >= 2 and len(candidate) > len(best):
            best = candidate

    if not best:
        return None
    return sanitize_text(best).title()


def clean_html_for_ai(html: str, max_chars: int = 80_000) -> str:
    """Drop scripts, styles and SVG noise but keep JSON-LD, then truncate."""
    soup = build_soup(html)
    for tag in soup(["style", "noscript", "svg", "iframe"]):
        tag.decompose()
    for script in soup.find_all("script"):
        if script.get("type") != "application/ld+json":
            script.decompose()
    return str(soup)[:max_chars]


def upgrade_mercadolivre_image(image_url: Optional[str]) -> Optional[str]:
    """Swap low-resolution Mercado Livre thumbnails for the original size."""
    if not image_url:
        return image_url
    return re.sub(r"-[IST]\.(jpg|webp)$", "-O.jpg", image_url)
