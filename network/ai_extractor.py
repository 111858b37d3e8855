"""Gemini-backed product extraction through the ``ai-extractor`` source."""

from __future__ import annotations

import json
import re
from typing import Any, Dict, Optional
from urllib.parse import urlparse

from google import genai
from google.genai import errors as genai_errors
from google.genai import types

from core.rate_limited_executor import RateLimiterService
from core.types import SOURCE_AI_EXTRACTOR, Priority, ProductDraft
from network.base_source import SourceWrapper
from utils.error_handling import (
    InvalidResponseError,
    error_from_status,
)
from utils.helpers import (
    clean_html_for_ai,
    normalize_price,
    sanitize_text,
    upgrade_mercadolivre_image,
)
from utils.logger import get_logger

logger = get_logger(__name__)

HTML_PROMPT_CHARS = 80_000

_FIELDS_BLOCK = """Return ONLY valid JSON, no markdown, with these fields:
{
  "name": "Product name",
  "price": 3899.99,
  "originalPrice": 4999.99,
  "imageUrl": "https://images.example.com/product.jpg",
  "store": "Store name",
  "description": "Short description",
  "category": "Eletrônicos | Roupas | Casa | Livros | Games | Automotivo | Esportes | Outros",
  "brand": "Brand"
}
Use null for fields you cannot find."""

_PRICE_RULES = {
    "mercadolivre.com": (
        "Look for .andes-money-amount__fraction or JSON-LD offers.price. "
        "Prefer image URLs on mlstatic.com ending in -O.jpg or -W.webp."
    ),
    "amazon.com": (
        "Use the main buy-box price (.a-price .a-offscreen, #corePrice_feature_div). "
        "Ignore Prime, shipping, installment and cashback prices. "
        "Images should come from media-amazon.com."
    ),
    "zara.com": "Prices in EUR must be converted to BRL multiplying by 6.2.",
}

_GENERIC_RULES = (
    "Use the main price of the single product, ignoring shipping, combos and "
    "installments. Brazilian prices like R$ 1.299,99 mean 1299.99. "
    "The image must be an absolute https URL of the main product photo, "
    "preferably og:image."
)


def _domain_rules(domain: str) -> str:
    for key, rules in _PRICE_RULES.items():
        if key in domain:
            return f"{rules} {_GENERIC_RULES}"
    return _GENERIC_RULES


def build_html_prompt(url: str, html: str) -> str:
    domain = urlparse(url).hostname or ""
    return (
        "Analyse this product page and extract structured product data.\n\n"
        f"URL: {url}\nDomain: {domain}\n\n"
        f"Rules: {_domain_rules(domain)}\n\n"
        f"HTML (first {HTML_PROMPT_CHARS} characters):\n```html\n"
        f"{html[:HTML_PROMPT_CHARS]}\n```\n\n{_FIELDS_BLOCK}"
    )


def build_search_prompt(url: str) -> str:
    domain = urlparse(url).hostname or ""
    return (
        "Identify the product sold at this URL using what you know about the "
        "store and the URL itself (slug, identifiers).\n\n"
        f"URL: {url}\nDomain: {domain}\n\n"
        f"Rules: {_domain_rules(domain)} If you are not sure about the price, "
        f"return null for it.\n\n{_FIELDS_BLOCK}"
    )


def parse_json_answer(text: str) -> Dict[str, Any]:
    """Decode the model answer, tolerating markdown fences around the JSON."""
    cleaned = (text or "").strip()
    fenced = re.search(r"```(?:json)?\s*(.*?)```", cleaned, re.DOTALL)
    if fenced:
        cleaned = fenced.group(1).strip()
    if not cleaned.startswith("{"):
        start, end = cleaned.find("{"), cleaned.rfind("}")
        if start != -1 and end > start:
            cleaned = cleaned[start : end + 1]
    try:
        data = json.loads(cleaned)
    except json.JSONDecodeError as exc:
        raise InvalidResponseError(
            f"AI answer is not valid JSON: {exc}", source=SOURCE_AI_EXTRACTOR
        ) from exc
    if not isinstance(data, dict):
        raise InvalidResponseError(
            "AI answer is not a JSON object", source=SOURCE_AI_EXTRACTOR
        )
    return data


def _clean_str(value: Any) -> Optional[str]:
    if not isinstance(value, str):
        return None
    cleaned = sanitize_text(value)
    if not cleaned or cleaned.lower() in ("null", "none", "n/a"):
        return None
    return cleaned


def draft_from_answer(data: Dict[str, Any]) -> ProductDraft:
    image_url = _clean_str(data.get("imageUrl") or data.get("image_url"))
    if image_url and not image_url.startswith("http"):
        image_url = None
    return ProductDraft(
        name=_clean_str(data.get("name")),
        price=normalize_price(data.get("price")),
        original_price=normalize_price(data.get("originalPrice") or data.get("original_price")),
        image_url=upgrade_mercadolivre_image(image_url),
        store=_clean_str(data.get("store")),
        description=_clean_str(data.get("description")),
        category=_clean_str(data.get("category")),
        brand=_clean_str(data.get("brand")),
    )


class AIExtractor(SourceWrapper):
    """Gemini wrapper. Available only when an API key is configured."""

    source_name = SOURCE_AI_EXTRACTOR

    def __init__(
        self,
        rate_limiter: RateLimiterService,
        *,
        api_key: Optional[str],
        model: str = "gemini-2.5-flash",
        client: Optional[genai.Client] = None,
        temperature: float = 0.1,
    ) -> None:
        self.api_key = (api_key or "").strip()
        self.model = model
        self.temperature = temperature
        self._client = client
        super().__init__(rate_limiter)

    def _check_availability(self) -> tuple[bool, Optional[str]]:
        if not self.api_key and self._client is None:
            return False, "GEMINI_API_KEY is not set"
        return True, None

    def _get_client(self) -> genai.Client:
        if self._client is None:
            self._client = genai.Client(api_key=self.api_key)
        return self._client

    async def _generate(self, prompt: str, json_output: bool) -> str:
        config = types.GenerateContentConfig(
            temperature=self.temperature,
            response_mime_type="application/json" if json_output else None,
        )
        try:
            response = await self._get_client().aio.models.generate_content(
                model=self.model, contents=prompt, config=config
            )
        except genai_errors.APIError as exc:
            raise error_from_status(
                exc.code or 500,
                f"Gemini request failed: {exc}",
                source=self.source_name,
                body=str(exc),
            ) from exc
        text = getattr(response, "text", None)
        if not text or not text.strip():
            raise InvalidResponseError("Gemini returned an empty answer", source=self.source_name)
        return text

    async def generate_content(
        self,
        prompt: str,
        *,
        json_output: bool = False,
        priority: Priority = Priority.NORMAL,
    ) -> str:
        return await self._call(self._generate, prompt, json_output, priority=priority)

    async def _extract(self, prompt: str) -> ProductDraft:
        text = await self._generate(prompt, True)
        return draft_from_answer(parse_json_answer(text))

    async def extract_from_html(
        self, url: str, html: str, priority: Priority = Priority.NORMAL
    ) -> ProductDraft:
        """Ask the model to read the cleaned page HTML."""
        prompt = build_html_prompt(url, clean_html_for_ai(html, HTML_PROMPT_CHARS))
        draft = await self._call(self._extract, prompt, priority=priority)
        logger.info("AI HTML extraction for %s: name=%s price=%s", url, draft.name, draft.price)
        return draft

    async def extract_from_url(
        self, url: str, priority: Priority = Priority.NORMAL
    ) -> ProductDraft:
        """Search mode: identify the product from the URL alone."""
        draft = await self._call(self._extract, build_search_prompt(url), priority=priority)
        logger.info("AI search extraction for %s: name=%s price=%s", url, draft.name, draft.price)
        return draft
