"""
Multi-source product resolution.

Turns a product URL into a ``ResolvedProduct`` by walking a cascade of
sources, cheapest first, and stopping at the first adequate result:

    catalog API -> page HTML (fetch / browser / crawl service)
    -> structured data -> AI extraction -> CSS heuristics

Every external call goes through the shared ``RateLimiterService`` via the
source wrappers; a failing step is logged and the cascade moves on.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Awaitable, List, Optional, Tuple

from core.types import ExtractionMethod, Priority, ProductDraft, ResolvedProduct
from network.ai_extractor import AIExtractor
from network.catalog_apis import CatalogAPIClient
from network.crawl_client import CrawlServiceClient
from network.headless_browser import HeadlessBrowser
from network.page_fetcher import PageFetcher
from parsers.heuristic_parser import extract_with_heuristics
from parsers.structured_data import extract_structured_data
from utils.error_handling import InvalidUrlError, PipelineError
from utils.helpers import extract_name_from_url, is_plausible_name, is_usable_html, validate_url
from utils.logger import get_logger
from utils.store_mapping import (
    extract_category_from_url,
    extract_store_from_url,
    is_difficult_site,
)

logger = get_logger(__name__)


@dataclass
class Candidate:
    draft: ProductDraft
    method: ExtractionMethod

    def score(self) -> Tuple[int, int, int]:
        return (
            int(is_plausible_name(self.draft.name)),
            int(bool(self.draft.price and self.draft.price > 0)),
            self.draft.filled_fields(),
        )


class ProductResolver:
    """Cascade over catalog APIs, page HTML, structured data, AI and heuristics."""

    def __init__(
        self,
        *,
        catalog: Optional[CatalogAPIClient] = None,
        page_fetcher: Optional[PageFetcher] = None,
        browser: Optional[HeadlessBrowser] = None,
        crawl_service: Optional[CrawlServiceClient] = None,
        ai_extractor: Optional[AIExtractor] = None,
    ) -> None:
        self.catalog = catalog
        self.page_fetcher = page_fetcher
        self.browser = browser
        self.crawl_service = crawl_service
        self.ai_extractor = ai_extractor

    @staticmethod
    def is_adequate(draft: Optional[ProductDraft], accept_partial: bool = False) -> bool:
        if draft is None or not is_plausible_name(draft.name):
            return False
        if accept_partial:
            return True
        return bool(draft.price and draft.price > 0)

    @staticmethod
    def _available(wrapper) -> bool:
        return wrapper is not None and wrapper.is_available()

    async def _attempt(self, step: str, url: str, call: Awaitable):
        """Await one cascade step; failures are logged and reported as ``None``."""
        try:
            return await call
        except PipelineError as exc:
            logger.warning("%s failed for %s: [%s] %s", step, url, exc.kind.value, exc)
        except Exception as exc:
            logger.warning("%s failed for %s: %s", step, url, exc, exc_info=True)
        return None

    def _finish(
        self,
        url: str,
        draft: ProductDraft,
        method: ExtractionMethod,
        *,
        needs_manual_input: bool = False,
    ) -> ResolvedProduct:
        store = extract_store_from_url(url)
        if not draft.category:
            draft.category = extract_category_from_url(url)
        product = ResolvedProduct.from_draft(
            draft,
            url=url,
            store=store,
            method=method,
            needs_manual_input=needs_manual_input,
        )
        logger.info(
            "Resolved %s via %s (name=%r price=%s manual=%s)",
            url,
            method.value,
            product.name,
            product.price,
            needs_manual_input,
            extra={"event_type": "cascade"},
        )
        return product

    async def _fetch_html(
        self, url: str, candidates: List[Candidate], priority: Priority
    ) -> Optional[str]:
        """Page fetch, then headless browser, then crawl service for difficult stores."""
        if self._available(self.page_fetcher):
            page = await self._attempt("Page fetch", url, self.page_fetcher.fetch(url, priority))
            if page is not None and is_usable_html(page.html):
                return page.html

        if self._available(self.browser):
            page = await self._attempt(
                "Headless browser",
                url,
                self.browser.scrape_url(url, wait_for_selector="h1", priority=priority),
            )
            if page is not None and is_usable_html(page.html):
                return page.html

        if is_difficult_site(url) and self._available(self.crawl_service):
            result = await self._attempt(
                "Crawl service", url, self.crawl_service.scrape_url(url, priority=priority)
            )
            if result is not None:
                draft = CrawlServiceClient.product_from_metadata(result, url)
                if draft is not None:
                    candidates.append(Candidate(draft, ExtractionMethod.CRAWL_METADATA))
                html = CrawlServiceClient.html_from(result)
                if is_usable_html(html):
                    return html
        return None

    async def resolve_product(
        self,
        url: str,
        accept_partial: bool = False,
        priority: Priority = Priority.NORMAL,
    ) -> ResolvedProduct:
        """Resolve ``url`` to product metadata.

        Raises ``InvalidUrlError`` for malformed URLs. Otherwise always returns
        a product: when no step produced an adequate result the best partial
        candidate (or a placeholder derived from the URL) is returned with
        ``needs_manual_input=True``.
        """
        url = (url or "").strip()
        if not validate_url(url):
            raise InvalidUrlError(f"Invalid product URL: {url!r}")

        candidates: List[Candidate] = []

        def accept(draft: Optional[ProductDraft], method: ExtractionMethod) -> bool:
            if draft is None:
                return False
            candidates.append(Candidate(draft, method))
            return self.is_adequate(draft, accept_partial)

        # 1. Store catalog APIs
        if self._available(self.catalog):
            draft = await self._attempt("Catalog lookup", url, self.catalog.lookup(url, priority))
            if accept(draft, ExtractionMethod.CATALOG_API):
                return self._finish(url, draft, ExtractionMethod.CATALOG_API)

        # 2. Page HTML
        html = await self._fetch_html(url, candidates, priority)
        for candidate in candidates:
            if candidate.method is ExtractionMethod.CRAWL_METADATA and self.is_adequate(
                candidate.draft, accept_partial
            ):
                return self._finish(url, candidate.draft, candidate.method)

        # 3. Structured data
        structured: Optional[ProductDraft] = None
        if html:
            structured = extract_structured_data(html)
            if accept(structured, ExtractionMethod.STRUCTURED_DATA):
                return self._finish(url, structured, ExtractionMethod.STRUCTURED_DATA)

        # 4. AI extraction (page HTML, or search mode without HTML)
        if self._available(self.ai_extractor):
            if html:
                method = ExtractionMethod.AI_EXTRACTION
                ai_draft = await self._attempt(
                    "AI extraction", url, self.ai_extractor.extract_from_html(url, html, priority)
                )
            else:
                method = ExtractionMethod.AI_SEARCH
                ai_draft = await self._attempt(
                    "AI search", url, self.ai_extractor.extract_from_url(url, priority)
                )
            if ai_draft is not None and structured is not None:
                ai_draft = ai_draft.merged_with(structured)
            if accept(ai_draft, method):
                return self._finish(url, ai_draft, method)

        # 5. CSS heuristics
        if html:
            heuristic = extract_with_heuristics(html, url)
            if accept(heuristic, ExtractionMethod.HEURISTIC):
                return self._finish(url, heuristic, ExtractionMethod.HEURISTIC)

        # 6. Exhausted: best partial candidate or a placeholder
        plausible = [c for c in candidates if is_plausible_name(c.draft.name)]
        if plausible:
            best = max(plausible, key=Candidate.score)
            logger.warning("No adequate result for %s, returning best partial", url)
            return self._finish(url, best.draft, best.method, needs_manual_input=True)

        logger.warning("Every extraction step failed for %s", url)
        placeholder = ProductDraft(
            name=extract_name_from_url(url) or f"Produto {extract_store_from_url(url)}"
        )
        return self._finish(url, placeholder, ExtractionMethod.MANUAL, needs_manual_input=True)
