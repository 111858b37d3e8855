"""Headless Chromium rendering through the ``headless-browser`` source."""

import asyncio
import base64
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from playwright.async_api import (
    Browser,
    Error as PlaywrightError,
    Playwright,
    TimeoutError as PlaywrightTimeoutError,
    async_playwright,
)

from core.rate_limited_executor import RateLimiterService
from core.types import SOURCE_HEADLESS_BROWSER, Priority
from network.base_source import SourceWrapper
from utils.error_handling import InvalidResponseError, NetworkError, SourceTimeoutError
from utils.helpers import MIN_HTML_LENGTH, looks_like_guard_html
from utils.logger import get_logger

DEFAULT_BLOCKED_RESOURCES = ("image", "stylesheet", "font", "media", "websocket")

DEFAULT_LAUNCH_ARGS: List[str] = [
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",
    "--disable-gpu",
    "--disable-extensions",
    "--no-first-run",
]

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)


@dataclass
class BrowserPage:
    url: str
    final_url: str
    html: str
    title: str = ""
    screenshot_base64: Optional[str] = None

    @property
    def blocked(self) -> bool:
        return looks_like_guard_html(self.html)


class HeadlessBrowser(SourceWrapper):
    """Renders pages with a shared Playwright Chromium instance."""

    source_name = SOURCE_HEADLESS_BROWSER

    def __init__(
        self,
        rate_limiter: RateLimiterService,
        config: Optional[Dict[str, Any]] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.config = config or {}
        self.logger = logger or get_logger(__name__)
        self.enabled = bool(self.config.get("enabled", True))
        self.navigation_timeout_ms = int(self.config.get("navigation_timeout_ms", 30_000))
        self.wait_for_selector_timeout_ms = int(
            self.config.get("wait_for_selector_timeout_ms", 5_000)
        )
        self.settle_delay_ms = int(self.config.get("settle_delay_ms", 3_000))
        self.blocked_resources = set(
            self.config.get("block_resources", DEFAULT_BLOCKED_RESOURCES)
        )
        self.launch_args = list(self.config.get("launch_args", DEFAULT_LAUNCH_ARGS))
        self.user_agent = self.config.get("user_agent", DEFAULT_USER_AGENT)

        self.playwright: Optional[Playwright] = None
        self.browser: Optional[Browser] = None
        self._playwright_lock = asyncio.Lock()
        super().__init__(rate_limiter)

    def _check_availability(self) -> tuple:
        if not self.enabled:
            return False, "Headless browser disabled by configuration"
        return True, None

    async def start(self) -> None:
        if self.browser:
            return
        async with self._playwright_lock:
            if self.browser:
                return
            self.logger.debug("Starting async Playwright")
            self.playwright = await async_playwright().start()
            self.browser = await self.playwright.chromium.launch(
                headless=True, args=self.launch_args
            )

    async def stop(self) -> None:
        if self.browser:
            await self.browser.close()
            self.browser = None
        if self.playwright:
            await self.playwright.stop()
            self.playwright = None

    async def _route_handler(self, route, request) -> None:
        if request.resource_type in self.blocked_resources:
            await route.abort()
            return
        await route.continue_()

    async def _render(
        self, url: str, wait_for_selector: Optional[str], screenshot: bool
    ) -> BrowserPage:
        await self.start()
        context = await self.browser.new_context(
            user_agent=self.user_agent, locale="pt-BR", viewport={"width": 1366, "height": 768}
        )
        try:
            page = await context.new_page()
            if self.blocked_resources and not screenshot:
                await page.route("**/*", self._route_handler)

            try:
                await page.goto(
                    url, wait_until="domcontentloaded", timeout=self.navigation_timeout_ms
                )
            except PlaywrightTimeoutError as exc:
                raise SourceTimeoutError(
                    f"Navigation to {url} timed out", source=self.source_name
                ) from exc
            except PlaywrightError as exc:
                raise NetworkError(
                    f"Navigation to {url} failed: {exc}", source=self.source_name
                ) from exc

            if self.settle_delay_ms:
                await page.wait_for_timeout(self.settle_delay_ms)

            if wait_for_selector:
                try:
                    await page.wait_for_selector(
                        wait_for_selector, timeout=self.wait_for_selector_timeout_ms
                    )
                except PlaywrightTimeoutError:
                    self.logger.debug("Selector %s not found on %s", wait_for_selector, url)

            html = await page.content()
            shot = None
            if screenshot:
                shot = base64.b64encode(await page.screenshot(full_page=False)).decode("ascii")
            return BrowserPage(
                url=url,
                final_url=page.url,
                html=html,
                title=await page.title(),
                screenshot_base64=shot,
            )
        finally:
            await context.close()

    def _validate(self, page: BrowserPage) -> None:
        if len(page.html or "") <= MIN_HTML_LENGTH:
            raise InvalidResponseError(
                f"Rendered page too short ({len(page.html or '')} chars)",
                source=self.source_name,
            )

    async def scrape_url(
        self,
        url: str,
        wait_for_selector: Optional[str] = None,
        screenshot: bool = False,
        priority: Priority = Priority.NORMAL,
    ) -> BrowserPage:
        """Render ``url`` and return its HTML, optionally with a screenshot."""
        page = await self._call(
            self._render,
            url,
            wait_for_selector,
            screenshot,
            priority=priority,
            validate=self._validate,
        )
        self.logger.info("Rendered %s (%d chars)", url, len(page.html))
        return page
