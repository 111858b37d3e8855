"""Tests for the source wrappers, using httpx.MockTransport and fake AI clients."""

from __future__ import annotations

import json
from types import SimpleNamespace
from typing import Any, Dict, List

import httpx
import pytest

from core.types import (
    SOURCE_AI_EXTRACTOR,
    SOURCE_CATALOG_API,
    SOURCE_CRAWL_SERVICE,
    SOURCE_HEADLESS_BROWSER,
    SOURCE_PAGE_FETCH,
)
from network.ai_extractor import AIExtractor, parse_json_answer
from network.base_source import SourceWrapper
from network.catalog_apis import CatalogAPIClient
from network.crawl_client import CrawlServiceClient
from network.headless_browser import BrowserPage, HeadlessBrowser
from network.page_fetcher import PageFetcher
from utils.error_handling import (
    InsufficientCreditsError,
    InvalidResponseError,
    MissingCredentialsError,
    NetworkError,
    NotFoundError,
)

PRODUCT_HTML = "<html><head><title>Fone Bluetooth</title></head><body>" + "x" * 200 + "</body></html>"


@pytest.fixture
def service(make_service, make_config):
    configs = {
        name: make_config(max_retries=2)
        for name in (
            SOURCE_AI_EXTRACTOR,
            SOURCE_CRAWL_SERVICE,
            SOURCE_HEADLESS_BROWSER,
            SOURCE_CATALOG_API,
            SOURCE_PAGE_FETCH,
        )
    }
    return make_service(configs)


def _client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


# ---------------------------------------------------------------------------
# Page fetch
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_page_fetch_returns_html(service) -> None:
    seen: List[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(str(request.url))
        return httpx.Response(200, text=PRODUCT_HTML, headers={"content-type": "text/html"})

    fetcher = PageFetcher(service, client=_client(handler))
    page = await fetcher.fetch("https://loja.example.com/produto")

    assert page.html == PRODUCT_HTML
    assert page.status_code == 200
    assert page.blocked is False
    assert seen == ["https://loja.example.com/produto"]
    assert service.get_stats(SOURCE_PAGE_FETCH)["successful_requests"] == 1


@pytest.mark.asyncio
async def test_page_fetch_short_body_is_retried_once(service) -> None:
    calls = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal calls
        calls += 1
        return httpx.Response(200, text="<html></html>")

    fetcher = PageFetcher(service, client=_client(handler))
    with pytest.raises(InvalidResponseError):
        await fetcher.fetch("https://loja.example.com/produto")

    assert calls == 2


@pytest.mark.asyncio
async def test_page_fetch_maps_status_codes(service) -> None:
    calls: Dict[str, int] = {"missing": 0, "down": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/missing":
            calls["missing"] += 1
            return httpx.Response(404, text="not here")
        calls["down"] += 1
        return httpx.Response(503, text="unavailable")

    fetcher = PageFetcher(service, client=_client(handler))

    with pytest.raises(NotFoundError):
        await fetcher.fetch("https://loja.example.com/missing")
    with pytest.raises(NetworkError):
        await fetcher.fetch("https://loja.example.com/down")

    assert calls == {"missing": 1, "down": 3}


# ---------------------------------------------------------------------------
# Crawl service
# ---------------------------------------------------------------------------


def _crawl_success(url: str) -> Dict[str, Any]:
    return {
        "success": True,
        "credits_used": 1,
        "data": {
            "html": PRODUCT_HTML,
            "metadata": {"title": "Fone Bluetooth JBL", "price": "R$ 129,90", "og:image": "https://img.example.com/a.jpg"},
        },
    }


@pytest.mark.asyncio
async def test_crawl_service_without_key_is_unavailable(service) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError("no request expected")

    crawl = CrawlServiceClient(service, api_key=None, client=_client(handler))

    assert crawl.is_available() is False
    with pytest.raises(MissingCredentialsError):
        await crawl.scrape_url("https://www.mercadolivre.com.br/p/MLB123")
    assert service.get_stats(SOURCE_CRAWL_SERVICE)["total_requests"] == 0


@pytest.mark.asyncio
async def test_crawl_service_rotates_key_on_payment_required(service) -> None:
    used_keys: List[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        key = request.headers["Authorization"].removeprefix("Bearer ")
        used_keys.append(key)
        if key == "first":
            return httpx.Response(402, json={"error": "insufficient credits"})
        return httpx.Response(200, json=_crawl_success(json.loads(request.content)["url"]))

    crawl = CrawlServiceClient(
        service, api_key="first", api_keys=["second"], client=_client(handler)
    )
    result = await crawl.scrape_url("https://www.mercadolivre.com.br/p/MLB123")

    assert used_keys == ["first", "second"]
    assert crawl.api_key == "second"
    assert CrawlServiceClient.html_from(result) == PRODUCT_HTML


@pytest.mark.asyncio
async def test_crawl_service_stops_after_keys_are_exhausted(service) -> None:
    calls = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal calls
        calls += 1
        return httpx.Response(402, json={"error": "insufficient credits"})

    crawl = CrawlServiceClient(service, api_key="only", client=_client(handler))

    with pytest.raises(InsufficientCreditsError):
        await crawl.scrape_url("https://www.mercadolivre.com.br/p/MLB123")
    assert calls == 1

    with pytest.raises(InsufficientCreditsError):
        await crawl.scrape_url("https://www.mercadolivre.com.br/p/MLB456")
    assert calls == 1


@pytest.mark.asyncio
async def test_crawl_service_tries_next_endpoint_when_missing(service) -> None:
    hosts: List[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        hosts.append(str(request.url))
        if request.url.path == "/v2/crawl":
            return httpx.Response(404, text="Not Found")
        return httpx.Response(200, json=_crawl_success("x"))

    crawl = CrawlServiceClient(
        service,
        api_key="key",
        endpoints=["https://crawl.example.com/v2/crawl", "https://crawl.example.com/v1/crawl"],
        client=_client(handler),
    )
    await crawl.scrape_url("https://loja.example.com/produto")

    assert hosts == ["https://crawl.example.com/v2/crawl", "https://crawl.example.com/v1/crawl"]


def test_product_from_crawl_metadata() -> None:
    draft = CrawlServiceClient.product_from_metadata(
        _crawl_success("x"), "https://www.mercadolivre.com.br/p/MLB123"
    )

    assert draft is not None
    assert draft.name == "Fone Bluetooth JBL"
    assert draft.price == 129.9


@pytest.mark.asyncio
async def test_check_credits_reads_remaining_credits(service) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.headers["Authorization"] == "Bearer key"
        return httpx.Response(200, json={"remaining_credits": 42})

    crawl = CrawlServiceClient(service, api_key="key", client=_client(handler))

    assert await crawl.check_credits() == 42
    assert service.get_stats(SOURCE_CRAWL_SERVICE)["total_requests"] == 0


# ---------------------------------------------------------------------------
# AI extractor
# ---------------------------------------------------------------------------


class FakeModels:
    def __init__(self, answers: List[str]) -> None:
        self.answers = list(answers)
        self.calls: List[Dict[str, Any]] = []

    async def generate_content(self, *, model: str, contents: str, config: Any) -> SimpleNamespace:
        self.calls.append({"model": model, "contents": contents})
        answer = self.answers.pop(0) if len(self.answers) > 1 else self.answers[0]
        return SimpleNamespace(text=answer)


def _fake_genai(answers: List[str]) -> SimpleNamespace:
    return SimpleNamespace(aio=SimpleNamespace(models=FakeModels(answers)))


def test_parse_json_answer_strips_markdown_fences() -> None:
    answer = 'Here it is:\n```json\n{"name": "Fone", "price": 99.9}\n```'

    assert parse_json_answer(answer) == {"name": "Fone", "price": 99.9}


def test_parse_json_answer_rejects_prose() -> None:
    with pytest.raises(InvalidResponseError):
        parse_json_answer("I could not find the product.")


@pytest.mark.asyncio
async def test_ai_extractor_builds_draft_from_answer(service) -> None:
    client = _fake_genai(
        ['{"name": "Fone Bluetooth JBL", "price": "R$ 129,90", "imageUrl": "https://img.example.com/a.jpg", "brand": "JBL"}']
    )
    extractor = AIExtractor(service, api_key=None, client=client)

    draft = await extractor.extract_from_html("https://loja.example.com/fone", PRODUCT_HTML)

    assert extractor.is_available() is True
    assert draft.name == "Fone Bluetooth JBL"
    assert draft.price == 129.9
    assert draft.brand == "JBL"
    assert "https://loja.example.com/fone" in client.aio.models.calls[0]["contents"]
    assert service.get_stats(SOURCE_AI_EXTRACTOR)["successful_requests"] == 1


@pytest.mark.asyncio
async def test_ai_extractor_retries_unparseable_answer_once(service) -> None:
    client = _fake_genai(["not json at all"])
    extractor = AIExtractor(service, api_key=None, client=client)

    with pytest.raises(InvalidResponseError):
        await extractor.extract_from_url("https://loja.example.com/fone")

    assert len(client.aio.models.calls) == 2


@pytest.mark.asyncio
async def test_ai_extractor_without_key_is_unavailable(service) -> None:
    extractor = AIExtractor(service, api_key="  ")

    assert extractor.is_available() is False
    assert extractor.unavailable_reason == "GEMINI_API_KEY is not set"
    with pytest.raises(MissingCredentialsError):
        await extractor.generate_content("hello")


# ---------------------------------------------------------------------------
# Catalog APIs
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_catalog_lookup_uses_mercadolivre_items_api(service) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/items/MLB1234567890"
        return httpx.Response(
            200,
            json={
                "title": "Fone Bluetooth JBL Tune 510",
                "price": 199.9,
                "original_price": 249.9,
                "category_id": "MLB1051",
                "pictures": [{"secure_url": "https://http2.mlstatic.com/D_123-I.jpg"}],
                "attributes": [{"id": "BRAND", "value_name": "JBL"}],
            },
        )

    catalog = CatalogAPIClient(service, client=_client(handler))
    draft = await catalog.lookup(
        "https://produto.mercadolivre.com.br/MLB-1234567890-fone-bluetooth-jbl-_JM"
    )

    assert draft.name == "Fone Bluetooth JBL Tune 510"
    assert draft.price == 199.9
    assert draft.original_price == 249.9
    assert draft.brand == "JBL"
    assert draft.category == "Eletrônicos"
    assert draft.image_url == "https://http2.mlstatic.com/D_123-O.jpg"


@pytest.mark.asyncio
async def test_catalog_lookup_without_google_returns_none(service) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError("no request expected")

    catalog = CatalogAPIClient(service, client=_client(handler))

    assert catalog.google_available is False
    assert await catalog.lookup("https://loja.example.com/produto/123") is None
    with pytest.raises(MissingCredentialsError):
        await catalog.google_search("fone bluetooth")


# ---------------------------------------------------------------------------
# Headless browser and base wrapper
# ---------------------------------------------------------------------------


def test_disabled_browser_is_unavailable(service) -> None:
    browser = HeadlessBrowser(service, {"enabled": False})

    assert browser.is_available() is False
    with pytest.raises(InvalidResponseError):
        browser._validate(BrowserPage(url="u", final_url="u", html="<html></html>"))


class _FlakySource(SourceWrapper):
    source_name = SOURCE_PAGE_FETCH

    async def run(self, operation):
        return await self._call(operation)


@pytest.mark.asyncio
async def test_wrapper_fallback_replaces_retriable_failures(service) -> None:
    wrapper = _FlakySource(service, fallback={"fallback": True})

    async def transport_failure():
        raise httpx.ConnectError("connection refused")

    assert await wrapper.run(transport_failure) == {"fallback": True}
    assert service.get_stats(SOURCE_PAGE_FETCH)["failed_requests"] == 1


def test_wrapper_and_parser_modules_use_pipeline_loggers() -> None:
    from network import ai_extractor, catalog_apis, crawl_client, page_fetcher
    from parsers import heuristic_parser, structured_data

    for module in (
        ai_extractor,
        catalog_apis,
        crawl_client,
        page_fetcher,
        heuristic_parser,
        structured_data,
    ):
        assert module.logger.name == module.__name__
        assert module.logger.handlers
