"""Tests for JSON-LD and meta tag extraction."""

import json

from parsers.structured_data import (
    extract_json_ld,
    extract_meta_tags,
    extract_structured_data,
    find_product_node,
)


def _page(json_ld=None, head_extra: str = "") -> str:
    script = ""
    if json_ld is not None:
        script = f'<script type="application/ld+json">{json.dumps(json_ld)}</script>'
    return f"<html><head>{script}{head_extra}</head><body><p>Produto</p></body></html>"


PRODUCT_NODE = {
    "@context": "https://schema.org",
    "@type": "Product",
    "name": "Smartphone Galaxy S23 128GB",
    "image": ["https://img.example.com/s23.jpg"],
    "description": "Tela 6.1 polegadas",
    "brand": {"@type": "Brand", "name": "Samsung"},
    "offers": {"@type": "Offer", "price": "3899.99", "priceCurrency": "BRL"},
}


def test_find_product_node_inside_graph() -> None:
    document = {"@graph": [{"@type": "BreadcrumbList"}, PRODUCT_NODE]}

    assert find_product_node(document) is PRODUCT_NODE


def test_find_product_node_handles_type_lists_and_main_entity() -> None:
    node = {"@type": ["Thing", "Product"], "name": "Cadeira Gamer"}
    document = {"@type": "WebPage", "mainEntity": node}

    assert find_product_node(document) is node
    assert find_product_node({"@type": "Organization"}) is None


def test_extract_json_ld_product() -> None:
    draft = extract_json_ld(_page(PRODUCT_NODE))

    assert draft.name == "Smartphone Galaxy S23 128GB"
    assert draft.price == 3899.99
    assert draft.image_url == "https://img.example.com/s23.jpg"
    assert draft.brand == "Samsung"


def test_offer_price_fallbacks() -> None:
    node = dict(PRODUCT_NODE, offers=[{"@type": "AggregateOffer", "lowPrice": 10.5, "highPrice": 20}])

    draft = extract_json_ld(_page(node))

    assert draft.price == 10.5
    assert draft.original_price == 20.0


def test_price_specification_is_used_when_price_is_missing() -> None:
    node = dict(PRODUCT_NODE, offers={"priceSpecification": [{"price": "R$ 1.299,90"}]})

    assert extract_json_ld(_page(node)).price == 1299.9


def test_malformed_json_ld_is_skipped() -> None:
    html = (
        '<html><head><script type="application/ld+json">{not json</script>'
        f'<script type="application/ld+json">{json.dumps(PRODUCT_NODE)}</script>'
        "</head><body></body></html>"
    )

    assert extract_json_ld(html).name == "Smartphone Galaxy S23 128GB"


def test_meta_tags() -> None:
    head = (
        '<meta property="og:title" content="Tênis Esportivo Azul">'
        '<meta property="product:price:amount" content="249,90">'
        '<meta property="og:image" content="https://img.example.com/tenis.jpg">'
    )

    draft = extract_meta_tags(_page(head_extra=head))

    assert draft.name == "Tênis Esportivo Azul"
    assert draft.price == 249.9
    assert draft.image_url == "https://img.example.com/tenis.jpg"
    assert extract_meta_tags(_page()) is None


def test_structured_data_fills_json_ld_gaps_from_meta_tags() -> None:
    node = {"@type": "Product", "name": "Cafeteira Expresso"}
    head = (
        '<meta property="og:title" content="Outro nome">'
        '<meta property="product:price:amount" content="599.00">'
    )

    draft = extract_structured_data(_page(node, head))

    assert draft.name == "Cafeteira Expresso"
    assert draft.price == 599.0


def test_structured_data_without_any_source() -> None:
    assert extract_structured_data("") is None
    assert extract_structured_data(_page()) is None
