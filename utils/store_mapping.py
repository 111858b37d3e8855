"""Known e-commerce stores, their display names and catalog identifiers."""

import re
from dataclasses import dataclass
from typing import Dict, Optional
from urllib.parse import urlparse


@dataclass(frozen=True)
class StoreInfo:
    name: str
    # Stores that usually need a rendered page or the crawl service.
    is_difficult: bool = False


STORE_MAP: Dict[str, StoreInfo] = {
    "mercadolivre.com.br": StoreInfo("Mercado Livre", True),
    "amazon.com.br": StoreInfo("Amazon Brasil", True),
    "magazineluiza.com.br": StoreInfo("Magazine Luiza", True),
    "americanas.com.br": StoreInfo("Americanas", True),
    "submarino.com.br": StoreInfo("Submarino", True),
    "casasbahia.com.br": StoreInfo("Casas Bahia", True),
    "extra.com.br": StoreInfo("Extra", True),
    "ponto.com.br": StoreInfo("Ponto", True),
    "shopee.com.br": StoreInfo("Shopee"),
    "shopee.com": StoreInfo("Shopee"),
    "zara.com": StoreInfo("Zara", True),
    "hm.com": StoreInfo("H&M", True),
    "nike.com.br": StoreInfo("Nike Brasil", True),
    "netshoes.com.br": StoreInfo("Netshoes"),
    "dafiti.com.br": StoreInfo("Dafiti"),
    "kabum.com.br": StoreInfo("KaBuM"),
    "pichau.com.br": StoreInfo("Pichau"),
    "aliexpress.com": StoreInfo("AliExpress"),
    "aliexpress.us": StoreInfo("AliExpress"),
    "aliexpress.ru": StoreInfo("AliExpress"),
    "shoptime.com.br": StoreInfo("Shoptime"),
    "sephora.com.br": StoreInfo("Sephora"),
}

CATEGORY_KEYWORDS: Dict[str, str] = {
    "celular": "Eletrônicos",
    "smartphone": "Eletrônicos",
    "iphone": "Eletrônicos",
    "notebook": "Eletrônicos",
    "computador": "Eletrônicos",
    "televisao": "Eletrônicos",
    "tenis": "Roupas e Acessórios",
    "sapato": "Roupas e Acessórios",
    "camiseta": "Roupas e Acessórios",
    "camisa": "Roupas e Acessórios",
    "vestido": "Roupas e Acessórios",
    "movel": "Casa e Decoração",
    "decoracao": "Casa e Decoração",
    "livro": "Livros",
    "ebook": "Livros",
    "playstation": "Games",
    "xbox": "Games",
    "console": "Games",
    "fitness": "Esportes",
    "academia": "Esportes",
}

DEFAULT_STORE_NAME = "Loja Online"
DEFAULT_CATEGORY = "Outros"

_PRODUCT_ID_PATTERNS = {
    "mercadolivre": (
        re.compile(r"/p/(MLB[A-Z0-9]+)", re.IGNORECASE),
        re.compile(r"(MLB-?\d+)", re.IGNORECASE),
    ),
    "amazon": (re.compile(r"/(?:dp|gp/product)/([A-Z0-9]{10})"),),
    "shopee": (re.compile(r"-i\.(\d+\.\d+)"), re.compile(r"/product/(\d+/\d+)")),
    "magazineluiza": (re.compile(r"/p/([a-z0-9]+)/", re.IGNORECASE),),
}


def _hostname(url: str) -> str:
    try:
        hostname = urlparse(url).hostname or ""
    except ValueError:
        return ""
    return hostname[4:] if hostname.startswith("www.") else hostname


def find_store(url: str) -> Optional[StoreInfo]:
    hostname = _hostname(url)
    if not hostname:
        return None
    for domain, info in STORE_MAP.items():
        if hostname == domain or hostname.endswith("." + domain):
            return info
    return None


def extract_store_from_url(url: str) -> str:
    """Display name of the store behind ``url``."""
    info = find_store(url)
    if info:
        return info.name
    hostname = _hostname(url)
    if not hostname:
        return DEFAULT_STORE_NAME
    return hostname.split(".")[0].capitalize()


def is_difficult_site(url: str) -> bool:
    info = find_store(url)
    return bool(info and info.is_difficult)


def extract_category_from_url(url: str) -> str:
    lowered = url.lower()
    for keyword, category in CATEGORY_KEYWORDS.items():
        if keyword in lowered:
            return category
    return DEFAULT_CATEGORY


def detect_platform(url: str) -> Optional[str]:
    hostname = _hostname(url)
    for platform in _PRODUCT_ID_PATTERNS:
        if platform in hostname:
            return platform
    return None


def extract_product_id(url: str) -> Optional[str]:
    """Catalog identifier embedded in a store URL, normalised for its API."""
    platform = detect_platform(url)
    if platform is None:
        return None
    for pattern in _PRODUCT_ID_PATTERNS[platform]:
        match = pattern.search(url)
        if match:
            product_id = match.group(1)
            if platform == "mercadolivre":
                return product_id.upper().replace("-", "")
            return product_id
    return None
