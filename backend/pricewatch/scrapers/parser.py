"""Price and product-name extraction from product pages.

Extraction is a cascade of strategies evaluated in order with early exit:

- price: site-specific selectors, then generic selectors, then regex patterns
  over the raw markup (embedded JSON, ``R$ 1.234,56``, ``BRL 12.34``)
- name: site-specific selectors, then generic selectors, then ``<title>``

Every function here is pure: the same document always yields the same result.
"""

import re
from dataclasses import dataclass
from typing import Iterator, List, Optional, Sequence, Union

from bs4 import BeautifulSoup, Tag
from soupsieve import SelectorSyntaxError

from pricewatch.scrapers.base import SiteConfig

# Tried after the site-specific selectors, in this order
GENERIC_PRICE_SELECTORS: List[str] = [
    ".price",
    ".sale-price",
    ".current-price",
    ".offer-price",
    "[data-price]",
    ".price-current",
    ".product-price",
    ".price-box .price",
    ".price-value",
    ".price-now",
    ".selling-price",
    ".final-price",
    ".discount-price",
    ".special-price",
    ".our-price",
]

GENERIC_NAME_SELECTORS: List[str] = [
    "h1",
    ".product-title",
    ".product-name",
    "#productTitle",
    ".item-title",
    ".title",
    ".product-info h1",
    ".product-header h1",
    '[data-testid="product-title"]',
]

# Searched in the serialized document when no selector produced a price
RAW_PRICE_PATTERNS: List[str] = [
    r'"price":\s*"?(\d+[.,]\d{2})"?',
    r'"amount":\s*"?(\d+[.,]\d{2})"?',
    r'"value":\s*(\d+[.,]\d{2})',
    r"R\$\s*(\d{1,3}(?:\.\d{3})*,\d{2})",
    r"BRL\s*(\d+[.,]\d{2})",
]

# Element attributes consulted, after the element text, for a price
PRICE_ATTRIBUTES = ("data-price", "value", "content", "title")

MAX_NAME_CANDIDATE_LENGTH = 200
MAX_NAME_LENGTH = 150
FALLBACK_PRICE_CEILING = 1_000_000

_NON_PRICE_CHARS = re.compile(r"[^\d.,]")
_NEGATIVE_SIGN = re.compile(r"^[^\d]*-\s*\d")
_BR_THOUSANDS_DECIMAL = re.compile(r"^(\d{1,3}(?:\.\d{3})*),(\d{2})$")
_US_DECIMAL = re.compile(r"^(\d+)\.(\d{2})$")
_COMMA_DECIMAL = re.compile(r"^(\d+),(\d{2})$")
_INTEGER = re.compile(r"^(\d+)$")
_LEADING_FLOAT = re.compile(r"\d+(?:\.\d*)?|\.\d+")


def _positive(value: float) -> Optional[float]:
    return value if value > 0 else None


def parse_price(text: Optional[str]) -> Optional[float]:
    """Parse a price string and extract its numeric value.

    Handles Brazilian and US formats:
    - "R$ 1.234,56" -> 1234.56
    - "234,56" -> 234.56
    - "1234.56" -> 1234.56
    - "1234" -> 1234.0

    Negative amounts ("-5") are rejected. Only the first structural format
    that matches is used. When none does,
    a plain float parse (comma read as a dot) is accepted if it lies strictly
    between 0 and 1,000,000.

    Args:
        text: Raw price text

    Returns:
        Positive price, or None if parsing fails
    """
    if not text or not isinstance(text, str):
        return None

    # A minus before the first digit makes the value negative
    if _NEGATIVE_SIGN.match(text):
        return None

    cleaned = _NON_PRICE_CHARS.sub("", text)
    if not cleaned:
        return None

    match = _BR_THOUSANDS_DECIMAL.match(cleaned)
    if match:
        integer_part = match.group(1).replace(".", "")
        return _positive(float(f"{integer_part}.{match.group(2)}"))

    match = _US_DECIMAL.match(cleaned)
    if match:
        return _positive(float(cleaned))

    match = _COMMA_DECIMAL.match(cleaned)
    if match:
        return _positive(float(f"{match.group(1)}.{match.group(2)}"))

    match = _INTEGER.match(cleaned)
    if match:
        return _positive(float(match.group(1)))

    # Last resort: leading numeric prefix, e.g. "1,234.56" -> "1.234.56" -> 1.234
    prefix = _LEADING_FLOAT.match(cleaned.replace(",", "."))
    if not prefix:
        return None
    value = float(prefix.group(0))
    return value if 0 < value < FALLBACK_PRICE_CEILING else None


def clean_product_name(name: str) -> str:
    """Collapse whitespace, turn ``| • ·`` separators into dashes, cap at 150 chars."""
    cleaned = re.sub(r"\s+", " ", name)
    cleaned = re.sub(r"[\n\r\t]", "", cleaned)
    cleaned = re.sub(r"[|•·]", "-", cleaned)
    return cleaned.strip()[:MAX_NAME_LENGTH]


def parse_document(html: str) -> BeautifulSoup:
    return BeautifulSoup(html, "lxml")


def select_elements(document: BeautifulSoup, selector: str) -> List[Tag]:
    """CSS select that yields nothing for selectors soupsieve cannot parse."""
    # An unsupported selector in a runtime-added site config must not abort extraction
    try:
        return document.select(selector)
    except SelectorSyntaxError:
        return []


# ----------------------------------------------------------------------------
# Strategies
# ----------------------------------------------------------------------------

@dataclass(frozen=True)
class SelectorStrategy:
    """Read a price from every element matching a CSS selector.

    For each element the text is tried first, then the price attributes.
    """

    selector: str
    origin: str = "generic"

    def apply(self, document: BeautifulSoup) -> Optional[float]:
        for element in select_elements(document, self.selector):
            text = element.get_text().strip()
            if text:
                price = parse_price(text)
                if price:
                    return price

            for attr in PRICE_ATTRIBUTES:
                value = element.get(attr)
                if isinstance(value, list):
                    value = " ".join(value)
                if value:
                    price = parse_price(value)
                    if price:
                        return price
        return None

    def describe(self) -> str:
        return f"{self.origin} selector {self.selector}"


@dataclass(frozen=True)
class PatternStrategy:
    """Search the serialized document for a regex and parse its first group."""

    pattern: str

    def apply(self, document: BeautifulSoup) -> Optional[float]:
        match = re.search(self.pattern, str(document))
        if not match:
            return None
        return parse_price(match.group(1))

    def describe(self) -> str:
        return f"pattern {self.pattern}"


@dataclass(frozen=True)
class NameSelectorStrategy:
    """First element matching a selector, accepted if 0 < len < 200."""

    selector: str
    origin: str = "generic"

    def apply(self, document: BeautifulSoup) -> Optional[str]:
        element = _first(document, self.selector)
        if element is None:
            return None
        name = element.get_text().strip()
        if 0 < len(name) < MAX_NAME_CANDIDATE_LENGTH:
            return clean_product_name(name)
        return None

    def describe(self) -> str:
        return f"{self.origin} selector {self.selector}"


@dataclass(frozen=True)
class PageTitleStrategy:
    """Fallback to the document ``<title>``; any non-empty title is accepted."""

    def apply(self, document: BeautifulSoup) -> Optional[str]:
        title = document.title.get_text().strip() if document.title else ""
        return clean_product_name(title) if title else None

    def describe(self) -> str:
        return "page title"


PriceStrategy = Union[SelectorStrategy, PatternStrategy]
NameStrategy = Union[NameSelectorStrategy, PageTitleStrategy]


def _first(document: BeautifulSoup, selector: str) -> Optional[Tag]:
    matches = select_elements(document, selector)
    return matches[0] if matches else None


def price_strategies(site_config: Optional[SiteConfig] = None) -> Iterator[PriceStrategy]:
    if site_config:
        for selector in site_config.price_selectors:
            yield SelectorStrategy(selector, origin="site")
    for selector in GENERIC_PRICE_SELECTORS:
        yield SelectorStrategy(selector)
    for pattern in RAW_PRICE_PATTERNS:
        yield PatternStrategy(pattern)


def name_strategies(site_config: Optional[SiteConfig] = None) -> Iterator[NameStrategy]:
    if site_config:
        for selector in site_config.name_selectors:
            yield NameSelectorStrategy(selector, origin="site")
    for selector in GENERIC_NAME_SELECTORS:
        yield NameSelectorStrategy(selector)
    yield PageTitleStrategy()


# ----------------------------------------------------------------------------
# Public API
# ----------------------------------------------------------------------------

@dataclass(frozen=True)
class Extraction:
    """Extracted value together with the strategy that produced it."""

    value: Union[float, str]
    strategy: str


def _run(strategies: Sequence, document: BeautifulSoup) -> Optional[Extraction]:
    for strategy in strategies:
        value = strategy.apply(document)
        if value:
            return Extraction(value=value, strategy=strategy.describe())
    return None


def _as_document(document: Union[BeautifulSoup, str]) -> BeautifulSoup:
    return parse_document(document) if isinstance(document, str) else document


def find_price(
    document: Union[BeautifulSoup, str],
    site_config: Optional[SiteConfig] = None,
) -> Optional[Extraction]:
    return _run(price_strategies(site_config), _as_document(document))


def find_product_name(
    document: Union[BeautifulSoup, str],
    site_config: Optional[SiteConfig] = None,
) -> Optional[Extraction]:
    return _run(name_strategies(site_config), _as_document(document))


def extract_price(
    document: Union[BeautifulSoup, str],
    site_config: Optional[SiteConfig] = None,
) -> Optional[float]:
    """Extract the product price from a page.

    Args:
        document: Parsed document or raw HTML
        site_config: Optional per-domain selectors tried first

    Returns:
        First accepted price, or None
    """
    found = find_price(document, site_config)
    return float(found.value) if found else None


def extract_product_name(
    document: Union[BeautifulSoup, str],
    site_config: Optional[SiteConfig] = None,
) -> Optional[str]:
    """Extract and clean the product name from a page."""
    found = find_product_name(document, site_config)
    return str(found.value) if found else None
