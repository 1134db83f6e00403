"""Price scraping: page fetching, price/name extraction and site configs.

This package provides:
- Fetcher: HTTP fetching with browser-like headers, retries and block detection
- PriceScraper: fetch + extract for single URLs and bounded batches
- SiteConfigRegistry: per-domain selectors, mutable at runtime
"""

from pricewatch.scrapers.base import ScrapeResult, SiteConfig, SiteSupport
from pricewatch.scrapers.fetcher import Fetcher, FetchResponse
from pricewatch.scrapers.scraper import PriceScraper
from pricewatch.scrapers.site_config import SiteConfigRegistry

__all__ = [
    "Fetcher",
    "FetchResponse",
    "PriceScraper",
    "ScrapeResult",
    "SiteConfig",
    "SiteConfigRegistry",
    "SiteSupport",
]
