"""PriceScraper: fetch + extract for one URL or a batch of URLs."""

import asyncio
import time
from typing import Any, Callable, Dict, List, Optional

import structlog

from pricewatch.core.exceptions import FetchError, InvalidURLError
from pricewatch.scrapers.base import ScrapeResult, SiteConfig, SiteSupport
from pricewatch.scrapers.fetcher import Fetcher, SleepFunc
from pricewatch.scrapers.parser import (
    GENERIC_PRICE_SELECTORS,
    find_price,
    find_product_name,
    parse_document,
    select_elements,
)
from pricewatch.scrapers.site_config import SiteConfigRegistry
from pricewatch.scrapers.utils.url import extract_domain, is_valid_url, normalize_url

logger = structlog.get_logger(__name__)

UNNAMED_PRODUCT = "Unnamed product"

ProgressCallback = Callable[[Dict[str, int]], Any]


def _chunks(items: List[str], size: int) -> List[List[str]]:
    return [items[i:i + size] for i in range(0, len(items), size)]


class PriceScraper:
    """Scrapes product prices.

    ``scrape_price`` never raises: every failure is reported as a
    ``ScrapeResult`` with ``success=False`` and an ``error`` message.
    """

    def __init__(
        self,
        fetcher: Fetcher,
        site_configs: Optional[SiteConfigRegistry] = None,
        sleep: SleepFunc = asyncio.sleep,
    ):
        """Initialize scraper.

        Args:
            fetcher: Page fetcher (owns retry/backoff)
            site_configs: Domain configs; the built-in retailers when None
            sleep: Awaitable sleep used between batch groups
        """
        self.fetcher = fetcher
        self.site_configs = site_configs if site_configs is not None else SiteConfigRegistry()
        self._sleep = sleep
        self._active_scrapes = 0
        self._total_scrapes = 0
        self._failed_scrapes = 0
        self._started = time.monotonic()
        self.logger = logger.bind(service="price_scraper")

    async def scrape_price(self, url: str) -> ScrapeResult:
        """Fetch a product page and extract its price and name.

        Args:
            url: Product URL; tracking parameters are stripped first

        Returns:
            ScrapeResult whose ``url`` is the normalized URL
        """
        started = time.monotonic()
        self._active_scrapes += 1
        self._total_scrapes += 1

        def _elapsed() -> int:
            return int((time.monotonic() - started) * 1000)

        try:
            if not is_valid_url(url):
                raise InvalidURLError(url)

            normalized = normalize_url(url)
            domain = extract_domain(normalized)
            self.logger.info("scrape_started", url=normalized, domain=domain)

            response = await self.fetcher.fetch(normalized, domain)
            price, name = self._extract(response.text, self.site_configs.config_for(domain))

            if price is None:
                result = ScrapeResult(
                    url=normalized,
                    domain=domain,
                    success=False,
                    name=name,
                    error="Could not extract a price from the page",
                    duration_ms=_elapsed(),
                )
            else:
                result = ScrapeResult(
                    url=normalized,
                    domain=domain,
                    success=True,
                    price=price,
                    name=name or UNNAMED_PRODUCT,
                    duration_ms=_elapsed(),
                )

        except (FetchError, InvalidURLError) as e:
            result = ScrapeResult(
                url=normalize_url(url) if is_valid_url(url) else url,
                domain=extract_domain(url),
                success=False,
                error=e.message,
                duration_ms=_elapsed(),
            )
        except Exception as e:
            # Parser or unexpected failure: still a failed result, never an exception
            self.logger.error("scrape_unexpected_error", url=url, error=str(e), exc_info=True)
            result = ScrapeResult(
                url=url,
                domain=extract_domain(url),
                success=False,
                error=f"Extraction error: {e}",
                duration_ms=_elapsed(),
            )
        finally:
            self._active_scrapes -= 1

        if result.success:
            self.logger.info(
                "scrape_succeeded",
                url=result.url,
                price=result.price,
                duration_ms=result.duration_ms,
            )
        else:
            self._failed_scrapes += 1
            self.logger.warning(
                "scrape_failed",
                url=result.url,
                error=result.error,
                duration_ms=result.duration_ms,
            )
        return result

    @staticmethod
    def _extract(html: str, site_config: Optional[SiteConfig]):
        document = parse_document(html)
        price = find_price(document, site_config)
        name = find_product_name(document, site_config)
        return (
            float(price.value) if price else None,
            str(name.value) if name else None,
        )

    async def scrape_batch(
        self,
        urls: List[str],
        concurrency: int = 3,
        delay_between_batches: float = 2.0,
        on_progress: Optional[ProgressCallback] = None,
    ) -> List[ScrapeResult]:
        """Scrape URLs in fixed-size groups.

        Each group runs fully in parallel and is awaited as a whole before
        the next one starts; groups are separated by ``delay_between_batches``
        seconds (no delay after the last group).

        Args:
            urls: URLs to scrape
            concurrency: Group size
            delay_between_batches: Seconds between groups
            on_progress: Called after each group with completed/total/progress

        Returns:
            One ScrapeResult per URL, in input order
        """
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")

        results: List[ScrapeResult] = []
        groups = _chunks(list(urls), concurrency)
        total = len(urls)

        for index, group in enumerate(groups):
            outcomes = await asyncio.gather(
                *(self.scrape_price(url) for url in group),
                return_exceptions=True,
            )
            for url, outcome in zip(group, outcomes):
                if isinstance(outcome, BaseException):
                    results.append(
                        ScrapeResult(
                            url=url,
                            domain=extract_domain(url),
                            success=False,
                            error=str(outcome) or type(outcome).__name__,
                        )
                    )
                else:
                    results.append(outcome)

            if on_progress:
                on_progress(
                    {
                        "completed": len(results),
                        "total": total,
                        "progress": round(len(results) / total * 100),
                    }
                )

            if index < len(groups) - 1:
                await self._sleep(delay_between_batches)

        self.logger.info(
            "batch_completed",
            total=total,
            successful=sum(1 for r in results if r.success),
        )
        return results

    def is_supported_site(self, url: str) -> SiteSupport:
        return self.site_configs.support_for(url)

    def add_site_config(self, domain: str, **config) -> SiteConfig:
        return self.site_configs.add(domain, **config)

    def remove_site_config(self, domain: str) -> bool:
        return self.site_configs.remove(domain)

    async def debug_scrape(self, url: str) -> Dict[str, Any]:
        """Fetch a page and report what every price selector sees.

        Returns:
            Dict with status, content length, page title, per-selector match
            counts with up to three texts, and the extraction outcome; or a
            dict with ``error`` when the fetch failed
        """
        started = time.monotonic()
        domain = extract_domain(url)
        self.logger.info("debug_scrape_started", url=url)

        try:
            response = await self.fetcher.fetch(url, domain)
        except (FetchError, InvalidURLError) as e:
            duration_ms = int((time.monotonic() - started) * 1000)
            self.logger.warning("debug_scrape_failed", url=url, error=e.message, duration_ms=duration_ms)
            return {"url": url, "domain": domain, "error": e.message, "duration_ms": duration_ms}

        document = parse_document(response.text)
        site_config = self.site_configs.config_for(domain)

        selectors: Dict[str, Dict[str, Any]] = {}
        site_selectors = site_config.price_selectors if site_config else []
        for selector in [*site_selectors, *GENERIC_PRICE_SELECTORS]:
            elements = select_elements(document, selector)
            selectors[selector] = {
                "found": len(elements),
                "texts": [el.get_text().strip() for el in elements[:3]],
            }

        price = find_price(document, site_config)
        name = find_product_name(document, site_config)
        duration_ms = int((time.monotonic() - started) * 1000)
        self.logger.info("debug_scrape_completed", url=url, success=price is not None, duration_ms=duration_ms)

        return {
            "url": url,
            "domain": domain,
            "status": response.status_code,
            "content_length": response.content_length,
            "title": document.title.get_text().strip() if document.title else "",
            "selectors": selectors,
            "extracted": {
                "success": price is not None,
                "price": float(price.value) if price else None,
                "price_strategy": price.strategy if price else None,
                "name": str(name.value) if name else None,
                "name_strategy": name.strategy if name else None,
            },
            "duration_ms": duration_ms,
        }

    def get_stats(self) -> Dict[str, Any]:
        return {
            "supported_sites": len(self.site_configs),
            "active_scrapes": self._active_scrapes,
            "total_scrapes": self._total_scrapes,
            "failed_scrapes": self._failed_scrapes,
            "uptime_seconds": int(time.monotonic() - self._started),
        }
