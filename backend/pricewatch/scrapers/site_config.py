"""Per-domain extraction hints, mutable at runtime."""

from typing import Dict, Iterator, Optional, Tuple

import structlog

from pricewatch.scrapers.base import SiteConfig, SiteSupport
from pricewatch.scrapers.utils.url import extract_domain

logger = structlog.get_logger(__name__)

ECOMMERCE_KEYWORDS = ("shop", "store", "loja", "compra")


def default_site_configs() -> Dict[str, SiteConfig]:
    """Built-in configs for the major Brazilian retailers."""
    return {
        "amazon.com.br": SiteConfig(
            price_selectors=[".a-price-whole", ".a-price .a-offscreen", "#priceblock_dealprice"],
            name_selectors=["#productTitle", "h1.a-size-large"],
            wait_time_ms=3000,
        ),
        "mercadolivre.com.br": SiteConfig(
            price_selectors=[".andes-money-amount__fraction", ".price-tag-fraction"],
            name_selectors=[".ui-pdp-title", ".item-title"],
        ),
        "americanas.com.br": SiteConfig(
            price_selectors=[".price__Value", ".price-value"],
            name_selectors=[".product-title", "h1"],
        ),
        "magazineluiza.com.br": SiteConfig(
            price_selectors=[".price-template__text", '[data-testid="price-value"]'],
            name_selectors=[".header-product__title", "h1"],
        ),
        "submarino.com.br": SiteConfig(
            price_selectors=[".price__Value", ".sales-price"],
            name_selectors=[".product-title", "h1"],
        ),
        "casasbahia.com.br": SiteConfig(
            price_selectors=[".sales-price", ".price-template__text"],
            name_selectors=[".product-title", ".title"],
        ),
    }


class SiteConfigRegistry:
    """Domain -> SiteConfig mapping.

    Lookups use the bare domain (no ``www.``). Configs can be added or
    removed while the scraper is running; a lookup always sees the latest
    mapping.
    """

    def __init__(self, configs: Optional[Dict[str, SiteConfig]] = None):
        self._configs: Dict[str, SiteConfig] = (
            dict(configs) if configs is not None else default_site_configs()
        )
        self.logger = logger.bind(service="site_config_registry")

    def __len__(self) -> int:
        return len(self._configs)

    def __contains__(self, domain: str) -> bool:
        return domain in self._configs

    def items(self) -> Iterator[Tuple[str, SiteConfig]]:
        return iter(list(self._configs.items()))

    @property
    def domains(self) -> list:
        return list(self._configs)

    def get(self, domain: str) -> Optional[SiteConfig]:
        return self._configs.get(domain)

    def config_for(self, domain: str) -> Optional[SiteConfig]:
        """Config for a domain, falling back to the one of a parent domain."""
        config = self._configs.get(domain)
        if config is not None:
            return config
        for supported, candidate in self._configs.items():
            if domain.endswith("." + supported):
                return candidate
        return None

    def add(self, domain: str, **overrides) -> SiteConfig:
        """Register or replace the config for a domain.

        Unspecified fields take the SiteConfig defaults (no selectors, BRL,
        2000 ms).
        """
        domain = domain.lower().removeprefix("www.")
        config = SiteConfig(**overrides)
        self._configs[domain] = config
        self.logger.info(
            "site_config_added",
            domain=domain,
            price_selectors=len(config.price_selectors),
            name_selectors=len(config.name_selectors),
        )
        return config

    def remove(self, domain: str) -> bool:
        domain = domain.lower().removeprefix("www.")
        if self._configs.pop(domain, None) is None:
            return False
        self.logger.info("site_config_removed", domain=domain)
        return True

    def support_for(self, url: str) -> SiteSupport:
        """Classify how well a URL's site is covered.

        - high: the domain has its own config
        - medium: the domain is a subdomain of a configured one, or the
          other way around
        - low: the domain contains an e-commerce keyword
        - none: anything else
        """
        domain = extract_domain(url)

        config = self._configs.get(domain)
        if config is not None:
            return SiteSupport(True, "high", domain, matched_domain=domain, config=config)

        for supported, config in self._configs.items():
            if domain.endswith("." + supported) or supported.endswith("." + domain):
                return SiteSupport(True, "medium", domain, matched_domain=supported, config=config)

        if any(keyword in domain for keyword in ECOMMERCE_KEYWORDS):
            return SiteSupport(True, "low", domain)

        return SiteSupport(False, "none", domain)
