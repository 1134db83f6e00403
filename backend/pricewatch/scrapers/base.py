"""Data structures shared by the fetcher, the parser and the scraper."""

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

SUPPORT_LEVELS = ("high", "medium", "low", "none")


@dataclass
class SiteConfig:
    """Per-domain extraction hints.

    Selectors listed here are tried before the generic ones.
    """

    price_selectors: List[str] = field(default_factory=list)
    name_selectors: List[str] = field(default_factory=list)
    currency: str = "BRL"
    wait_time_ms: int = 2000

    def __post_init__(self):
        """Validate data after initialization."""
        if self.wait_time_ms < 0:
            raise ValueError("wait_time_ms must be non-negative")
        if not self.currency:
            raise ValueError("currency is required")


@dataclass
class ScrapeResult:
    """Outcome of scraping one URL. Failures carry ``error`` instead of raising."""

    url: str
    domain: str
    success: bool
    price: Optional[float] = None
    name: Optional[str] = None
    error: Optional[str] = None
    duration_ms: int = 0
    scraped_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def __post_init__(self):
        """Validate data after initialization."""
        if self.success and (self.price is None or self.price <= 0):
            raise ValueError("successful results need a positive price")
        if not self.success and not self.error:
            raise ValueError("failed results need an error message")

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["scraped_at"] = self.scraped_at.isoformat()
        return data


@dataclass
class SiteSupport:
    """How well a URL's domain is covered by the known site configs."""

    supported: bool
    confidence: str
    domain: str
    matched_domain: Optional[str] = None
    config: Optional[SiteConfig] = None

    def __post_init__(self):
        """Validate data after initialization."""
        if self.confidence not in SUPPORT_LEVELS:
            raise ValueError(f"confidence must be one of {SUPPORT_LEVELS}")
