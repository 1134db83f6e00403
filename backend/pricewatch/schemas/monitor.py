"""Monitor and scraper schemas."""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class ForceCheckRequest(BaseModel):
    """Force an immediate check of one product, or of all active ones."""

    product_id: Optional[int] = None


class ForceCheckResponse(BaseModel):
    total: int
    successful: int
    failed: int
    results: List[Dict[str, Any]]


class CheckIntervalRequest(BaseModel):
    minutes: int = Field(..., ge=1, le=1440)


class SiteSupportResponse(BaseModel):
    """How well the scraper is expected to handle a URL."""

    supported: bool
    confidence: str
    domain: str
    matched_domain: Optional[str] = None


class ScrapeBatchRequest(BaseModel):
    urls: List[str] = Field(..., min_length=1, max_length=20)


class SiteConfigRequest(BaseModel):
    """Extraction hints for one domain; omitted fields take the defaults."""

    price_selectors: List[str] = Field(default_factory=list)
    name_selectors: List[str] = Field(default_factory=list)
    currency: str = Field("BRL", min_length=1, max_length=10)
    wait_time_ms: int = Field(2000, ge=0)
