"""Product Pydantic schemas for request/response validation."""

from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from pricewatch.scrapers.utils.url import is_valid_url


class ProductCreate(BaseModel):
    """Request body for tracking a new product.

    The URL is scraped first; ``name`` and ``current_price`` fill in
    whatever the page did not provide.
    """

    url: str = Field(..., max_length=2000)
    name: Optional[str] = Field(None, max_length=500)
    target_price: Optional[float] = Field(None, ge=0)
    promotion_threshold: Optional[float] = Field(None, gt=0, le=1)
    channel_id: Optional[str] = None
    guild_id: Optional[str] = None
    user_id: Optional[str] = None

    @field_validator("url")
    @classmethod
    def check_url(cls, value: str) -> str:
        value = value.strip()
        if not is_valid_url(value):
            raise ValueError("url must be an absolute http(s) URL")
        return value


class ProductUpdate(BaseModel):
    """Editable product fields; unset fields are left unchanged."""

    name: Optional[str] = Field(None, max_length=500)
    target_price: Optional[float] = Field(None, ge=0)
    promotion_threshold: Optional[float] = Field(None, gt=0, le=1)
    is_active: Optional[bool] = None


class ProductResponse(BaseModel):
    """Product response schema."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    url: str
    name: str
    current_price: Optional[float] = None
    last_price: Optional[float] = None
    target_price: Optional[float] = None
    promotion_threshold: Optional[float] = None
    is_active: bool


class ProductDetailResponse(ProductResponse):
    """Detailed product response with monitoring state."""

    last_checked_at: Optional[datetime] = None
    check_count: int
    error_count: int
    last_error: Optional[str] = None
    channel_id: Optional[str] = None
    guild_id: Optional[str] = None
    user_id: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict, validation_alias="metadata_")
    created_at: datetime
    updated_at: datetime
