"""Price history schemas."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict


class PriceHistoryPoint(BaseModel):
    """Single price history data point."""

    model_config = ConfigDict(from_attributes=True)

    price: float
    price_change_percent: Optional[float] = None
    source: str
    checked_at: datetime


class PriceTrendResponse(BaseModel):
    """Least-squares trend over a product's recent prices."""

    trend: str
    slope: float
    correlation: float
    data_points: int
    first_price: Optional[float] = None
    last_price: Optional[float] = None
    price_change: Optional[float] = None
