"""SQLAlchemy models for PriceWatch.

All models are imported here so ``Base.metadata`` knows every table.
"""

from pricewatch.models.base import Base, IntegerPrimaryKeyMixin, TimestampMixin
from pricewatch.models.product import Product
from pricewatch.models.price_history import PriceHistory
from pricewatch.models.notification import Notification

__all__ = [
    "Base",
    "IntegerPrimaryKeyMixin",
    "TimestampMixin",
    "Product",
    "PriceHistory",
    "Notification",
]
