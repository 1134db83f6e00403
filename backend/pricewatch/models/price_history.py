"""Price history tracking for products."""

from datetime import datetime
from typing import TYPE_CHECKING, Optional

from sqlalchemy import DateTime, Float, ForeignKey, Index, String, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from pricewatch.models.base import Base, IntegerPrimaryKeyMixin, Money

if TYPE_CHECKING:
    from pricewatch.models.product import Product

PRICE_SOURCES = ("scraping", "initial", "manual")


class PriceHistory(IntegerPrimaryKeyMixin, Base):
    """Append-only price observation.

    ``price_change_percent`` is computed at insert time relative to the
    previous price and is null for the first observation.
    """

    __tablename__ = "price_history"

    product_id: Mapped[int] = mapped_column(
        ForeignKey("products.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    price: Mapped[float] = mapped_column(Money, nullable=False)
    price_change_percent: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    source: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default="scraping",
        comment="Source of price data: 'scraping', 'initial', 'manual'",
    )
    checked_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    __table_args__ = (
        Index("idx_price_history_product_checked", "product_id", "checked_at"),
    )

    product: Mapped["Product"] = relationship(back_populates="price_history")

    def __repr__(self) -> str:
        return f"<PriceHistory(id={self.id}, product_id={self.product_id}, price={self.price}, checked_at={self.checked_at})>"
