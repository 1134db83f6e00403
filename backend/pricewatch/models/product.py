"""Product model representing a tracked product page."""

from datetime import datetime
from typing import TYPE_CHECKING, Optional

from sqlalchemy import JSON, Boolean, DateTime, Float, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from pricewatch.models.base import Base, IntegerPrimaryKeyMixin, Money, TimestampMixin

if TYPE_CHECKING:
    from pricewatch.models.notification import Notification
    from pricewatch.models.price_history import PriceHistory


class Product(IntegerPrimaryKeyMixin, TimestampMixin, Base):
    """Product page tracked for price changes.

    The canonical (tracking-parameter free) URL is unique. ``error_count``
    grows on failed checks, resets on any successful check, and the product is
    deactivated once it reaches the error ceiling.
    """

    __tablename__ = "products"

    url: Mapped[str] = mapped_column(String(2000), nullable=False, unique=True, comment="Canonical product URL")
    name: Mapped[str] = mapped_column(String(500), nullable=False)

    # Pricing
    current_price: Mapped[Optional[float]] = mapped_column(Money, nullable=True)
    last_price: Mapped[Optional[float]] = mapped_column(Money, nullable=True, comment="Price before the latest check")
    target_price: Mapped[Optional[float]] = mapped_column(Money, nullable=True)
    promotion_threshold: Mapped[Optional[float]] = mapped_column(
        Float,
        nullable=True,
        comment="Relative change that counts as a promotion (0.1 = 10%); global default when null",
    )

    # Check state
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    last_checked_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    check_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    error_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Owner references from the chat platform, opaque to us
    channel_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    guild_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)
    user_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    metadata_: Mapped[dict] = mapped_column("metadata", JSON, nullable=False, default=dict)

    __table_args__ = (
        Index("idx_products_due", "is_active", "last_checked_at"),
    )

    price_history: Mapped[list["PriceHistory"]] = relationship(
        back_populates="product",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
    notifications: Mapped[list["Notification"]] = relationship(
        back_populates="product",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    def __repr__(self) -> str:
        return f"<Product(id={self.id}, name='{self.name[:50]}', current_price={self.current_price})>"
