"""Record of notifications delivered for a product."""

from datetime import datetime
from typing import TYPE_CHECKING, Optional

from sqlalchemy import DateTime, ForeignKey, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from pricewatch.models.base import Base, IntegerPrimaryKeyMixin

if TYPE_CHECKING:
    from pricewatch.models.product import Product


class Notification(IntegerPrimaryKeyMixin, Base):
    """Notification sent to a chat channel."""

    __tablename__ = "notifications"

    product_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("products.id", ondelete="CASCADE"),
        nullable=True,
        index=True,
    )
    type: Mapped[str] = mapped_column(
        String(30),
        nullable=False,
        comment="'target_reached', 'price_drop', 'price_increase', 'summary', 'error'",
    )
    message: Mapped[str] = mapped_column(Text, nullable=False)
    channel_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    user_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="sent")
    sent_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    product: Mapped[Optional["Product"]] = relationship(back_populates="notifications")

    def __repr__(self) -> str:
        return f"<Notification(id={self.id}, product_id={self.product_id}, type='{self.type}', status='{self.status}')>"
