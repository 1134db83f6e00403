"""Price history analytics: statistics, trends, drops, volatility and export.

Trend detection fits a least-squares line through the observations in
check order (x = position, y = price):

- slope > 0.1 per observation  -> rising
- slope < -0.1 per observation -> falling
- otherwise                    -> stable

The absolute Pearson correlation tells how well the line fits.
"""

import csv
import io
import json
import statistics
from datetime import timedelta
from typing import Any, Dict, List, Optional

import structlog
from sqlalchemy import and_, func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from pricewatch.core.exceptions import ValidationError
from pricewatch.models.price_history import PriceHistory
from pricewatch.models.product import Product
from pricewatch.services.product_store import utcnow

logger = structlog.get_logger(__name__)

TREND_SLOPE_THRESHOLD = 0.1
SIGNIFICANT_DROP_PERCENT = -5.0
EXPORT_FORMATS = ("json", "csv")


def linear_trend(prices: List[float]) -> Dict[str, Any]:
    """Fit a line through prices ordered by check time.

    Returns:
        Dict with trend, slope, correlation (absolute), data_points and,
        with two or more points, first/last price and total change percent
    """
    n = len(prices)
    if n < 2:
        return {"trend": "insufficient_data", "slope": 0.0, "correlation": 0.0, "data_points": n}

    xs = list(range(n))
    slope = statistics.linear_regression(xs, prices).slope

    if slope > TREND_SLOPE_THRESHOLD:
        trend = "rising"
    elif slope < -TREND_SLOPE_THRESHOLD:
        trend = "falling"
    else:
        trend = "stable"

    try:
        correlation = statistics.correlation(xs, prices)
    except statistics.StatisticsError:
        # constant prices
        correlation = 0.0

    first, last = prices[0], prices[-1]
    return {
        "trend": trend,
        "slope": slope,
        "correlation": abs(correlation),
        "data_points": n,
        "first_price": first,
        "last_price": last,
        "price_change": ((last - first) / first) * 100 if first else 0.0,
    }


class PriceHistoryService:
    """Read-side queries over the price history."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory
        self.logger = logger.bind(service="price_history_service")

    async def get_by_product(self, product_id: int, limit: int = 50, days: int = 30) -> List[PriceHistory]:
        """Most recent observations within ``days``, newest first."""
        since = utcnow() - timedelta(days=days)
        async with self.session_factory() as session:
            result = await session.execute(
                select(PriceHistory)
                .where(and_(PriceHistory.product_id == product_id, PriceHistory.checked_at >= since))
                .order_by(PriceHistory.checked_at.desc(), PriceHistory.id.desc())
                .limit(limit)
            )
            return list(result.scalars().all())

    async def get_latest(self, product_id: int) -> Optional[PriceHistory]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(PriceHistory)
                .where(PriceHistory.product_id == product_id)
                .order_by(PriceHistory.checked_at.desc(), PriceHistory.id.desc())
                .limit(1)
            )
            return result.scalar_one_or_none()

    async def get_statistics(self, product_id: int, days: int = 30) -> Dict[str, Any]:
        """Min/max/avg price, range and extreme changes within ``days``."""
        since = utcnow() - timedelta(days=days)
        window = and_(PriceHistory.product_id == product_id, PriceHistory.checked_at >= since)

        async with self.session_factory() as session:
            stats = (
                await session.execute(
                    select(
                        func.count(PriceHistory.id),
                        func.min(PriceHistory.price),
                        func.max(PriceHistory.price),
                        func.avg(PriceHistory.price),
                        func.min(PriceHistory.checked_at),
                        func.max(PriceHistory.checked_at),
                    ).where(window)
                )
            ).one()
            extremes = (
                await session.execute(
                    select(
                        func.max(PriceHistory.price_change_percent),
                        func.min(PriceHistory.price_change_percent),
                    ).where(window, PriceHistory.price_change_percent.is_not(None))
                )
            ).one()

        total, min_price, max_price, avg_price, first_check, last_check = stats
        max_increase, max_decrease = extremes
        return {
            "total_records": total or 0,
            "min_price": float(min_price or 0),
            "max_price": float(max_price or 0),
            "avg_price": float(avg_price or 0),
            "price_range": float(max_price or 0) - float(min_price or 0),
            "max_increase": float(max_increase or 0),
            "max_decrease": float(max_decrease or 0),
            "first_check": first_check,
            "last_check": last_check,
            "period_days": days,
        }

    async def get_trend(self, product_id: int, days: int = 7) -> Dict[str, Any]:
        since = utcnow() - timedelta(days=days)
        async with self.session_factory() as session:
            result = await session.execute(
                select(PriceHistory.price)
                .where(and_(PriceHistory.product_id == product_id, PriceHistory.checked_at >= since))
                .order_by(PriceHistory.checked_at.asc(), PriceHistory.id.asc())
            )
            prices = [float(p) for p in result.scalars().all()]
        return linear_trend(prices)

    async def get_biggest_drops(
        self,
        hours: int = 24,
        limit: int = 10,
        guild_id: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        """Observations that dropped more than 5% within ``hours``, steepest first."""
        since = utcnow() - timedelta(hours=hours)
        conditions = [
            Product.is_active.is_(True),
            PriceHistory.price_change_percent < SIGNIFICANT_DROP_PERCENT,
            PriceHistory.checked_at >= since,
        ]
        if guild_id:
            conditions.append(Product.guild_id == guild_id)

        async with self.session_factory() as session:
            result = await session.execute(
                select(
                    Product.id,
                    Product.name,
                    Product.url,
                    Product.guild_id,
                    PriceHistory.price,
                    PriceHistory.price_change_percent,
                    PriceHistory.checked_at,
                )
                .join(Product, Product.id == PriceHistory.product_id)
                .where(and_(*conditions))
                .order_by(PriceHistory.price_change_percent.asc())
                .limit(limit)
            )
            rows = result.all()

        return [
            {
                "product_id": row.id,
                "name": row.name,
                "url": row.url,
                "guild_id": row.guild_id,
                "price": float(row.price),
                "price_change_percent": float(row.price_change_percent),
                "checked_at": row.checked_at,
            }
            for row in rows
        ]

    async def get_most_volatile(
        self,
        days: int = 7,
        limit: int = 10,
        guild_id: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        """Products ranked by (max - min) / min within ``days``; needs two observations."""
        since = utcnow() - timedelta(days=days)
        conditions = [Product.is_active.is_(True), PriceHistory.checked_at >= since]
        if guild_id:
            conditions.append(Product.guild_id == guild_id)

        min_price = func.min(PriceHistory.price)
        max_price = func.max(PriceHistory.price)
        volatility = (max_price - min_price) / min_price * 100

        async with self.session_factory() as session:
            result = await session.execute(
                select(
                    Product.id,
                    Product.name,
                    Product.url,
                    Product.guild_id,
                    func.count(PriceHistory.id).label("observations"),
                    min_price.label("min_price"),
                    max_price.label("max_price"),
                    func.avg(PriceHistory.price).label("avg_price"),
                    volatility.label("volatility_percent"),
                )
                .join(PriceHistory, Product.id == PriceHistory.product_id)
                .where(and_(*conditions))
                .group_by(Product.id, Product.name, Product.url, Product.guild_id)
                .having(and_(func.count(PriceHistory.id) >= 2, min_price > 0))
                .order_by(volatility.desc())
                .limit(limit)
            )
            rows = result.all()

        return [
            {
                "product_id": row.id,
                "name": row.name,
                "url": row.url,
                "guild_id": row.guild_id,
                "observations": row.observations,
                "min_price": float(row.min_price),
                "max_price": float(row.max_price),
                "avg_price": float(row.avg_price),
                "volatility_percent": float(row.volatility_percent),
            }
            for row in rows
        ]

    async def export(self, product_id: int, days: int = 30, format: str = "json") -> str:
        """Serialize a product's history within ``days``, oldest first.

        Args:
            product_id: Product to export
            days: Look-back window
            format: "json" or "csv"

        Returns:
            JSON array or CSV text (empty string when there is nothing to export)
        """
        if format not in EXPORT_FORMATS:
            raise ValidationError(f"format must be one of {EXPORT_FORMATS}")

        since = utcnow() - timedelta(days=days)
        async with self.session_factory() as session:
            result = await session.execute(
                select(
                    PriceHistory.id,
                    PriceHistory.product_id,
                    PriceHistory.price,
                    PriceHistory.price_change_percent,
                    PriceHistory.source,
                    PriceHistory.checked_at,
                    Product.name.label("product_name"),
                    Product.url.label("product_url"),
                )
                .join(Product, Product.id == PriceHistory.product_id)
                .where(and_(PriceHistory.product_id == product_id, PriceHistory.checked_at >= since))
                .order_by(PriceHistory.checked_at.asc(), PriceHistory.id.asc())
            )
            rows = [dict(row._mapping) for row in result.all()]

        for row in rows:
            row["checked_at"] = row["checked_at"].isoformat() if row["checked_at"] else None

        self.logger.info("price_history_exported", product_id=product_id, records=len(rows), format=format)

        if format == "json":
            return json.dumps(rows, ensure_ascii=False, indent=2)

        if not rows:
            return ""
        buffer = io.StringIO()
        writer = csv.DictWriter(buffer, fieldnames=list(rows[0].keys()))
        writer.writeheader()
        writer.writerows(rows)
        return buffer.getvalue()
