"""Product store: persistence for tracked products, price history and notifications.

Every operation opens its own session from the injected factory, so the
store can be shared by the monitor, the API and concurrent checks.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

import structlog
from sqlalchemy import and_, case, delete, func, or_, select, text, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from pricewatch.core.exceptions import AlreadyExistsError, NotFoundError, ValidationError
from pricewatch.models.notification import Notification
from pricewatch.models.price_history import PRICE_SOURCES, PriceHistory
from pricewatch.models.product import Product
from pricewatch.scrapers.utils.url import normalize_url

logger = structlog.get_logger(__name__)

DEFAULT_PRODUCT_NAME = "Unnamed product"
MAX_ERROR_COUNT = 5

# Fields that update_product accepts
UPDATABLE_FIELDS = frozenset({"name", "target_price", "promotion_threshold", "is_active", "metadata_"})


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class PriceUpdate:
    """Result of recording a new price for a product."""

    old_price: Optional[float]
    new_price: float
    price_change: float  # percent; 0 when there was no prior price


class ProductStore:
    """Service for tracked products, their price history and notifications."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        max_error_count: int = MAX_ERROR_COUNT,
    ):
        """Initialize product store.

        Args:
            session_factory: Async session factory for database access
            max_error_count: Consecutive failures after which a product is deactivated
        """
        self.session_factory = session_factory
        self.max_error_count = max_error_count
        self.logger = logger.bind(service="product_store")

    # ------------------------------------------------------------------
    # Products
    # ------------------------------------------------------------------

    async def create_product(
        self,
        url: str,
        name: Optional[str] = None,
        current_price: Optional[float] = None,
        target_price: Optional[float] = None,
        promotion_threshold: Optional[float] = None,
        channel_id: Optional[str] = None,
        guild_id: Optional[str] = None,
        user_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Product:
        """Start tracking a product.

        The URL is stored in canonical form. When a starting price is given
        it is also recorded as the product's first (``initial``) history point.

        Raises:
            AlreadyExistsError: the canonical URL is already tracked
            ValidationError: a price is negative
        """
        for label, value in (("current_price", current_price), ("target_price", target_price)):
            if value is not None and value < 0:
                raise ValidationError(f"{label} must be non-negative")

        canonical = normalize_url(url)
        now = utcnow()

        async with self.session_factory() as session:
            existing = await session.execute(select(Product.id).where(Product.url == canonical))
            if existing.scalar_one_or_none() is not None:
                raise AlreadyExistsError("Product", canonical)

            product = Product(
                url=canonical,
                name=name or DEFAULT_PRODUCT_NAME,
                current_price=current_price,
                target_price=target_price,
                promotion_threshold=promotion_threshold,
                channel_id=channel_id,
                guild_id=guild_id,
                user_id=user_id,
                is_active=True,
                check_count=0,
                error_count=0,
                last_checked_at=now if current_price is not None else None,
                metadata_=metadata or {},
            )
            session.add(product)
            await session.flush()

            if current_price is not None:
                session.add(
                    PriceHistory(
                        product_id=product.id,
                        price=current_price,
                        price_change_percent=None,
                        source="initial",
                        checked_at=now,
                    )
                )

            await session.commit()
            await session.refresh(product)

        self.logger.info("product_created", product_id=product.id, url=canonical, target_price=target_price)
        return product

    async def find_by_id(self, product_id: int) -> Optional[Product]:
        async with self.session_factory() as session:
            return await session.get(Product, product_id)

    async def get_product(self, product_id: int) -> Product:
        """Like find_by_id but raises NotFoundError."""
        product = await self.find_by_id(product_id)
        if product is None:
            raise NotFoundError("Product", str(product_id))
        return product

    async def find_by_url(self, url: str) -> Optional[Product]:
        async with self.session_factory() as session:
            result = await session.execute(select(Product).where(Product.url == normalize_url(url)))
            return result.scalar_one_or_none()

    async def find_by_guild(
        self,
        guild_id: str,
        limit: int = 10,
        active_only: bool = True,
    ) -> List[Product]:
        conditions = [Product.guild_id == guild_id]
        if active_only:
            conditions.append(Product.is_active.is_(True))

        async with self.session_factory() as session:
            result = await session.execute(
                select(Product)
                .where(and_(*conditions))
                .order_by(Product.created_at.desc(), Product.id.desc())
                .limit(limit)
            )
            return list(result.scalars().all())

    async def list_products(self, active_only: bool = False, limit: int = 100, offset: int = 0) -> tuple:
        """Return (products, total) ordered by id."""
        query = select(Product)
        count_query = select(func.count(Product.id))
        if active_only:
            query = query.where(Product.is_active.is_(True))
            count_query = count_query.where(Product.is_active.is_(True))

        async with self.session_factory() as session:
            total = (await session.execute(count_query)).scalar() or 0
            result = await session.execute(query.order_by(Product.id).offset(offset).limit(limit))
            return list(result.scalars().all()), total

    async def find_active(self) -> List[Product]:
        """All active products, least recently checked (never checked first)."""
        async with self.session_factory() as session:
            result = await session.execute(
                select(Product)
                .where(Product.is_active.is_(True))
                .order_by(Product.last_checked_at.asc().nulls_first(), Product.id)
            )
            return list(result.scalars().all())

    async def find_due_for_check(self, interval_minutes: int, limit: int = 50) -> List[Product]:
        """Active products not checked within the interval and below the error ceiling.

        Never-checked products come first, then the stalest ones.
        """
        cutoff = utcnow() - timedelta(minutes=interval_minutes)

        async with self.session_factory() as session:
            result = await session.execute(
                select(Product)
                .where(
                    and_(
                        Product.is_active.is_(True),
                        or_(Product.last_checked_at.is_(None), Product.last_checked_at < cutoff),
                        Product.error_count < self.max_error_count,
                    )
                )
                .order_by(Product.last_checked_at.asc().nulls_first(), Product.id)
                .limit(limit)
            )
            return list(result.scalars().all())

    async def _apply_price(self, session: AsyncSession, product_id: int, new_price: float) -> PriceUpdate:
        """Apply a successful check inside ``session`` without committing."""
        old = await session.execute(select(Product.current_price).where(Product.id == product_id))
        row = old.first()
        if row is None:
            raise NotFoundError("Product", str(product_id))
        old_price = row[0]

        # last_price = current_price reads the pre-update value
        await session.execute(
            update(Product)
            .where(Product.id == product_id)
            .values(
                last_price=Product.current_price,
                current_price=new_price,
                check_count=Product.check_count + 1,
                error_count=0,
                last_error=None,
                last_checked_at=utcnow(),
            )
        )

        price_change = ((new_price - old_price) / old_price) * 100 if old_price else 0.0
        return PriceUpdate(old_price=old_price, new_price=new_price, price_change=price_change)

    async def update_price(self, product_id: int, new_price: float) -> PriceUpdate:
        """Record a successful check.

        Moves current_price to last_price, bumps check_count, clears the
        error state and stamps last_checked_at.

        Returns:
            PriceUpdate with the change relative to the previous price

        Raises:
            NotFoundError: unknown product
            ValidationError: negative price
        """
        if new_price is None or new_price < 0:
            raise ValidationError("new_price must be a non-negative number")

        async with self.session_factory() as session:
            price_update = await self._apply_price(session, product_id, new_price)
            await session.commit()
        return price_update

    async def record_price_check(self, product_id: int, new_price: float) -> PriceUpdate:
        """Record a successful check and its history row in one transaction.

        Either both the product update and the ``scraping`` history row are
        written, or neither is. The history change percent is null when the
        product had no previous price.

        Raises:
            NotFoundError: unknown product
            ValidationError: negative price
        """
        if new_price is None or new_price < 0:
            raise ValidationError("new_price must be a non-negative number")

        async with self.session_factory() as session:
            price_update = await self._apply_price(session, product_id, new_price)
            session.add(
                PriceHistory(
                    product_id=product_id,
                    price=new_price,
                    price_change_percent=price_update.price_change if price_update.old_price else None,
                    source="scraping",
                    checked_at=utcnow(),
                )
            )
            await session.commit()

        self.logger.debug(
            "price_check_recorded",
            product_id=product_id,
            old_price=price_update.old_price,
            new_price=new_price,
            price_change=price_update.price_change,
        )
        return price_update

    async def increment_error(self, product_id: int, message: str) -> int:
        """Record a failed check; deactivates the product at the error ceiling.

        Returns:
            The new error_count

        Raises:
            NotFoundError: unknown product
        """
        async with self.session_factory() as session:
            result = await session.execute(
                update(Product)
                .where(Product.id == product_id)
                .values(
                    error_count=Product.error_count + 1,
                    last_error=message,
                    last_checked_at=utcnow(),
                    is_active=case(
                        (Product.error_count + 1 >= self.max_error_count, False),
                        else_=Product.is_active,
                    ),
                )
                .returning(Product.error_count, Product.is_active)
            )
            row = result.first()
            if row is None:
                raise NotFoundError("Product", str(product_id))
            await session.commit()

        error_count, is_active = row
        if not is_active and error_count >= self.max_error_count:
            self.logger.warning(
                "product_deactivated_after_errors",
                product_id=product_id,
                error_count=error_count,
                last_error=message,
            )
        return error_count

    async def update_product(self, product_id: int, **fields) -> Product:
        """Update user-editable fields (name, target, threshold, active flag, metadata)."""
        unknown = set(fields) - UPDATABLE_FIELDS
        if unknown:
            raise ValidationError(f"Fields cannot be updated: {', '.join(sorted(unknown))}")
        if not fields:
            raise ValidationError("No fields to update")

        async with self.session_factory() as session:
            product = await session.get(Product, product_id)
            if product is None:
                raise NotFoundError("Product", str(product_id))
            for key, value in fields.items():
                setattr(product, key, value)
            await session.commit()
            await session.refresh(product)
            return product

    async def deactivate(self, product_id: int, guild_id: Optional[str] = None) -> bool:
        conditions = [Product.id == product_id]
        if guild_id:
            conditions.append(Product.guild_id == guild_id)

        async with self.session_factory() as session:
            result = await session.execute(update(Product).where(and_(*conditions)).values(is_active=False))
            await session.commit()

        changed = result.rowcount > 0
        if changed:
            self.logger.info("product_deactivated", product_id=product_id)
        return changed

    async def delete(self, product_id: int, guild_id: Optional[str] = None) -> bool:
        """Delete a product together with its history and notifications."""
        conditions = [Product.id == product_id]
        if guild_id:
            conditions.append(Product.guild_id == guild_id)

        async with self.session_factory() as session:
            found = await session.execute(select(Product.id).where(and_(*conditions)))
            if found.scalar_one_or_none() is None:
                return False
            await session.execute(delete(PriceHistory).where(PriceHistory.product_id == product_id))
            await session.execute(delete(Notification).where(Notification.product_id == product_id))
            await session.execute(delete(Product).where(Product.id == product_id))
            await session.commit()

        self.logger.info("product_deleted", product_id=product_id)
        return True

    async def find_on_sale(self, guild_id: Optional[str] = None) -> List[Product]:
        """Active products at or below their target price, deepest first."""
        conditions = [
            Product.is_active.is_(True),
            Product.current_price.is_not(None),
            Product.target_price.is_not(None),
            Product.target_price > 0,
            Product.current_price <= Product.target_price,
        ]
        if guild_id:
            conditions.append(Product.guild_id == guild_id)

        async with self.session_factory() as session:
            result = await session.execute(
                select(Product)
                .where(and_(*conditions))
                .order_by((Product.current_price / Product.target_price).asc())
            )
            return list(result.scalars().all())

    async def get_stats(self, guild_id: Optional[str] = None) -> Dict[str, Any]:
        """Counts of active products, products on sale, notifications, and average price."""
        scope = [Product.guild_id == guild_id] if guild_id else []
        active = [*scope, Product.is_active.is_(True)]

        async with self.session_factory() as session:
            total_products = (
                await session.execute(select(func.count(Product.id)).where(*active))
            ).scalar() or 0
            active_promotions = (
                await session.execute(
                    select(func.count(Product.id)).where(
                        *active,
                        Product.target_price.is_not(None),
                        Product.current_price <= Product.target_price,
                    )
                )
            ).scalar() or 0
            total_notifications = (
                await session.execute(
                    select(func.count(Notification.id))
                    .join(Product, Notification.product_id == Product.id)
                    .where(*scope)
                )
            ).scalar() or 0
            average_price = (
                await session.execute(
                    select(func.avg(Product.current_price)).where(*active, Product.current_price.is_not(None))
                )
            ).scalar()

        return {
            "total_products": total_products,
            "active_promotions": active_promotions,
            "total_notifications": total_notifications,
            "average_price": float(average_price or 0),
        }

    async def reactivate_stale_errored(self, hours: int = 24) -> int:
        """Give products deactivated by the error ceiling another chance after ``hours`` idle.

        Products deactivated by their owner are left alone.

        Returns:
            Number of products reactivated
        """
        cutoff = utcnow() - timedelta(hours=hours)

        async with self.session_factory() as session:
            result = await session.execute(
                update(Product)
                .where(
                    and_(
                        Product.is_active.is_(False),
                        Product.error_count >= self.max_error_count,
                        Product.last_checked_at < cutoff,
                    )
                )
                .values(is_active=True, error_count=0, last_error=None)
            )
            await session.commit()

        reactivated = result.rowcount or 0
        if reactivated:
            self.logger.info("errored_products_reactivated", count=reactivated)
        return reactivated

    # ------------------------------------------------------------------
    # Price history
    # ------------------------------------------------------------------

    async def append_history(
        self,
        product_id: int,
        price: float,
        change_percent: Optional[float] = None,
        source: str = "scraping",
    ) -> PriceHistory:
        """Append a price observation."""
        if price is None or price < 0:
            raise ValidationError("price must be a non-negative number")
        if source not in PRICE_SOURCES:
            raise ValidationError(f"source must be one of {PRICE_SOURCES}")

        async with self.session_factory() as session:
            record = PriceHistory(
                product_id=product_id,
                price=price,
                price_change_percent=change_percent,
                source=source,
                checked_at=utcnow(),
            )
            session.add(record)
            await session.commit()
            await session.refresh(record)

        self.logger.debug(
            "price_history_appended",
            product_id=product_id,
            price=price,
            change_percent=change_percent,
            source=source,
        )
        return record

    async def purge_history_older_than(self, days: int = 90) -> int:
        """Delete history records older than ``days``.

        Returns:
            Number of records deleted
        """
        cutoff = utcnow() - timedelta(days=days)

        async with self.session_factory() as session:
            result = await session.execute(delete(PriceHistory).where(PriceHistory.checked_at < cutoff))
            await session.commit()

        deleted = result.rowcount or 0
        self.logger.info("price_history_purged", deleted=deleted, days_kept=days)
        return deleted

    # ------------------------------------------------------------------
    # Notifications and maintenance
    # ------------------------------------------------------------------

    async def record_notification(
        self,
        product_id: Optional[int],
        notification_type: str,
        message: str,
        channel_id: Optional[str] = None,
        user_id: Optional[str] = None,
        status: str = "sent",
    ) -> Notification:
        async with self.session_factory() as session:
            notification = Notification(
                product_id=product_id,
                type=notification_type,
                message=message,
                channel_id=channel_id,
                user_id=user_id,
                status=status,
                sent_at=utcnow(),
            )
            session.add(notification)
            await session.commit()
            await session.refresh(notification)
            return notification

    async def ping(self) -> bool:
        async with self.session_factory() as session:
            await session.execute(text("SELECT 1"))
        return True

    async def backup(self, backup_dir: str = "./backups") -> Optional[Path]:
        """Write a consistent copy of a SQLite database to ``backup_dir``.

        Uses ``VACUUM INTO`` so the copy is taken without stopping writers.
        Other databases are backed up by their own tooling.

        Returns:
            Path of the backup file, or None when the database is not SQLite
        """
        async with self.session_factory() as session:
            # VACUUM cannot run inside a transaction
            conn = await session.connection(execution_options={"isolation_level": "AUTOCOMMIT"})
            if conn.dialect.name != "sqlite":
                self.logger.info("backup_skipped", dialect=conn.dialect.name)
                return None

            directory = Path(backup_dir)
            directory.mkdir(parents=True, exist_ok=True)
            stamp = utcnow().strftime("%Y-%m-%dT%H-%M-%S-%fZ")
            target = directory / f"backup-{stamp}.db"

            await conn.execute(text("VACUUM INTO :target"), {"target": str(target)})

        self.logger.info("database_backed_up", path=str(target))
        return target
