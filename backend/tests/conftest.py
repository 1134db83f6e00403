"""Pytest configuration and shared fixtures."""

from datetime import timedelta
from typing import List

import httpx
import pytest
import pytest_asyncio
from sqlalchemy import text, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from pricewatch.models import Base, Product
from pricewatch.scrapers.base import ScrapeResult
from pricewatch.services.price_history_service import PriceHistoryService
from pricewatch.services.product_store import ProductStore, utcnow


class RecordingSleep:
    """Awaitable sleep replacement that records delays instead of waiting."""

    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


def make_scrape_result(url: str, price=None, name="Produto Teste", error=None) -> ScrapeResult:
    if price is None:
        return ScrapeResult(url=url, domain="loja.example.com", success=False, error=error or "boom")
    return ScrapeResult(url=url, domain="loja.example.com", success=True, price=price, name=name)


def html_response(body: str, status_code: int = 200) -> httpx.Response:
    return httpx.Response(status_code, text=body, headers={"Content-Type": "text/html; charset=utf-8"})


# ============================================================================
# DATABASE
# ============================================================================

@pytest_asyncio.fixture
async def engine(tmp_path):
    """File-backed SQLite engine with all tables created.

    Each session gets its own pooled connection, so concurrent checks commit
    independently as they do against a real database.
    """
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'pricewatch-test.db'}", echo=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
def store(session_factory) -> ProductStore:
    return ProductStore(session_factory)


@pytest.fixture
def history_service(session_factory) -> PriceHistoryService:
    return PriceHistoryService(session_factory)


@pytest.fixture
def sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def age_product(session_factory):
    """Move a product's last check into the past."""

    async def _age(product_id: int, **delta) -> None:
        async with session_factory() as session:
            await session.execute(
                update(Product)
                .where(Product.id == product_id)
                .values(last_checked_at=utcnow() - timedelta(**delta))
            )
            await session.commit()

    return _age


@pytest.fixture
def reject_history_inserts(session_factory):
    """Make every later price_history insert fail inside the database."""

    async def _reject() -> None:
        async with session_factory() as session:
            await session.execute(
                text(
                    "CREATE TRIGGER reject_history_insert BEFORE INSERT ON price_history "
                    "BEGIN SELECT RAISE(ABORT, 'disk full'); END"
                )
            )
            await session.commit()

    return _reject
