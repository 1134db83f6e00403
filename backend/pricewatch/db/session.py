"""Async database engine and session factory construction."""

from pathlib import Path
from typing import Optional

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from pricewatch.config import Settings, settings as default_settings
from pricewatch.models.base import Base


def create_engine(app_settings: Optional[Settings] = None) -> AsyncEngine:
    """Build the async engine for the configured DATABASE_URL.

    For file-backed SQLite the parent directory is created first.
    """
    app_settings = app_settings or default_settings
    url = make_url(app_settings.DATABASE_URL)

    # SQLite doesn't support pool_size / max_overflow / pool_pre_ping
    engine_kwargs: dict = {"echo": False}
    if app_settings.is_sqlite:
        if url.database and url.database != ":memory:":
            Path(url.database).parent.mkdir(parents=True, exist_ok=True)
    else:
        engine_kwargs.update(pool_size=10, max_overflow=5, pool_pre_ping=True)

    return create_async_engine(app_settings.DATABASE_URL, **engine_kwargs)


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


async def init_models(engine: AsyncEngine) -> None:
    """Create all tables that do not exist yet."""
    # Importing the package registers every model with Base.metadata
    import pricewatch.models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
