"""PriceWatch backend -- FastAPI application entry point."""

from contextlib import asynccontextmanager
from typing import Optional

import httpx
import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from pricewatch import __version__
from pricewatch.api.v1.router import api_v1_router
from pricewatch.config import Settings, settings
from pricewatch.core.exceptions import (
    AlreadyExistsError,
    MonitorStateError,
    NotFoundError,
    PriceWatchException,
    ScraperError,
    ValidationError,
)
from pricewatch.core.logging import configure_logging
from pricewatch.db.session import create_engine, create_session_factory, init_models
from pricewatch.schemas import ErrorResponse
from pricewatch.scrapers.fetcher import Fetcher
from pricewatch.scrapers.monitor import PriceMonitor
from pricewatch.scrapers.scraper import PriceScraper
from pricewatch.services.notifier import BaseNotifier, DiscordWebhookNotifier, LoggingNotifier
from pricewatch.services.price_history_service import PriceHistoryService
from pricewatch.services.product_store import ProductStore

logger = structlog.get_logger(__name__)


def build_notifier(app_settings: Settings, store: ProductStore, client: httpx.AsyncClient) -> BaseNotifier:
    """Discord webhook notifier when a webhook is configured, log-only otherwise."""
    options = dict(
        store=store,
        cooldown_minutes=app_settings.NOTIFICATION_COOLDOWN_MINUTES,
        send_delay_seconds=app_settings.NOTIFICATION_SEND_DELAY_MS / 1000,
    )
    if app_settings.DISCORD_WEBHOOK_URL:
        return DiscordWebhookNotifier(
            webhook_url=app_settings.DISCORD_WEBHOOK_URL,
            admin_webhook_url=app_settings.ADMIN_WEBHOOK_URL or None,
            client=client,
            **options,
        )
    logger.warning("discord_webhook_not_configured")
    return LoggingNotifier(**options)


def create_app(app_settings: Optional[Settings] = None) -> FastAPI:
    """Build the application; components are created in the lifespan."""
    app_settings = app_settings or settings

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        configure_logging(app_settings.LOG_LEVEL, json=app_settings.LOG_JSON)
        logger.info(
            "app_starting",
            environment=app_settings.ENVIRONMENT,
            debug=app_settings.DEBUG,
            version=__version__,
        )

        engine = create_engine(app_settings)
        await init_models(engine)
        session_factory = create_session_factory(engine)

        store = ProductStore(session_factory, max_error_count=app_settings.MAX_ERROR_COUNT)
        fetcher = Fetcher(
            user_agent=None if app_settings.ROTATE_USER_AGENT else app_settings.USER_AGENT,
            timeout_ms=app_settings.REQUEST_TIMEOUT_MS,
            max_redirects=app_settings.MAX_REDIRECTS,
            max_retries=app_settings.MAX_RETRIES,
        )
        scraper = PriceScraper(fetcher)
        webhook_client = httpx.AsyncClient(timeout=httpx.Timeout(10.0))
        notifier = build_notifier(app_settings, store, webhook_client)
        monitor = PriceMonitor.from_settings(store, scraper, notifier, app_settings)

        app.state.settings = app_settings
        app.state.store = store
        app.state.history = PriceHistoryService(session_factory)
        app.state.scraper = scraper
        app.state.notifier = notifier
        app.state.monitor = monitor

        # Start the monitor (only in non-test environments)
        if app_settings.ENVIRONMENT != "test":
            monitor.start()
        else:
            logger.info("monitor_disabled", reason="test environment")

        yield

        logger.info("app_shutting_down")
        monitor.shutdown()
        await notifier.shutdown()
        await webhook_client.aclose()
        await fetcher.aclose()
        await engine.dispose()

    app = FastAPI(
        title="PriceWatch API",
        description="E-commerce price monitoring and notifications",
        version=__version__,
        docs_url="/docs" if app_settings.DEBUG else None,
        redoc_url="/redoc" if app_settings.DEBUG else None,
        lifespan=lifespan,
    )

    register_exception_handlers(app)
    app.include_router(api_v1_router, prefix="/api/v1")

    @app.get("/")
    async def root():
        """Root endpoint with API information."""
        return {
            "name": "PriceWatch API",
            "version": __version__,
            "docs": "/docs" if app_settings.DEBUG else None,
            "health": "/api/v1/health",
        }

    return app


def _error(status_code: int, code: str, exc: PriceWatchException) -> JSONResponse:
    body = ErrorResponse.of(code, exc.message)
    return JSONResponse(status_code=status_code, content=body.model_dump())


def register_exception_handlers(app: FastAPI) -> None:
    """Map domain exceptions onto HTTP error responses."""

    @app.exception_handler(NotFoundError)
    async def not_found_handler(request: Request, exc: NotFoundError):
        return _error(404, "not_found", exc)

    @app.exception_handler(AlreadyExistsError)
    async def already_exists_handler(request: Request, exc: AlreadyExistsError):
        return _error(409, "already_exists", exc)

    @app.exception_handler(ValidationError)
    async def validation_handler(request: Request, exc: ValidationError):
        return _error(400, "invalid_request", exc)

    @app.exception_handler(ScraperError)
    async def scraper_handler(request: Request, exc: ScraperError):
        return _error(422, "scrape_failed", exc)

    @app.exception_handler(MonitorStateError)
    async def monitor_state_handler(request: Request, exc: MonitorStateError):
        return _error(409, "monitor_state", exc)


app = create_app()
