"""FastAPI dependency injection providers.

Components are built once in the application lifespan and stored on
``app.state``; these providers hand them to the endpoints.
"""

from fastapi import Request

from pricewatch.config import Settings
from pricewatch.scrapers.monitor import PriceMonitor
from pricewatch.scrapers.scraper import PriceScraper
from pricewatch.services.price_history_service import PriceHistoryService
from pricewatch.services.product_store import ProductStore


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_store(request: Request) -> ProductStore:
    return request.app.state.store


def get_history_service(request: Request) -> PriceHistoryService:
    return request.app.state.history


def get_scraper(request: Request) -> PriceScraper:
    return request.app.state.scraper


def get_monitor(request: Request) -> PriceMonitor:
    return request.app.state.monitor
