from pricewatch.services.notifier import (
    BaseNotifier,
    DiscordWebhookNotifier,
    LoggingNotifier,
    Notifier,
)
from pricewatch.services.price_history_service import PriceHistoryService
from pricewatch.services.product_store import PriceUpdate, ProductStore

__all__ = [
    "BaseNotifier",
    "DiscordWebhookNotifier",
    "LoggingNotifier",
    "Notifier",
    "PriceHistoryService",
    "PriceUpdate",
    "ProductStore",
]
