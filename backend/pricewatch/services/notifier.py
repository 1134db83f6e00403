"""Price notifications.

The monitor decides *when* to notify; notifiers decide *how*. Both
implementations here share the same delivery rules:

- one notification per (product, type) per cooldown window (10 min default);
  a suppressed notification is reported, not raised
- deliveries are serialized with a fixed gap between sends (2 s default)
- every delivered notification is recorded through the product store
"""

import asyncio
import time
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol, Tuple

import httpx
import structlog
from tenacity import AsyncRetrying, RetryCallState, retry_if_exception_type, stop_after_attempt, wait_exponential

from pricewatch.models.product import Product
from pricewatch.services.product_store import ProductStore

logger = structlog.get_logger(__name__)

# Discord embed colours
COLOR_TARGET = 0x00FF00
COLOR_DROP = 0xFFFF00
COLOR_INCREASE = 0xFF4444
COLOR_SUMMARY = 0x0099FF
COLOR_ERROR = 0xFF0000

FOOTER = "PriceWatch"

Outcome = Dict[str, Any]


def format_brl(value: Optional[float]) -> str:
    """Format a number as Brazilian currency, e.g. ``R$ 1.234,56``."""
    if value is None:
        return "-"
    formatted = f"{value:,.2f}".replace(",", "_").replace(".", ",").replace("_", ".")
    return f"R$ {formatted}"


class Notifier(Protocol):
    """Delivers notifications for decided price events."""

    async def notify_target_reached(self, product: Product, new_price: float, old_price: float) -> Outcome: ...

    async def notify_price_drop(
        self, product: Product, new_price: float, old_price: float, price_change: float
    ) -> Outcome: ...

    async def notify_price_increase(
        self, product: Product, new_price: float, old_price: float, price_change: float
    ) -> Outcome: ...

    async def notify_summary(self, summary: Dict[str, Any], results: List[Any]) -> Outcome: ...

    async def notify_error(self, message: str, context: Optional[Dict[str, Any]] = None) -> Outcome: ...

    def cleanup_cooldowns(self) -> int: ...


# ----------------------------------------------------------------------------
# Embed builders
# ----------------------------------------------------------------------------

def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


def build_target_reached_embed(product: Product, new_price: float, old_price: float) -> Dict[str, Any]:
    savings = old_price - new_price
    discount = (savings / old_price) * 100 if old_price else 0.0
    return {
        "title": "🎯 Target price reached!",
        "description": f"**{product.name}** reached its target price!",
        "url": product.url,
        "color": COLOR_TARGET,
        "fields": [
            {"name": "💰 Current price", "value": format_brl(new_price), "inline": True},
            {"name": "🎯 Target price", "value": format_brl(product.target_price), "inline": True},
            {"name": "📉 Savings", "value": f"{format_brl(savings)} (-{discount:.1f}%)", "inline": True},
        ],
        "footer": {"text": f"{FOOTER} • Grab the deal!"},
        "timestamp": _timestamp(),
    }


def build_price_drop_embed(
    product: Product, new_price: float, old_price: float, price_change: float
) -> Dict[str, Any]:
    fields = [
        {"name": "💸 Previous price", "value": format_brl(old_price), "inline": True},
        {"name": "💰 Current price", "value": format_brl(new_price), "inline": True},
        {"name": "📊 Change", "value": f"{price_change:.1f}%", "inline": True},
        {"name": "💵 Savings", "value": format_brl(old_price - new_price), "inline": True},
    ]
    if product.target_price:
        distance = (new_price / product.target_price - 1) * 100
        fields.append({"name": "🎯 Target price", "value": format_brl(product.target_price), "inline": True})
        fields.append({"name": "📏 Distance to target", "value": f"{distance:.1f}%", "inline": True})
    return {
        "title": "📉 Price drop detected!",
        "description": f"**{product.name}** dropped significantly in price!",
        "url": product.url,
        "color": COLOR_DROP,
        "fields": fields,
        "footer": {"text": f"{FOOTER} • Buying opportunity!"},
        "timestamp": _timestamp(),
    }


def build_price_increase_embed(
    product: Product, new_price: float, old_price: float, price_change: float
) -> Dict[str, Any]:
    fields = [
        {"name": "💰 Previous price", "value": format_brl(old_price), "inline": True},
        {"name": "💸 Current price", "value": format_brl(new_price), "inline": True},
        {"name": "📊 Change", "value": f"+{price_change:.1f}%", "inline": True},
        {"name": "💔 Increase", "value": format_brl(new_price - old_price), "inline": True},
    ]
    if product.target_price:
        status = "❌ Above target" if new_price > product.target_price else "✅ Still on target"
        fields.append({"name": "🎯 Target price", "value": format_brl(product.target_price), "inline": True})
        fields.append({"name": "⏰ Status", "value": status, "inline": True})
    return {
        "title": "📈 Price increase",
        "description": f"**{product.name}** went up significantly in price.",
        "url": product.url,
        "color": COLOR_INCREASE,
        "fields": fields,
        "footer": {"text": f"{FOOTER} • Keep an eye on it"},
        "timestamp": _timestamp(),
    }


def build_summary_embed(summary: Dict[str, Any], results: List[Any]) -> Dict[str, Any]:
    """Cycle summary; ``results`` are the successful CheckResults of the cycle."""
    on_target = [
        r for r in results
        if r.product.target_price is not None and r.new_price is not None and r.new_price <= r.product.target_price
    ]
    big_drops = sorted(
        (r for r in results if r.price_change is not None and r.price_change <= -10),
        key=lambda r: r.price_change,
    )

    fields = [
        {"name": "📦 Products checked", "value": str(summary["total"]), "inline": True},
        {"name": "✅ Successful", "value": str(summary["successful"]), "inline": True},
        {"name": "❌ Failed", "value": str(summary["failed"]), "inline": True},
        {"name": "🔥 On target", "value": str(len(on_target)), "inline": True},
        {"name": "📉 Big drops", "value": str(len(big_drops)), "inline": True},
        {"name": "💰 Average price", "value": format_brl(summary["average_price"]), "inline": True},
    ]
    if big_drops:
        top = "\n".join(f"• **{r.product.name[:50]}**: {r.price_change:.1f}%" for r in big_drops[:3])
        fields.append({"name": "🏆 Biggest drops", "value": top, "inline": False})

    return {
        "title": "📊 Check summary",
        "description": f"Scheduled check finished with {summary['notifications']} notifications sent.",
        "color": COLOR_SUMMARY,
        "fields": fields,
        "footer": {"text": f"{FOOTER} • Automatic summary"},
        "timestamp": _timestamp(),
    }


def build_error_embed(message: str, context: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    fields = [{"name": "⏰ Timestamp", "value": _timestamp(), "inline": True}]
    if context:
        details = "\n".join(f"{key}: {value}" for key, value in context.items())
        fields.append({"name": "📋 Context", "value": f"```\n{details[:1000]}\n```", "inline": False})
    return {
        "title": "🚨 System error",
        "description": message,
        "color": COLOR_ERROR,
        "fields": fields,
        "footer": {"text": FOOTER},
        "timestamp": _timestamp(),
    }


# ----------------------------------------------------------------------------
# Notifiers
# ----------------------------------------------------------------------------

class BaseNotifier:
    """Cooldown, serialized delivery and persistence shared by all notifiers.

    Subclasses implement :meth:`_deliver`.
    """

    def __init__(
        self,
        store: Optional[ProductStore] = None,
        cooldown_minutes: float = 10,
        send_delay_seconds: float = 2.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize notifier.

        Args:
            store: Where delivered notifications are recorded; not recorded when None
            cooldown_minutes: Minimum gap between two notifications of one type for one product
            send_delay_seconds: Minimum gap between two deliveries
            sleep: Awaitable sleep used to space deliveries
            clock: Monotonic clock in seconds
        """
        self.store = store
        self.cooldown_seconds = cooldown_minutes * 60
        self.send_delay_seconds = send_delay_seconds
        self._sleep = sleep
        self._clock = clock
        self._cooldowns: Dict[Tuple[Any, str], float] = {}
        self._send_lock = asyncio.Lock()
        self._last_sent_at: Optional[float] = None
        self._sent = 0
        self._suppressed = 0
        self._failed = 0
        self.logger = logger.bind(service=type(self).__name__)

    async def _deliver(self, payload: Dict[str, Any], admin: bool = False) -> None:
        raise NotImplementedError

    def _in_cooldown(self, key: Tuple[Any, str]) -> bool:
        last = self._cooldowns.get(key)
        return last is not None and self._clock() - last < self.cooldown_seconds

    async def _send(self, payload: Dict[str, Any], admin: bool = False) -> None:
        """Deliver one payload, keeping the configured gap between deliveries."""
        async with self._send_lock:
            if self._last_sent_at is not None:
                wait = self.send_delay_seconds - (self._clock() - self._last_sent_at)
                if wait > 0:
                    await self._sleep(wait)
            try:
                await self._deliver(payload, admin=admin)
            finally:
                self._last_sent_at = self._clock()

    async def _notify(
        self,
        notification_type: str,
        product: Product,
        embed: Dict[str, Any],
        message: str,
        mention: bool = True,
    ) -> Outcome:
        key = (product.id, notification_type)
        if self._in_cooldown(key):
            self._suppressed += 1
            self.logger.debug("notification_in_cooldown", product_id=product.id, type=notification_type)
            return {"sent": False, "type": notification_type, "reason": "cooldown"}

        self._cooldowns[key] = self._clock()
        payload: Dict[str, Any] = {"embeds": [embed]}
        if mention and product.user_id:
            payload["content"] = f"<@{product.user_id}>"

        try:
            await self._send(payload)
        except (httpx.HTTPError, OSError) as e:
            self._failed += 1
            self.logger.error(
                "notification_delivery_failed",
                product_id=product.id,
                type=notification_type,
                error=str(e),
            )
            await self._record(product, notification_type, message, status="failed")
            return {"sent": False, "type": notification_type, "reason": "delivery_failed", "error": str(e)}

        self._sent += 1
        self.logger.info("notification_sent", product_id=product.id, type=notification_type, product=product.name)
        await self._record(product, notification_type, message, status="sent")
        return {"sent": True, "type": notification_type}

    async def _record(self, product: Product, notification_type: str, message: str, status: str) -> None:
        if self.store is None:
            return
        await self.store.record_notification(
            product.id,
            notification_type,
            message,
            channel_id=product.channel_id,
            user_id=product.user_id,
            status=status,
        )

    async def notify_target_reached(self, product: Product, new_price: float, old_price: float) -> Outcome:
        return await self._notify(
            "target_reached",
            product,
            build_target_reached_embed(product, new_price, old_price),
            f"Target price reached: {format_brl(new_price)}",
        )

    async def notify_price_drop(
        self, product: Product, new_price: float, old_price: float, price_change: float
    ) -> Outcome:
        return await self._notify(
            "price_drop",
            product,
            build_price_drop_embed(product, new_price, old_price, price_change),
            f"Price dropped {abs(price_change):.1f}%: {format_brl(new_price)}",
        )

    async def notify_price_increase(
        self, product: Product, new_price: float, old_price: float, price_change: float
    ) -> Outcome:
        # Increases are less urgent: no mention
        return await self._notify(
            "price_increase",
            product,
            build_price_increase_embed(product, new_price, old_price, price_change),
            f"Price increased {price_change:.1f}%: {format_brl(new_price)}",
            mention=False,
        )

    async def notify_summary(self, summary: Dict[str, Any], results: List[Any]) -> Outcome:
        try:
            await self._send({"embeds": [build_summary_embed(summary, results)]}, admin=True)
        except (httpx.HTTPError, OSError) as e:
            self._failed += 1
            self.logger.warning("summary_delivery_failed", error=str(e))
            return {"sent": False, "type": "summary", "reason": "delivery_failed", "error": str(e)}
        self._sent += 1
        return {"sent": True, "type": "summary"}

    async def notify_error(self, message: str, context: Optional[Dict[str, Any]] = None) -> Outcome:
        try:
            await self._send({"embeds": [build_error_embed(message, context)]}, admin=True)
        except (httpx.HTTPError, OSError) as e:
            self._failed += 1
            self.logger.error("error_notification_failed", error=str(e), original=message)
            return {"sent": False, "type": "error", "reason": "delivery_failed", "error": str(e)}
        return {"sent": True, "type": "error"}

    def cleanup_cooldowns(self) -> int:
        """Forget expired cooldown entries; returns how many were removed."""
        now = self._clock()
        expired = [key for key, sent in self._cooldowns.items() if now - sent >= self.cooldown_seconds]
        for key in expired:
            del self._cooldowns[key]
        return len(expired)

    def get_stats(self) -> Dict[str, Any]:
        return {
            "sent": self._sent,
            "suppressed": self._suppressed,
            "failed": self._failed,
            "active_cooldowns": len(self._cooldowns),
        }

    async def shutdown(self) -> None:
        self._cooldowns.clear()


class LoggingNotifier(BaseNotifier):
    """Notifier that only logs; used when no webhook is configured."""

    async def _deliver(self, payload: Dict[str, Any], admin: bool = False) -> None:
        embed = payload["embeds"][0]
        self.logger.info(
            "notification_logged",
            title=embed.get("title"),
            description=embed.get("description"),
            admin=admin,
        )


class DiscordWebhookNotifier(BaseNotifier):
    """Posts embeds to a Discord channel webhook."""

    def __init__(
        self,
        webhook_url: str,
        admin_webhook_url: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
        max_attempts: int = 3,
        **kwargs,
    ):
        """Initialize Discord notifier.

        Args:
            webhook_url: Webhook for product notifications
            admin_webhook_url: Webhook for summaries and errors; product webhook when None
            client: Shared AsyncClient; one is created (and owned) when None
            max_attempts: Delivery attempts per notification
            **kwargs: Passed to BaseNotifier
        """
        super().__init__(**kwargs)
        if not webhook_url:
            raise ValueError("webhook_url is required")
        self.webhook_url = webhook_url
        self.admin_webhook_url = admin_webhook_url or webhook_url
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(timeout=httpx.Timeout(10.0))
        self.max_attempts = max_attempts

    def _log_retry(self, state: RetryCallState) -> None:
        error = state.outcome.exception() if state.outcome else None
        self.logger.warning("webhook_retry_scheduled", attempt=state.attempt_number, error=str(error))

    async def _deliver(self, payload: Dict[str, Any], admin: bool = False) -> None:
        url = self.admin_webhook_url if admin else self.webhook_url
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(multiplier=1, min=1, max=10),
            retry=retry_if_exception_type((httpx.TransportError, httpx.HTTPStatusError)),
            before_sleep=self._log_retry,
            sleep=self._sleep,
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                response = await self.client.post(url, json=payload)
                response.raise_for_status()

    async def shutdown(self) -> None:
        await super().shutdown()
        if self._owns_client:
            await self.client.aclose()
