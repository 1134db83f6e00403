"""Tests for notifiers: cooldowns, delivery spacing, Discord payloads and persistence."""

from types import SimpleNamespace

import httpx
import pytest
from sqlalchemy import select

from pricewatch.models import Notification, Product
from pricewatch.services.notifier import (
    COLOR_DROP,
    DiscordWebhookNotifier,
    LoggingNotifier,
    build_price_drop_embed,
    build_summary_embed,
    format_brl,
)

WEBHOOK_URL = "https://discord.example.com/api/webhooks/1/token"
ADMIN_WEBHOOK_URL = "https://discord.example.com/api/webhooks/2/admin"


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


def make_product(**overrides) -> Product:
    fields = dict(id=1, name="Air Fryer 4L", url="https://loja.example.com/p/1", target_price=300.0, user_id="42")
    fields.update(overrides)
    return Product(**fields)


def discord_notifier(handler, sleep, clock=None, **kwargs) -> DiscordWebhookNotifier:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return DiscordWebhookNotifier(
        WEBHOOK_URL,
        admin_webhook_url=ADMIN_WEBHOOK_URL,
        client=client,
        sleep=sleep,
        clock=clock or FakeClock(),
        **kwargs,
    )


# ============================================================================
# TESTS: FORMATTING
# ============================================================================

class TestFormatting:
    """Tests for currency formatting and embeds."""

    @pytest.mark.parametrize(
        "value,expected",
        [(1234.56, "R$ 1.234,56"), (99.9, "R$ 99,90"), (1000000, "R$ 1.000.000,00"), (None, "-")],
    )
    def test_format_brl(self, value, expected):
        assert format_brl(value) == expected

    def test_drop_embed_includes_target_distance(self):
        embed = build_price_drop_embed(make_product(), 330.0, 400.0, -17.5)
        names = [field["name"] for field in embed["fields"]]

        assert embed["color"] == COLOR_DROP
        assert embed["url"] == "https://loja.example.com/p/1"
        assert "📏 Distance to target" in names
        assert embed["fields"][2]["value"] == "-17.5%"

    def test_summary_embed_lists_top_three_big_drops(self):
        results = [
            SimpleNamespace(product=make_product(id=i, name=f"Produto {i}"), new_price=100.0, price_change=change)
            for i, change in enumerate([-12.0, -30.0, -5.0, -20.0, -11.0])
        ]
        summary = {"total": 5, "successful": 5, "failed": 0, "notifications": 5, "average_price": 100.0}

        embed = build_summary_embed(summary, results)
        top = embed["fields"][-1]

        assert top["name"] == "🏆 Biggest drops"
        assert top["value"].splitlines() == [
            "• **Produto 1**: -30.0%",
            "• **Produto 3**: -20.0%",
            "• **Produto 0**: -12.0%",
        ]
        # target 300 >= new price 100 for every result
        assert embed["fields"][3]["value"] == "5"


# ============================================================================
# TESTS: COOLDOWN AND SPACING
# ============================================================================

class TestCooldownAndSpacing:
    """Tests for BaseNotifier delivery rules, via LoggingNotifier."""

    async def test_cooldown_per_product_and_type(self, sleep):
        clock = FakeClock()
        notifier = LoggingNotifier(sleep=sleep, clock=clock)
        product = make_product()

        first = await notifier.notify_price_drop(product, 90.0, 100.0, -10.0)
        second = await notifier.notify_price_drop(product, 85.0, 90.0, -5.6)
        other_type = await notifier.notify_target_reached(product, 85.0, 90.0)
        other_product = await notifier.notify_price_drop(make_product(id=2), 90.0, 100.0, -10.0)

        assert first == {"sent": True, "type": "price_drop"}
        assert second == {"sent": False, "type": "price_drop", "reason": "cooldown"}
        assert other_type["sent"] is True
        assert other_product["sent"] is True
        assert notifier.get_stats() == {"sent": 3, "suppressed": 1, "failed": 0, "active_cooldowns": 3}

    async def test_cooldown_expires(self, sleep):
        clock = FakeClock()
        notifier = LoggingNotifier(sleep=sleep, clock=clock, cooldown_minutes=10)
        product = make_product()

        await notifier.notify_price_drop(product, 90.0, 100.0, -10.0)
        clock.now += 10 * 60
        again = await notifier.notify_price_drop(product, 80.0, 90.0, -11.1)

        assert again["sent"] is True

    async def test_deliveries_are_spaced(self, sleep):
        clock = FakeClock()
        notifier = LoggingNotifier(sleep=sleep, clock=clock, send_delay_seconds=2.0)

        await notifier.notify_price_drop(make_product(id=1), 90.0, 100.0, -10.0)
        clock.now += 0.5
        await notifier.notify_price_drop(make_product(id=2), 90.0, 100.0, -10.0)
        clock.now += 5
        await notifier.notify_price_drop(make_product(id=3), 90.0, 100.0, -10.0)

        assert sleep.delays == [pytest.approx(1.5)]

    async def test_cleanup_cooldowns(self, sleep):
        clock = FakeClock()
        notifier = LoggingNotifier(sleep=sleep, clock=clock)

        await notifier.notify_price_drop(make_product(id=1), 90.0, 100.0, -10.0)
        clock.now += 300
        await notifier.notify_price_drop(make_product(id=2), 90.0, 100.0, -10.0)
        clock.now += 301

        assert notifier.cleanup_cooldowns() == 1
        assert notifier.get_stats()["active_cooldowns"] == 1

    async def test_delivered_notifications_are_recorded(self, store, session_factory, sleep):
        product = await store.create_product("https://loja.example.com/p/1", channel_id="c1", user_id="u1")
        notifier = LoggingNotifier(store=store, sleep=sleep, clock=FakeClock())

        await notifier.notify_target_reached(product, 90.0, 120.0)

        async with session_factory() as session:
            rows = (await session.execute(select(Notification))).scalars().all()
        assert len(rows) == 1
        assert rows[0].type == "target_reached"
        assert rows[0].channel_id == "c1"
        assert rows[0].status == "sent"


# ============================================================================
# TESTS: DISCORD WEBHOOK
# ============================================================================

class TestDiscordWebhookNotifier:
    """Tests for DiscordWebhookNotifier."""

    async def test_requires_webhook_url(self):
        with pytest.raises(ValueError):
            DiscordWebhookNotifier("")

    async def test_drop_mentions_user(self, sleep):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(204)

        notifier = discord_notifier(handler, sleep)
        outcome = await notifier.notify_price_drop(make_product(), 90.0, 100.0, -10.0)

        payload = httpx.Response(200, content=seen[0].content).json()
        assert outcome["sent"] is True
        assert str(seen[0].url) == WEBHOOK_URL
        assert payload["content"] == "<@42>"
        assert payload["embeds"][0]["title"] == "📉 Price drop detected!"

    async def test_increase_has_no_mention(self, sleep):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(204)

        notifier = discord_notifier(handler, sleep)
        await notifier.notify_price_increase(make_product(), 125.0, 100.0, 25.0)

        payload = httpx.Response(200, content=seen[0].content).json()
        assert "content" not in payload
        assert payload["embeds"][0]["fields"][2]["value"] == "+25.0%"

    async def test_summary_goes_to_admin_webhook(self, sleep):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(204)

        notifier = discord_notifier(handler, sleep)
        summary = {"total": 0, "successful": 0, "failed": 0, "notifications": 0, "average_price": 0.0}
        outcome = await notifier.notify_summary(summary, [])

        assert outcome == {"sent": True, "type": "summary"}
        assert str(seen[0].url) == ADMIN_WEBHOOK_URL

    async def test_server_errors_are_retried(self, sleep):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            if len(calls) < 3:
                return httpx.Response(502)
            return httpx.Response(204)

        notifier = discord_notifier(handler, sleep)
        outcome = await notifier.notify_price_drop(make_product(), 90.0, 100.0, -10.0)

        assert outcome["sent"] is True
        assert len(calls) == 3
        assert sleep.delays == [1, 2]

    async def test_delivery_failure_is_reported_and_recorded(self, store, session_factory, sleep):
        product = await store.create_product("https://loja.example.com/p/1", user_id="u1")

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(500)

        notifier = discord_notifier(handler, sleep, store=store, max_attempts=2)
        outcome = await notifier.notify_price_drop(product, 90.0, 100.0, -10.0)

        assert outcome["sent"] is False
        assert outcome["reason"] == "delivery_failed"
        assert notifier.get_stats()["failed"] == 1
        async with session_factory() as session:
            status = (await session.execute(select(Notification.status))).scalar_one()
        assert status == "failed"

    async def test_shutdown_keeps_shared_client_open(self, sleep):
        notifier = discord_notifier(lambda request: httpx.Response(204), sleep)
        await notifier.shutdown()
        assert notifier.client.is_closed is False

    async def test_error_report_goes_to_admin_webhook(self, sleep):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(204)

        notifier = discord_notifier(handler, sleep)
        outcome = await notifier.notify_error("Price check cycle failed", {"error": "database is locked"})

        payload = httpx.Response(200, content=seen[0].content).json()
        assert outcome == {"sent": True, "type": "error"}
        assert str(seen[0].url) == ADMIN_WEBHOOK_URL
        assert "database is locked" in payload["embeds"][0]["fields"][1]["value"]
