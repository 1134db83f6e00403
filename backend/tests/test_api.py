"""API tests through the ASGI app.

The lifespan is not run; components are placed on ``app.state`` directly
so the endpoints use the in-memory database.
"""

import httpx
import pytest
import pytest_asyncio

from pricewatch.config import Settings
from pricewatch.main import create_app
from pricewatch.scrapers import Fetcher, PriceScraper
from pricewatch.scrapers.monitor import PriceMonitor
from pricewatch.services.notifier import LoggingNotifier
from conftest import html_response

PRODUCT_PAGE = """
<html>
  <head><title>Liquidificador | Loja</title></head>
  <body>
    <h1>Liquidificador 1200W</h1>
    <span class="price">R$ 249,90</span>
  </body>
</html>
"""
NO_PRICE_PAGE = "<html><head><title>Esgotado</title></head><body><p>Produto esgotado</p></body></html>"


def handler(request: httpx.Request) -> httpx.Response:
    if request.url.path.startswith("/esgotado"):
        return html_response(NO_PRICE_PAGE)
    return html_response(PRODUCT_PAGE)


@pytest.fixture
def fetched() -> list:
    """Paths requested from the product pages, in order."""
    return []


@pytest_asyncio.fixture
async def client(store, history_service, sleep, tmp_path, fetched):
    app_settings = Settings(ENVIRONMENT="test", DEBUG=False, BACKUP_DIR=str(tmp_path / "backups"))
    app = create_app(app_settings)

    def recording(request: httpx.Request) -> httpx.Response:
        fetched.append(request.url.path)
        return handler(request)

    fetcher = Fetcher(
        client=httpx.AsyncClient(transport=httpx.MockTransport(recording), follow_redirects=True),
        max_retries=0,
        sleep=sleep,
    )
    scraper = PriceScraper(fetcher, sleep=sleep)
    notifier = LoggingNotifier(store=store, sleep=sleep)

    app.state.settings = app_settings
    app.state.store = store
    app.state.history = history_service
    app.state.scraper = scraper
    app.state.notifier = notifier
    app.state.monitor = PriceMonitor(store, scraper, notifier, sleep=sleep)

    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    await fetcher.aclose()


async def create(client, url="https://loja.example.com/p/1", **fields):
    response = await client.post("/api/v1/products", json={"url": url, **fields})
    assert response.status_code == 201, response.text
    return response.json()["data"]


# ============================================================================
# TESTS: HEALTH
# ============================================================================

class TestHealth:
    """Tests for the root and health endpoints."""

    async def test_root(self, client):
        response = await client.get("/")
        assert response.status_code == 200
        assert response.json()["name"] == "PriceWatch API"

    async def test_health(self, client):
        response = await client.get("/api/v1/health")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "ok"
        assert body["database"] == "ok"
        assert body["monitor"] == "stopped"


# ============================================================================
# TESTS: PRODUCTS
# ============================================================================

class TestProducts:
    """Tests for the products endpoints."""

    async def test_create_scrapes_page(self, client):
        data = await create(client, "https://loja.example.com/p/1?utm_source=bot", target_price=200.0, user_id="7")

        assert data["url"] == "https://loja.example.com/p/1"
        assert data["name"] == "Liquidificador 1200W"
        assert data["current_price"] == pytest.approx(249.90)
        assert data["target_price"] == 200.0
        assert data["check_count"] == 0
        assert data["metadata"] == {"domain": "loja.example.com", "support": "low"}

    async def test_create_duplicate(self, client, fetched):
        await create(client)
        response = await client.post("/api/v1/products", json={"url": "https://loja.example.com/p/1?utm_source=bot"})

        assert response.status_code == 409
        assert response.json()["error"]["code"] == "already_exists"
        # the duplicate is rejected before the page is fetched again
        assert fetched == ["/p/1"]

    async def test_create_without_readable_price(self, client):
        response = await client.post("/api/v1/products", json={"url": "https://loja.example.com/esgotado"})

        assert response.status_code == 422
        body = response.json()
        assert body["status"] == "error"
        assert body["error"]["code"] == "scrape_failed"

    async def test_create_rejects_invalid_url(self, client):
        response = await client.post("/api/v1/products", json={"url": "not-a-url"})
        assert response.status_code == 422

    async def test_list_and_detail(self, client):
        created = await create(client)
        await create(client, "https://loja.example.com/p/2")

        listing = (await client.get("/api/v1/products", params={"limit": 1})).json()
        detail = (await client.get(f"/api/v1/products/{created['id']}")).json()["data"]

        assert listing["meta"]["total"] == 2
        assert listing["meta"]["total_pages"] == 2
        assert len(listing["data"]) == 1
        assert detail["product"]["id"] == created["id"]
        assert [point["source"] for point in detail["history"]] == ["initial"]
        assert detail["statistics"]["total_records"] == 1

    async def test_not_found_envelope(self, client):
        response = await client.get("/api/v1/products/999")

        assert response.status_code == 404
        assert response.json() == {
            "status": "error",
            "error": {"code": "not_found", "message": "Product with identifier '999' not found", "field": None},
        }

    async def test_update(self, client):
        created = await create(client)

        response = await client.patch(f"/api/v1/products/{created['id']}", json={"target_price": 199.0})
        empty = await client.patch(f"/api/v1/products/{created['id']}", json={})

        assert response.status_code == 200
        assert response.json()["data"]["target_price"] == 199.0
        assert empty.status_code == 400

    async def test_delete_deactivates_by_default(self, client):
        created = await create(client)

        response = await client.delete(f"/api/v1/products/{created['id']}")
        detail = (await client.get(f"/api/v1/products/{created['id']}")).json()["data"]

        assert response.json()["data"]["deactivated"] is True
        assert detail["product"]["is_active"] is False

    async def test_delete_permanent(self, client):
        created = await create(client)

        response = await client.delete(f"/api/v1/products/{created['id']}", params={"permanent": True})
        again = await client.delete(f"/api/v1/products/{created['id']}", params={"permanent": True})

        assert response.status_code == 200
        assert again.status_code == 404

    async def test_on_sale(self, client):
        cheap = await create(client, "https://loja.example.com/p/1", target_price=300.0)
        await create(client, "https://loja.example.com/p/2", target_price=100.0)

        data = (await client.get("/api/v1/products/on-sale")).json()["data"]

        assert [p["id"] for p in data] == [cheap["id"]]

    async def test_history_csv(self, client):
        created = await create(client)

        response = await client.get(f"/api/v1/products/{created['id']}/price-history", params={"format": "csv"})

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/csv")
        assert f"product_{created['id']}_history.csv" in response.headers["content-disposition"]
        assert response.text.splitlines()[0].startswith("id,product_id,price")

    async def test_history_json_and_trend(self, client):
        created = await create(client)

        history = (await client.get(f"/api/v1/products/{created['id']}/price-history")).json()["data"]
        trend = (await client.get(f"/api/v1/products/{created['id']}/trend")).json()["data"]

        assert len(history) == 1
        assert trend["trend"] == "insufficient_data"


# ============================================================================
# TESTS: MONITOR AND SCRAPER
# ============================================================================

class TestMonitorEndpoints:
    """Tests for monitor, scraper and system endpoints."""

    async def test_force_check_single(self, client):
        created = await create(client)

        response = await client.post("/api/v1/monitor/check", json={"product_id": created["id"]})

        data = response.json()["data"]
        assert data["total"] == 1
        assert data["successful"] == 1
        assert data["results"][0]["new_price"] == pytest.approx(249.90)

    async def test_force_check_all(self, client):
        await create(client, "https://loja.example.com/p/1")
        await create(client, "https://loja.example.com/p/2")

        data = (await client.post("/api/v1/monitor/check")).json()["data"]

        assert data["total"] == 2

    async def test_force_check_unknown(self, client):
        response = await client.post("/api/v1/monitor/check", json={"product_id": 404})
        assert response.status_code == 404

    async def test_interval(self, client):
        ok = await client.put("/api/v1/monitor/interval", json={"minutes": 30})
        invalid = await client.put("/api/v1/monitor/interval", json={"minutes": 0})

        assert ok.json()["data"]["check_interval_minutes"] == 30
        assert invalid.status_code == 422

    async def test_pause_when_stopped(self, client):
        response = await client.post("/api/v1/monitor/pause", params={"minutes": 5})

        assert response.status_code == 409
        assert response.json()["error"]["code"] == "monitor_state"

    async def test_stats(self, client):
        data = (await client.get("/api/v1/monitor/stats")).json()["data"]
        assert data["state"] == "stopped"
        assert data["total_checks"] == 0

    @pytest.mark.parametrize(
        "url,confidence",
        [("https://www.amazon.com.br/dp/X", "high"), ("https://blog.example.com/post", "none")],
    )
    async def test_site_support(self, client, url, confidence):
        data = (await client.get("/api/v1/scraper/support", params={"url": url})).json()["data"]
        assert data["confidence"] == confidence

    async def test_analytics_stats(self, client):
        await create(client)
        data = (await client.get("/api/v1/analytics/stats")).json()["data"]
        assert data["total_products"] == 1

    async def test_cleanup(self, client):
        data = (await client.post("/api/v1/system/cleanup", params={"days": 30})).json()["data"]
        assert data == {"records_cleaned": 0, "days_kept": 30}

    async def test_scrape_batch(self, client, sleep):
        urls = [f"https://loja.example.com/p/{i}" for i in range(4)] + ["https://loja.example.com/esgotado"]

        data = (await client.post("/api/v1/scraper/batch", json={"urls": urls})).json()["data"]

        assert [r["success"] for r in data] == [True, True, True, True, False]
        # default groups of 3 with a 2 s pause between them
        assert sleep.delays == [2.0]

    async def test_site_config_lifecycle(self, client):
        put = await client.put(
            "/api/v1/scraper/sites/minhaloja.com.br",
            json={"price_selectors": [".preco-final"]},
        )
        support = (await client.get(
            "/api/v1/scraper/support", params={"url": "https://www.minhaloja.com.br/p/1"}
        )).json()["data"]
        removed = await client.delete("/api/v1/scraper/sites/minhaloja.com.br")
        missing = await client.delete("/api/v1/scraper/sites/minhaloja.com.br")

        assert put.json()["data"]["price_selectors"] == [".preco-final"]
        assert put.json()["data"]["currency"] == "BRL"
        assert support["confidence"] == "high"
        assert removed.json()["data"]["removed"] is True
        assert missing.status_code == 404
