"""Monitor, scraper and maintenance endpoints."""

from dataclasses import asdict
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Query

from pricewatch.config import Settings
from pricewatch.core.exceptions import NotFoundError
from pricewatch.dependencies import get_monitor, get_scraper, get_settings, get_store
from pricewatch.schemas import (
    ApiResponse,
    CheckIntervalRequest,
    ForceCheckRequest,
    ForceCheckResponse,
    ScrapeBatchRequest,
    SiteConfigRequest,
    SiteSupportResponse,
)
from pricewatch.scrapers.monitor import PriceMonitor
from pricewatch.scrapers.scraper import PriceScraper
from pricewatch.services.product_store import ProductStore

router = APIRouter()


@router.get("/monitor/stats", response_model=ApiResponse)
async def monitor_stats(monitor: PriceMonitor = Depends(get_monitor)):
    return ApiResponse(status="success", data=monitor.get_stats())


@router.post("/monitor/check", response_model=ApiResponse)
async def force_check(
    body: ForceCheckRequest = ForceCheckRequest(),
    monitor: PriceMonitor = Depends(get_monitor),
):
    """Check one product (or all active ones) immediately."""
    outcome = await monitor.force_check(body.product_id)
    return ApiResponse(status="success", data=ForceCheckResponse(**outcome))


@router.put("/monitor/interval", response_model=ApiResponse)
async def set_interval(
    body: CheckIntervalRequest,
    monitor: PriceMonitor = Depends(get_monitor),
):
    monitor.set_check_interval(body.minutes)
    return ApiResponse(status="success", data={"check_interval_minutes": monitor.check_interval_minutes})


@router.post("/monitor/pause", response_model=ApiResponse)
async def pause_monitor(
    minutes: int = Query(60, ge=1, le=1440),
    monitor: PriceMonitor = Depends(get_monitor),
):
    resume_at = monitor.pause(minutes)
    return ApiResponse(status="success", data={"paused_minutes": minutes, "resume_at": resume_at})


@router.get("/scraper/support", response_model=ApiResponse)
async def site_support(
    url: str = Query(..., description="Product URL"),
    scraper: PriceScraper = Depends(get_scraper),
):
    """How well the scraper is expected to handle ``url``."""
    support = scraper.is_supported_site(url)
    return ApiResponse(
        status="success",
        data=SiteSupportResponse(
            supported=support.supported,
            confidence=support.confidence,
            domain=support.domain,
            matched_domain=support.matched_domain,
        ),
    )


@router.get("/scraper/stats", response_model=ApiResponse)
async def scraper_stats(scraper: PriceScraper = Depends(get_scraper)):
    return ApiResponse(status="success", data=scraper.get_stats())


@router.post("/scraper/batch", response_model=ApiResponse)
async def scrape_batch(
    body: ScrapeBatchRequest,
    scraper: PriceScraper = Depends(get_scraper),
    app_settings: Settings = Depends(get_settings),
):
    """Scrape several URLs without tracking them."""
    results = await scraper.scrape_batch(
        body.urls,
        concurrency=app_settings.SCRAPE_BATCH_CONCURRENCY,
        delay_between_batches=app_settings.SCRAPE_BATCH_DELAY_MS / 1000,
    )
    return ApiResponse(status="success", data=[r.to_dict() for r in results])


@router.put("/scraper/sites/{domain}", response_model=ApiResponse)
async def put_site_config(
    domain: str,
    body: SiteConfigRequest,
    scraper: PriceScraper = Depends(get_scraper),
):
    """Register or replace the extraction hints for a domain."""
    config = scraper.add_site_config(domain, **body.model_dump())
    return ApiResponse(status="success", data={"domain": domain, **asdict(config)})


@router.delete("/scraper/sites/{domain}", response_model=ApiResponse)
async def delete_site_config(
    domain: str,
    scraper: PriceScraper = Depends(get_scraper),
):
    if not scraper.remove_site_config(domain):
        raise NotFoundError("Site config", domain)
    return ApiResponse(status="success", data={"domain": domain, "removed": True})


@router.post("/system/backup", response_model=ApiResponse)
async def backup(
    store: ProductStore = Depends(get_store),
    app_settings: Settings = Depends(get_settings),
):
    location = await store.backup(app_settings.BACKUP_DIR)
    return ApiResponse(
        status="success",
        data={
            "backup_path": str(location) if location else None,
            "timestamp": datetime.now(timezone.utc),
        },
    )


@router.post("/system/cleanup", response_model=ApiResponse)
async def cleanup(
    days: int = Query(90, ge=1, le=3650, description="History to keep, in days"),
    store: ProductStore = Depends(get_store),
):
    deleted = await store.purge_history_older_than(days)
    return ApiResponse(status="success", data={"records_cleaned": deleted, "days_kept": days})
