"""Health check endpoint."""

from fastapi import APIRouter, Depends
from sqlalchemy.exc import SQLAlchemyError

from pricewatch.dependencies import get_monitor, get_store
from pricewatch.schemas import HealthCheckResponse
from pricewatch.scrapers.monitor import PriceMonitor
from pricewatch.services.product_store import ProductStore

router = APIRouter()


@router.get("/health", response_model=HealthCheckResponse)
async def health_check(
    store: ProductStore = Depends(get_store),
    monitor: PriceMonitor = Depends(get_monitor),
):
    """Return service health status.

    Checks:
    - Database connectivity
    - Monitor state (stopped / idle / checking)
    """
    try:
        await store.ping()
        db_status = "ok"
    except SQLAlchemyError as e:
        db_status = f"error: {str(e)}"

    monitor_status = monitor.state
    services = {"database": db_status, "monitor": monitor_status}
    overall_status = "ok" if db_status == "ok" else "degraded"

    return HealthCheckResponse(
        status=overall_status,
        database=db_status,
        monitor=monitor_status,
        services=services,
    )
