"""API v1 router -- aggregates all v1 endpoint routers."""

from fastapi import APIRouter

from pricewatch.api.v1 import analytics, health, monitor, products

api_v1_router = APIRouter()

api_v1_router.include_router(health.router, tags=["health"])
api_v1_router.include_router(products.router, prefix="/products", tags=["products"])
api_v1_router.include_router(analytics.router, prefix="/analytics", tags=["analytics"])
api_v1_router.include_router(monitor.router, tags=["monitor"])
