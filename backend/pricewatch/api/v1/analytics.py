"""Analytics endpoints over the price history."""

from typing import Optional

from fastapi import APIRouter, Depends, Query

from pricewatch.dependencies import get_history_service, get_store
from pricewatch.schemas import ApiResponse
from pricewatch.services.price_history_service import PriceHistoryService
from pricewatch.services.product_store import ProductStore

router = APIRouter()


@router.get("/stats", response_model=ApiResponse)
async def get_stats(
    guild_id: Optional[str] = Query(None),
    store: ProductStore = Depends(get_store),
):
    return ApiResponse(status="success", data=await store.get_stats(guild_id))


@router.get("/volatile", response_model=ApiResponse)
async def most_volatile(
    days: int = Query(7, ge=1, le=365),
    limit: int = Query(10, ge=1, le=100),
    guild_id: Optional[str] = Query(None),
    history: PriceHistoryService = Depends(get_history_service),
):
    """Products whose price moved the most, relative to their minimum."""
    return ApiResponse(status="success", data=await history.get_most_volatile(days, limit, guild_id))


@router.get("/drops", response_model=ApiResponse)
async def biggest_drops(
    hours: int = Query(24, ge=1, le=24 * 30),
    limit: int = Query(10, ge=1, le=100),
    guild_id: Optional[str] = Query(None),
    history: PriceHistoryService = Depends(get_history_service),
):
    """Steepest recent drops (more than 5%)."""
    return ApiResponse(status="success", data=await history.get_biggest_drops(hours, limit, guild_id))
