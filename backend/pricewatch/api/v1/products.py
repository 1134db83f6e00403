"""Products API endpoints."""

from typing import Optional

from fastapi import APIRouter, Depends, Query, Response

from pricewatch.core.exceptions import AlreadyExistsError, ExtractionError, NotFoundError, ValidationError
from pricewatch.dependencies import get_history_service, get_scraper, get_store
from pricewatch.schemas import (
    ApiResponse,
    PaginationMeta,
    PriceHistoryPoint,
    PriceTrendResponse,
    ProductCreate,
    ProductDetailResponse,
    ProductResponse,
    ProductUpdate,
)
from pricewatch.scrapers.scraper import PriceScraper
from pricewatch.services.price_history_service import PriceHistoryService
from pricewatch.services.product_store import ProductStore

router = APIRouter()


@router.get("", response_model=ApiResponse)
async def list_products(
    page: int = Query(1, ge=1, description="Page number (1-indexed)"),
    limit: int = Query(50, ge=1, le=100, description="Items per page"),
    active_only: bool = Query(False, description="Only return active products"),
    guild_id: Optional[str] = Query(None, description="Filter by guild"),
    store: ProductStore = Depends(get_store),
):
    """List tracked products with pagination."""
    if guild_id:
        products = await store.find_by_guild(guild_id, limit=limit, active_only=active_only)
        total = len(products)
    else:
        products, total = await store.list_products(
            active_only=active_only,
            limit=limit,
            offset=(page - 1) * limit,
        )

    return ApiResponse(
        status="success",
        data=[ProductResponse.model_validate(p) for p in products],
        meta=PaginationMeta.build(page, limit, total),
    )


@router.post("", response_model=ApiResponse, status_code=201)
async def create_product(
    body: ProductCreate,
    store: ProductStore = Depends(get_store),
    scraper: PriceScraper = Depends(get_scraper),
):
    """Start tracking a product.

    An already tracked URL is rejected before any request is made. The page
    is scraped next; a page without a readable price is rejected.
    """
    existing = await store.find_by_url(body.url)
    if existing is not None:
        raise AlreadyExistsError("Product", existing.url)

    scraped = await scraper.scrape_price(body.url)
    if not scraped.success:
        raise ExtractionError(scraped.domain, scraped.error or "could not read the price")

    product = await store.create_product(
        url=body.url,
        name=body.name or scraped.name,
        current_price=scraped.price,
        target_price=body.target_price,
        promotion_threshold=body.promotion_threshold,
        channel_id=body.channel_id,
        guild_id=body.guild_id,
        user_id=body.user_id,
        metadata={"domain": scraped.domain, "support": scraper.is_supported_site(body.url).confidence},
    )

    return ApiResponse(status="success", data=ProductDetailResponse.model_validate(product))


@router.get("/on-sale", response_model=ApiResponse)
async def list_on_sale(
    guild_id: Optional[str] = Query(None, description="Filter by guild"),
    store: ProductStore = Depends(get_store),
):
    """Active products at or below their target price."""
    products = await store.find_on_sale(guild_id)
    return ApiResponse(status="success", data=[ProductResponse.model_validate(p) for p in products])


@router.get("/{product_id}", response_model=ApiResponse)
async def get_product(
    product_id: int,
    store: ProductStore = Depends(get_store),
    history: PriceHistoryService = Depends(get_history_service),
):
    """Get product details with its recent history and 30-day statistics."""
    product = await store.get_product(product_id)
    recent = await history.get_by_product(product_id, limit=20, days=30)
    statistics = await history.get_statistics(product_id, days=30)

    return ApiResponse(
        status="success",
        data={
            "product": ProductDetailResponse.model_validate(product),
            "history": [PriceHistoryPoint.model_validate(h) for h in recent],
            "statistics": statistics,
        },
    )


@router.patch("/{product_id}", response_model=ApiResponse)
async def update_product(
    product_id: int,
    body: ProductUpdate,
    store: ProductStore = Depends(get_store),
):
    """Update name, target price, promotion threshold or active flag."""
    fields = body.model_dump(exclude_unset=True)
    if not fields:
        raise ValidationError("No fields to update")

    product = await store.update_product(product_id, **fields)
    return ApiResponse(status="success", data=ProductDetailResponse.model_validate(product))


@router.delete("/{product_id}", response_model=ApiResponse)
async def delete_product(
    product_id: int,
    permanent: bool = Query(False, description="Delete with history instead of deactivating"),
    store: ProductStore = Depends(get_store),
):
    """Stop tracking a product (deactivate, or delete when ``permanent``)."""
    changed = await store.delete(product_id) if permanent else await store.deactivate(product_id)
    if not changed:
        raise NotFoundError("Product", str(product_id))

    return ApiResponse(status="success", data={"id": product_id, "deleted": permanent, "deactivated": not permanent})


@router.get("/{product_id}/price-history")
async def get_price_history(
    product_id: int,
    days: int = Query(30, ge=1, le=365, description="Number of days to look back"),
    limit: int = Query(50, ge=1, le=1000, description="Maximum number of points"),
    format: str = Query("json", pattern="^(json|csv)$", description="json or csv"),
    store: ProductStore = Depends(get_store),
    history: PriceHistoryService = Depends(get_history_service),
):
    """Get price history for a product, newest first (or as a CSV download)."""
    await store.get_product(product_id)

    if format == "csv":
        content = await history.export(product_id, days=days, format="csv")
        return Response(
            content=content,
            media_type="text/csv",
            headers={"Content-Disposition": f'attachment; filename="product_{product_id}_history.csv"'},
        )

    points = await history.get_by_product(product_id, limit=limit, days=days)
    return ApiResponse(status="success", data=[PriceHistoryPoint.model_validate(h) for h in points])


@router.get("/{product_id}/trend", response_model=ApiResponse)
async def get_trend(
    product_id: int,
    days: int = Query(7, ge=1, le=365, description="Number of days to analyze"),
    store: ProductStore = Depends(get_store),
    history: PriceHistoryService = Depends(get_history_service),
):
    """Least-squares price trend over the last ``days``."""
    await store.get_product(product_id)
    trend = await history.get_trend(product_id, days=days)
    return ApiResponse(status="success", data=PriceTrendResponse(**trend))
