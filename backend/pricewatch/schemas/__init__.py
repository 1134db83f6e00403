from pricewatch.schemas.common import ApiResponse, ErrorDetail, ErrorResponse, PaginationMeta
from pricewatch.schemas.health import HealthCheckResponse
from pricewatch.schemas.history import PriceHistoryPoint, PriceTrendResponse
from pricewatch.schemas.monitor import (
    CheckIntervalRequest,
    ForceCheckRequest,
    ForceCheckResponse,
    ScrapeBatchRequest,
    SiteConfigRequest,
    SiteSupportResponse,
)
from pricewatch.schemas.product import (
    ProductCreate,
    ProductDetailResponse,
    ProductResponse,
    ProductUpdate,
)

__all__ = [
    "ApiResponse",
    "CheckIntervalRequest",
    "ErrorDetail",
    "ErrorResponse",
    "ForceCheckRequest",
    "ForceCheckResponse",
    "HealthCheckResponse",
    "PaginationMeta",
    "PriceHistoryPoint",
    "PriceTrendResponse",
    "ProductCreate",
    "ProductDetailResponse",
    "ProductResponse",
    "ProductUpdate",
    "ScrapeBatchRequest",
    "SiteConfigRequest",
    "SiteSupportResponse",
]
