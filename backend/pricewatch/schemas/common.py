"""Response envelopes shared by every endpoint.

Successful responses are ``{"status": "success", "data": ..., "meta": ...}``;
failures are ``{"status": "error", "error": {"code", "message", "field"}}``.
"""

from typing import Generic, Optional, TypeVar

from pydantic import BaseModel

T = TypeVar("T")


class PaginationMeta(BaseModel):
    """Paging information for product listings."""

    page: int = 1
    limit: int = 50
    total: int = 0
    total_pages: int = 0

    @classmethod
    def build(cls, page: int, limit: int, total: int) -> "PaginationMeta":
        total_pages = (total + limit - 1) // limit if total > 0 else 0
        return cls(page=page, limit=limit, total=total, total_pages=total_pages)


class ApiResponse(BaseModel, Generic[T]):
    status: str = "success"
    data: T
    meta: Optional[PaginationMeta] = None


class ErrorDetail(BaseModel):
    """Machine-readable code plus a human message; ``field`` names the bad input, if any."""

    code: str
    message: str
    field: Optional[str] = None


class ErrorResponse(BaseModel):
    status: str = "error"
    error: ErrorDetail

    @classmethod
    def of(cls, code: str, message: str, field: Optional[str] = None) -> "ErrorResponse":
        return cls(error=ErrorDetail(code=code, message=message, field=field))
