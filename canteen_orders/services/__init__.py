"""
Business logic services.
Order placement, validation rules and idempotency handling.
"""

from .idempotency import IdempotencyGuard
from .order_service import (
    OrderLine,
    OrderListResult,
    OrderResult,
    OrderService,
    PlaceOrderRequest,
    build_order_service,
)
from .validation import PlacementContext, ValidationPipeline

__all__ = [
    "IdempotencyGuard",
    "OrderLine",
    "OrderListResult",
    "OrderResult",
    "OrderService",
    "PlaceOrderRequest",
    "PlacementContext",
    "ValidationPipeline",
    "build_order_service",
]
