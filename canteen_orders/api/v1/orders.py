"""
Order routes
"""

from typing import Iterator, Optional

from fastapi import APIRouter, Depends, Header, Response, status

from ...config.settings import settings
from ...core.exceptions import OrderRejected
from ...schemas.common import ErrorResponse
from ...schemas.order import (
    CreateOrderRequest,
    OrderListResponse,
    OrderResponse,
    OrderTransitionRequest,
)
from ...services.order_service import (
    OrderLine,
    OrderService,
    PlaceOrderRequest,
    build_order_service,
)

router = APIRouter()

ERROR_RESPONSES = {
    400: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
    409: {"model": ErrorResponse},
    422: {"model": ErrorResponse},
    503: {"model": ErrorResponse},
}


def get_order_service() -> Iterator[OrderService]:
    """One service, and one store transaction scope, per request"""
    service = build_order_service()
    try:
        yield service
    finally:
        service.close()


@router.post("/orders", response_model=OrderResponse, status_code=status.HTTP_201_CREATED,
             responses=ERROR_RESPONSES)
def create_order(req: CreateOrderRequest, response: Response,
                 idempotency_key: Optional[str] = Header(None, alias="Idempotency-Key"),
                 service: OrderService = Depends(get_order_service)):
    """
    Place an order

    The Idempotency-Key header takes precedence over the body field. A
    repeated key returns the existing order with 200.
    """
    result = service.place_order(PlaceOrderRequest(
        parent_id=req.parent_id,
        student_id=req.student_id,
        canteen_id=req.canteen_id,
        fulfilment_date=req.fulfilment_date,
        items=[OrderLine(i.menu_item_id, i.quantity) for i in req.order_items],
        idempotency_key=idempotency_key if idempotency_key is not None else req.idempotency_key,
    ))
    if not result.ok:
        raise OrderRejected(result.failure)

    if result.replayed:
        if settings.report_duplicates_as_conflict:
            raise OrderRejected(result.duplicate)
        response.status_code = status.HTTP_200_OK
    return OrderResponse.from_order(result.order)


@router.get("/orders/{order_id}", response_model=OrderResponse, responses=ERROR_RESPONSES)
def get_order(order_id: int, service: OrderService = Depends(get_order_service)):
    result = service.get_order(order_id)
    if not result.ok:
        raise OrderRejected(result.failure)
    return OrderResponse.from_order(result.order)


@router.post("/orders/{order_id}/transitions", response_model=OrderResponse,
             responses=ERROR_RESPONSES)
def transition_order(order_id: int, req: OrderTransitionRequest,
                     service: OrderService = Depends(get_order_service)):
    """Confirm, fulfill or cancel an order"""
    result = service.transition_order(order_id, req.status)
    if not result.ok:
        raise OrderRejected(result.failure)
    return OrderResponse.from_order(result.order)


@router.get("/parents/{parent_id}/orders", response_model=OrderListResponse,
            responses=ERROR_RESPONSES)
def list_parent_orders(parent_id: int, service: OrderService = Depends(get_order_service)):
    result = service.list_orders_for_parent(parent_id)
    if not result.ok:
        raise OrderRejected(result.failure)
    return OrderListResponse(
        parent_id=parent_id,
        orders=[OrderResponse.from_order(order) for order in result.orders],
    )
