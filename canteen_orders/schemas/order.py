"""
Order request/response schemas
"""

from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field

from ..models.order import Order, OrderItem, OrderStatus


class OrderItemRequest(BaseModel):
    """Order line in a create request"""
    menu_item_id: int = Field(..., description="Menu item ID")
    quantity: int = Field(..., description="Quantity")


class CreateOrderRequest(BaseModel):
    """
    Order create request

    Item count, quantity range and key length are checked by the order
    service, so a bad key fails the same way in the header and the body.
    """
    parent_id: int = Field(..., description="Parent ID")
    student_id: int = Field(..., description="Student ID")
    canteen_id: int = Field(..., description="Canteen ID")
    fulfilment_date: date = Field(..., description="Date the order is served")
    order_items: List[OrderItemRequest] = Field(..., description="Line items")
    idempotency_key: Optional[str] = Field(None, description="Used when no Idempotency-Key header is sent")


class OrderTransitionRequest(BaseModel):
    """Order status change request"""
    status: OrderStatus = Field(..., description="Target status")


class OrderItemResponse(BaseModel):
    """Order line response"""
    id: Optional[int] = Field(None, description="Line item ID")
    menu_item_id: int = Field(..., description="Menu item ID")
    menu_item_name: Optional[str] = Field(None, description="Menu item name")
    menu_item_price: Optional[Decimal] = Field(None, description="Current price")
    quantity: int = Field(..., description="Quantity")
    line_total: Decimal = Field(..., description="Line total")

    @classmethod
    def from_item(cls, item: OrderItem) -> "OrderItemResponse":
        return cls(
            id=item.id,
            menu_item_id=item.menu_item_id,
            menu_item_name=item.menu_item_name,
            menu_item_price=item.unit_price,
            quantity=item.quantity,
            line_total=item.line_total,
        )


class OrderResponse(BaseModel):
    """Order response"""
    id: int = Field(..., description="Order ID")
    parent_id: int = Field(..., description="Parent ID")
    student_id: int = Field(..., description="Student ID")
    canteen_id: int = Field(..., description="Canteen ID")
    fulfilment_date: date = Field(..., description="Fulfilment date")
    status: OrderStatus = Field(..., description="Order status")
    created_at: Optional[datetime] = Field(None, description="Created at (UTC)")
    updated_at: Optional[datetime] = Field(None, description="Updated at (UTC)")
    idempotency_key: Optional[str] = Field(None, description="Idempotency key")
    total_amount: Decimal = Field(..., description="Total at current prices")
    order_items: List[OrderItemResponse] = Field(..., description="Line items")

    @classmethod
    def from_order(cls, order: Order) -> "OrderResponse":
        return cls(
            id=order.id,
            parent_id=order.parent_id,
            student_id=order.student_id,
            canteen_id=order.canteen_id,
            fulfilment_date=order.fulfilment_date,
            status=order.status,
            created_at=order.created_at,
            updated_at=order.updated_at,
            idempotency_key=order.idempotency_key,
            total_amount=order.total_amount,
            order_items=[OrderItemResponse.from_item(item) for item in order.items],
        )


class OrderListResponse(BaseModel):
    """Orders of one parent"""
    parent_id: int = Field(..., description="Parent ID")
    orders: List[OrderResponse] = Field(..., description="Orders, newest first")
