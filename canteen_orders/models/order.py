"""
Order aggregate
Order and its line items, the lifecycle state machine and derived totals

Lifecycle:
    Placed -> Confirmed -> Fulfilled
    Placed / Confirmed -> Cancelled

The order total is never stored. It is recomputed from the line items and
the menu prices they were loaded with.
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Dict, List, Optional, Tuple

from pydantic import Field, computed_field

from ..config.settings import IDEMPOTENCY_KEY_MAX_LENGTH
from ..core.exceptions import OrderRejected
from ..core.failures import InvalidTransition
from .base import BaseEntity, TimestampMixin, utcnow


class OrderStatus(str, Enum):
    """Order status"""
    PLACED = "Placed"
    CONFIRMED = "Confirmed"
    FULFILLED = "Fulfilled"
    CANCELLED = "Cancelled"


class OrderEvent(str, Enum):
    """Lifecycle events"""
    CONFIRM = "confirm"
    FULFILL = "fulfill"
    CANCEL = "cancel"


ORDER_TRANSITIONS: Dict[Tuple[OrderStatus, OrderEvent], OrderStatus] = {
    (OrderStatus.PLACED, OrderEvent.CONFIRM): OrderStatus.CONFIRMED,
    (OrderStatus.CONFIRMED, OrderEvent.FULFILL): OrderStatus.FULFILLED,
    (OrderStatus.PLACED, OrderEvent.CANCEL): OrderStatus.CANCELLED,
    (OrderStatus.CONFIRMED, OrderEvent.CANCEL): OrderStatus.CANCELLED,
}

# Upper bound of the INTEGER order_items.quantity column
MAX_LINE_QUANTITY = 2_147_483_647

# Target status requested by a caller -> event that reaches it
TARGET_EVENTS: Dict[OrderStatus, OrderEvent] = {
    OrderStatus.CONFIRMED: OrderEvent.CONFIRM,
    OrderStatus.FULFILLED: OrderEvent.FULFILL,
    OrderStatus.CANCELLED: OrderEvent.CANCEL,
}


class OrderItem(BaseEntity):
    """Order line item"""
    id: Optional[int] = Field(None, description="Line item ID")
    order_id: Optional[int] = Field(None, description="Owning order ID")
    menu_item_id: int = Field(..., description="Menu item ID")
    quantity: int = Field(..., ge=1, le=MAX_LINE_QUANTITY, description="Quantity")
    menu_item_name: Optional[str] = Field(None, description="Menu item name at read time")
    unit_price: Optional[Decimal] = Field(None, description="Current menu item price")

    @computed_field
    @property
    def line_total(self) -> Decimal:
        """quantity x current price"""
        if self.unit_price is None:
            return Decimal("0.00")
        return self.quantity * self.unit_price


class Order(BaseEntity, TimestampMixin):
    """Order aggregate"""
    id: Optional[int] = Field(None, description="Order ID")
    parent_id: int = Field(..., description="Parent ID")
    student_id: int = Field(..., description="Student ID")
    canteen_id: int = Field(..., description="Canteen ID")
    fulfilment_date: date = Field(..., description="Date the order is served")
    status: OrderStatus = Field(OrderStatus.PLACED, description="Order status")
    idempotency_key: Optional[str] = Field(None, max_length=IDEMPOTENCY_KEY_MAX_LENGTH,
                                           description="Client idempotency key")
    items: List[OrderItem] = Field(default_factory=list, description="Line items")

    @classmethod
    def place(cls, parent_id: int, student_id: int, canteen_id: int,
              fulfilment_date: date, items: List[OrderItem],
              idempotency_key: Optional[str] = None,
              now: Optional[datetime] = None) -> "Order":
        """New order in the Placed state"""
        now = now or utcnow()
        return cls(
            parent_id=parent_id,
            student_id=student_id,
            canteen_id=canteen_id,
            fulfilment_date=fulfilment_date,
            status=OrderStatus.PLACED,
            idempotency_key=idempotency_key,
            items=items,
            created_at=now,
            updated_at=now,
        )

    @computed_field
    @property
    def total_amount(self) -> Decimal:
        """Sum of line totals at current prices"""
        return sum((item.line_total for item in self.items), Decimal("0.00"))

    @property
    def is_terminal(self) -> bool:
        return self.status in (OrderStatus.FULFILLED, OrderStatus.CANCELLED)

    def can(self, event: OrderEvent) -> bool:
        return (self.status, event) in ORDER_TRANSITIONS

    def apply(self, event: OrderEvent, now: Optional[datetime] = None) -> OrderStatus:
        """
        Apply a lifecycle event

        Args:
            event: the event to apply
            now: timestamp stamped into updated_at

        Returns:
            OrderStatus: the new status

        Raises:
            OrderRejected: carrying InvalidTransition for an invalid pair
        """
        target = ORDER_TRANSITIONS.get((self.status, event))
        if target is None:
            raise OrderRejected(InvalidTransition(
                from_state=self.status.value, event=event.value))
        self.status = target
        self.updated_at = now or utcnow()
        return target

    def confirm(self, now: Optional[datetime] = None) -> OrderStatus:
        return self.apply(OrderEvent.CONFIRM, now)

    def fulfill(self, now: Optional[datetime] = None) -> OrderStatus:
        return self.apply(OrderEvent.FULFILL, now)

    def cancel(self, now: Optional[datetime] = None) -> OrderStatus:
        return self.apply(OrderEvent.CANCEL, now)

    def transition_to(self, target: OrderStatus, now: Optional[datetime] = None) -> OrderStatus:
        """Move to a caller-requested status through the matching event"""
        event = TARGET_EVENTS.get(target)
        if event is None:
            raise OrderRejected(InvalidTransition(
                from_state=self.status.value, event=f"transition to {target.value}"))
        return self.apply(event, now)
