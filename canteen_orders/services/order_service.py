"""
Order service
Order placement and lifecycle operations over one transactional store

Main operations:
- place_order: idempotent, validated, all-or-nothing order placement
- get_order: read one order with its current total
- transition_order: confirm / fulfill / cancel an existing order
- list_orders_for_parent: a parent's orders, newest first

Placement steps, all inside one transaction:
1. idempotency check, returning the existing order on a hit
2. load parent, student, canteen and every menu item
3. validation pipeline (cut-off, stock, wallet, allergens)
4. insert the order as Placed, then confirm it
5. decrement stock and debit the wallet
6. audit log entry, commit

Business failures come back as values in OrderResult. Any failure rolls
the transaction back before it is returned.
"""

from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Callable, Dict, List, Optional, Sequence, Union

import structlog

from ..config.settings import Settings, settings as default_settings
from ..core.database import db_manager
from ..core.exceptions import OrderRejected, StoreConflictError, StoreError
from ..core.failures import (
    DuplicateRequest,
    EntityKind,
    InvalidRequest,
    NotFound,
    OrderFailure,
    StoreFailure,
)
from ..core.store import DuckDBStoreGateway, StoreGateway
from ..models.entities import MenuItem
from ..models.order import MAX_LINE_QUANTITY, Order, OrderItem, OrderStatus
from .idempotency import IdempotencyGuard, normalize_key
from .validation import PlacementContext, ValidationPipeline

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class OrderLine:
    """One (menu item, quantity) pair of a placement request"""
    menu_item_id: int
    quantity: int


@dataclass(frozen=True)
class PlaceOrderRequest:
    """Placement request as received from the caller"""
    parent_id: int
    student_id: int
    canteen_id: int
    fulfilment_date: date
    items: Sequence[OrderLine]
    idempotency_key: Optional[str] = None


@dataclass(frozen=True)
class OrderResult:
    """
    Outcome of an order operation

    Exactly one of order / failure is set. replayed marks a placement that
    returned an order already created under the same idempotency key.
    """
    order: Optional[Order] = None
    failure: Optional[OrderFailure] = None
    replayed: bool = False

    @property
    def ok(self) -> bool:
        return self.failure is None

    @property
    def duplicate(self) -> Optional[DuplicateRequest]:
        """The replay expressed as a DuplicateRequest, for callers that report it"""
        if not self.replayed or self.order is None:
            return None
        return DuplicateRequest(idempotency_key=self.order.idempotency_key,
                                existing_order_id=self.order.id)

    @classmethod
    def success(cls, order: Order) -> "OrderResult":
        return cls(order=order)

    @classmethod
    def replay(cls, order: Order) -> "OrderResult":
        return cls(order=order, replayed=True)

    @classmethod
    def rejected(cls, failure: OrderFailure) -> "OrderResult":
        return cls(failure=failure)


@dataclass(frozen=True)
class OrderListResult:
    orders: List[Order] = field(default_factory=list)
    failure: Optional[OrderFailure] = None

    @property
    def ok(self) -> bool:
        return self.failure is None


def utc_clock() -> datetime:
    return datetime.now(timezone.utc)


class OrderService:
    """Order placement orchestrator and lifecycle operations"""

    def __init__(self, store: StoreGateway, pipeline: ValidationPipeline,
                 guard: Optional[IdempotencyGuard] = None,
                 clock: Callable[[], datetime] = utc_clock,
                 settings: Settings = default_settings):
        self.store = store
        self.pipeline = pipeline
        self.guard = guard or IdempotencyGuard(
            store,
            max_length=settings.idempotency_key_max_length,
            requery_attempts=settings.idempotency_requery_attempts,
            requery_delay=settings.idempotency_requery_delay,
        )
        self.clock = clock

    def close(self):
        self.store.close()

    def __enter__(self) -> "OrderService":
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    # ------------------------------------------------------------------
    # Placement
    # ------------------------------------------------------------------
    def place_order(self, request: PlaceOrderRequest) -> OrderResult:
        """
        Place an order

        Args:
            request: parent, student, canteen, fulfilment date, line items
                and an optional idempotency key

        Returns:
            OrderResult: the confirmed order, the existing order for a
            repeated key (replayed=True), or a failure
        """
        key = normalize_key(request.idempotency_key)
        log = logger.bind(idempotency_key=key, parent_id=request.parent_id,
                          student_id=request.student_id, canteen_id=request.canteen_id)
        log.info("placing order", item_count=len(request.items))

        invalid = self._check_request(request)
        if invalid is not None:
            log.warning("order request invalid", field=invalid.field, reason=invalid.reason)
            return OrderResult.rejected(invalid)

        try:
            with self.store.transaction():
                check = self.guard.check_or_fetch(key)
                if check.hit:
                    result = OrderResult.replay(check.order)
                else:
                    result = OrderResult.success(self._place_in_transaction(request, key))
        except OrderRejected as e:
            log.warning("order rejected", failure=e.failure.kind, details=e.failure.details())
            return OrderResult.rejected(e.failure)
        except StoreConflictError as e:
            if key is not None:
                existing = self.guard.resolve_conflict(key)
                if existing is not None:
                    log.info("concurrent duplicate resolved", order_id=existing.id)
                    return OrderResult.replay(existing)
            log.warning("order store conflict", error=e.message)
            return OrderResult.rejected(StoreFailure(cause=e.message))
        except StoreError as e:
            log.error("order store failure", error=e.message, exc_info=True)
            return OrderResult.rejected(StoreFailure(cause=e.message))

        if result.replayed:
            log.info("duplicate request, returning existing order", order_id=result.order.id)
        else:
            log.info("order placed", order_id=result.order.id,
                     total_amount=str(result.order.total_amount))
        return result

    def _check_request(self, request: PlaceOrderRequest) -> Optional[InvalidRequest]:
        if not request.items:
            return InvalidRequest(field="items", reason="order must contain at least one item")
        for line in request.items:
            if line.quantity < 1:
                return InvalidRequest(field="quantity", reason="quantity must be at least 1")
            if line.quantity > MAX_LINE_QUANTITY:
                return InvalidRequest(field="quantity", reason=f"quantity must be at most {MAX_LINE_QUANTITY}")
        return self.guard.validate_key(request.idempotency_key)

    def _place_in_transaction(self, request: PlaceOrderRequest, key: Optional[str]) -> Order:
        now = self.clock()
        stamp = _naive_utc(now)

        parent = self._load(EntityKind.PARENT, request.parent_id)
        student = self._load(EntityKind.STUDENT, request.student_id)
        canteen = self._load(EntityKind.CANTEEN, request.canteen_id)

        menu_items: Dict[int, MenuItem] = {}
        for line in request.items:
            if line.menu_item_id not in menu_items:
                menu_items[line.menu_item_id] = self._load(EntityKind.MENU_ITEM, line.menu_item_id)

        items = [
            OrderItem(
                menu_item_id=line.menu_item_id,
                quantity=line.quantity,
                menu_item_name=menu_items[line.menu_item_id].name,
                unit_price=menu_items[line.menu_item_id].price,
            )
            for line in request.items
        ]

        ctx = PlacementContext(
            parent=parent,
            student=student,
            canteen=canteen,
            menu_items=menu_items,
            items=items,
            fulfilment_date=request.fulfilment_date,
            now=now,
        )
        failure = self.pipeline.run(ctx)
        if failure is not None:
            raise OrderRejected(failure)

        order = Order.place(
            parent_id=parent.id,
            student_id=student.id,
            canteen_id=canteen.id,
            fulfilment_date=request.fulfilment_date,
            items=items,
            idempotency_key=key,
            now=stamp,
        )
        order = self.store.insert_order(order)

        order.confirm(stamp)
        order = self.store.update_order(order)

        # Side effects use the prices loaded in this transaction
        for menu_item in menu_items.values():
            if menu_item.has_stock_limit:
                menu_item.take_stock(sum(i.quantity for i in items if i.menu_item_id == menu_item.id))
                self.store.update_menu_item(menu_item)

        balance_before = parent.wallet_balance
        parent.debit(ctx.total)
        self.store.update_parent(parent)

        self.store.insert_log("order_create", parent.id, {
            "order_id": order.id,
            "student_id": student.id,
            "canteen_id": canteen.id,
            "fulfilment_date": order.fulfilment_date.isoformat(),
            "items": [{"menu_item_id": i.menu_item_id, "quantity": i.quantity} for i in items],
            "total_amount": str(ctx.total),
            "balance_before": str(balance_before),
            "balance_after": str(parent.wallet_balance),
            "idempotency_key": key,
        })
        return order

    def _load(self, kind: EntityKind, entity_id: int):
        entity = self.store.get_by_id(kind, entity_id)
        if entity is None:
            raise OrderRejected(NotFound(entity_kind=kind, id=entity_id))
        return entity

    # ------------------------------------------------------------------
    # Queries and lifecycle
    # ------------------------------------------------------------------
    def get_order(self, order_id: int) -> OrderResult:
        """Order by id, with its total at current prices"""
        try:
            order = self.store.get_by_id(EntityKind.ORDER, order_id)
        except StoreError as e:
            logger.error("order lookup failed", order_id=order_id, error=e.message)
            return OrderResult.rejected(StoreFailure(cause=e.message))
        if order is None:
            return OrderResult.rejected(NotFound(entity_kind=EntityKind.ORDER, id=order_id))
        return OrderResult.success(order)

    def transition_order(self, order_id: int, target: Union[OrderStatus, str]) -> OrderResult:
        """
        Move an order to another lifecycle state

        Args:
            order_id: order to change
            target: Confirmed, Fulfilled or Cancelled

        Returns:
            OrderResult: the updated order, or NotFound / InvalidTransition /
            InvalidRequest / StoreFailure
        """
        log = logger.bind(order_id=order_id, target=str(getattr(target, "value", target)))
        try:
            target = OrderStatus(target)
        except ValueError:
            return OrderResult.rejected(InvalidRequest(
                field="status", reason=f"unknown order status {target!r}"))

        try:
            with self.store.transaction():
                order = self._load(EntityKind.ORDER, order_id)
                previous = order.status
                order.transition_to(target, _naive_utc(self.clock()))
                order = self.store.update_order(order)
                self.store.insert_log("order_transition", order.parent_id, {
                    "order_id": order.id,
                    "from": previous.value,
                    "to": order.status.value,
                })
        except OrderRejected as e:
            log.warning("order transition rejected", failure=e.failure.kind, details=e.failure.details())
            return OrderResult.rejected(e.failure)
        except StoreError as e:
            log.error("order transition store failure", error=e.message)
            return OrderResult.rejected(StoreFailure(cause=e.message))

        log.info("order transitioned", status=order.status.value)
        return OrderResult.success(order)

    def list_orders_for_parent(self, parent_id: int) -> OrderListResult:
        """A parent's orders, newest first"""
        try:
            if self.store.get_by_id(EntityKind.PARENT, parent_id) is None:
                return OrderListResult(failure=NotFound(entity_kind=EntityKind.PARENT, id=parent_id))
            return OrderListResult(orders=self.store.list_orders_by_parent(parent_id))
        except StoreError as e:
            logger.error("order listing failed", parent_id=parent_id, error=e.message)
            return OrderListResult(failure=StoreFailure(cause=e.message))


def _naive_utc(moment: datetime) -> datetime:
    if moment.tzinfo is None:
        return moment
    return moment.astimezone(timezone.utc).replace(tzinfo=None)


def build_order_service(manager=None, settings: Settings = default_settings,
                        clock: Callable[[], datetime] = utc_clock) -> OrderService:
    """
    Wire an OrderService on its own store cursor

    One service per request; close it (or use it as a context manager)
    when the request is done.
    """
    store = DuckDBStoreGateway.from_manager(manager or db_manager)
    return OrderService(
        store=store,
        pipeline=ValidationPipeline(settings.canteen_timezone),
        clock=clock,
        settings=settings,
    )
