"""
Order validation pipeline
Business rules checked before an order is placed

Rules run in a fixed order and the first failure wins:
1. cut-off time for the fulfilment date
2. daily stock of every ordered menu item
3. parent wallet covers the order total
4. no allergen shared between the student and an ordered item

Every rule is a plain function over already-loaded entities. Nothing here
touches the store; the pipeline only reads what it is handed.
"""

from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import date, datetime, timezone, tzinfo
from decimal import Decimal
from typing import Callable, Iterable, List, Mapping, Optional
from zoneinfo import ZoneInfo

from ..core.failures import (
    AllergenConflict,
    CutOffExceeded,
    InsufficientBalance,
    InsufficientStock,
    OrderFailure,
)
from ..models.entities import Canteen, MenuItem, Parent, Student
from ..models.order import OrderItem


@dataclass
class PlacementContext:
    """Entities loaded for one placement attempt"""
    parent: Parent
    student: Student
    canteen: Canteen
    menu_items: Mapping[int, MenuItem]
    items: List[OrderItem]
    fulfilment_date: date
    now: datetime
    total: Decimal = field(init=False)

    def __post_init__(self):
        self.total = order_total(self.items, self.menu_items)

    def ordered_menu_items(self) -> List[MenuItem]:
        """Distinct menu items in request order"""
        seen = OrderedDict()
        for item in self.items:
            seen.setdefault(item.menu_item_id, self.menu_items[item.menu_item_id])
        return list(seen.values())


def order_total(items: Iterable[OrderItem], menu_items: Mapping[int, MenuItem]) -> Decimal:
    """Sum of quantity x current price"""
    return sum(
        (item.quantity * menu_items[item.menu_item_id].price for item in items),
        Decimal("0.00"),
    )


def load_timezone(name: str) -> tzinfo:
    if name.upper() == "UTC":
        return timezone.utc
    return ZoneInfo(name)


def to_local(now: datetime, tz: tzinfo) -> datetime:
    """Naive wall-clock time in the canteen's timezone"""
    if now.tzinfo is None:
        return now
    return now.astimezone(tz).replace(tzinfo=None)


def check_cut_off(canteen: Canteen, fulfilment_date: date, now: datetime,
                  tz: Optional[tzinfo] = None) -> Optional[CutOffExceeded]:
    """
    Cut-off rule

    Skipped when the canteen has no cut-off or it cannot be parsed.
    Otherwise the order must be placed no later than the cut-off time on
    the fulfilment date.
    """
    cutoff_time = canteen.parsed_cutoff_time
    if cutoff_time is None:
        return None

    cutoff_instant = datetime.combine(fulfilment_date, cutoff_time)
    requested_instant = to_local(now, tz or timezone.utc)
    if requested_instant > cutoff_instant:
        return CutOffExceeded(cutoff_instant=cutoff_instant, requested_instant=requested_instant)
    return None


def check_stock(items: Iterable[OrderItem],
                stock_lookup: Callable[[int], Optional[MenuItem]]) -> Optional[InsufficientStock]:
    """
    Stock rule

    Quantities of repeated lines for the same menu item are added up before
    comparing with the daily counter. Items without a counter are unlimited.
    """
    requested = OrderedDict()
    for item in items:
        requested[item.menu_item_id] = requested.get(item.menu_item_id, 0) + item.quantity

    for menu_item_id, quantity in requested.items():
        menu_item = stock_lookup(menu_item_id)
        if menu_item is None or menu_item.daily_stock_count is None:
            continue
        if quantity > menu_item.daily_stock_count:
            return InsufficientStock(
                menu_item_id=menu_item.id,
                name=menu_item.name,
                requested=quantity,
                available=menu_item.daily_stock_count,
            )
    return None


def check_wallet(parent: Parent, total: Decimal) -> Optional[InsufficientBalance]:
    """Wallet rule"""
    if parent.wallet_balance < total:
        return InsufficientBalance(required=total, available=parent.wallet_balance)
    return None


def check_allergens(student: Student, menu_items: Iterable[MenuItem]) -> Optional[AllergenConflict]:
    """
    Allergen rule

    Tags are already trimmed and case-folded on load. The first menu item
    sharing a tag with the student fails the order.
    """
    if not student.has_allergens:
        return None

    for menu_item in menu_items:
        conflicting = student.allergens & menu_item.allergen_tags
        if conflicting:
            return AllergenConflict(
                student_name=student.name,
                menu_item_name=menu_item.name,
                conflicting_tags=sorted(conflicting),
            )
    return None


class ValidationPipeline:
    """Runs the placement rules in their fixed order"""

    def __init__(self, tz_name: str = "UTC"):
        self.tz = load_timezone(tz_name)

    def run(self, ctx: PlacementContext) -> Optional[OrderFailure]:
        """
        Validate a placement

        Returns:
            the first failure, or None when every rule passes
        """
        return (
            check_cut_off(ctx.canteen, ctx.fulfilment_date, ctx.now, self.tz)
            or check_stock(ctx.items, ctx.menu_items.get)
            or check_wallet(ctx.parent, ctx.total)
            or check_allergens(ctx.student, ctx.ordered_menu_items())
        )
