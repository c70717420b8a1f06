"""
Validation rule tests
Pure rule functions and the pipeline ordering, no database involved
"""

from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

from ..core.failures import AllergenConflict, CutOffExceeded, InsufficientBalance, InsufficientStock
from ..models.entities import Canteen, MenuItem, Parent, Student
from ..models.order import OrderItem
from ..services.validation import (
    PlacementContext,
    ValidationPipeline,
    check_allergens,
    check_cut_off,
    check_stock,
    check_wallet,
    order_total,
)

DAY = date(2025, 9, 1)


def utc(hour, minute=0, day=DAY):
    return datetime(day.year, day.month, day.day, hour, minute, tzinfo=timezone.utc)


def make_item(id=1, price="6.50", stock=None, tags=None, name="Chicken Sandwich"):
    return MenuItem(id=id, canteen_id=1, name=name, price=Decimal(price),
                    daily_stock_count=stock, allergen_tags=tags)


def line(menu_item_id, quantity, price="6.50"):
    return OrderItem(menu_item_id=menu_item_id, quantity=quantity, unit_price=Decimal(price))


def make_context(balance="50.00", cutoff="09:30", stock=10, student_allergens=None,
                 item_tags=None, quantity=2, now=None):
    item = make_item(stock=stock, tags=item_tags)
    return PlacementContext(
        parent=Parent(id=1, name="Alice", email="a@example.com", wallet_balance=Decimal(balance)),
        student=Student(id=1, parent_id=1, name="Sam", allergens=student_allergens),
        canteen=Canteen(id=1, name="North", order_cutoff_time=cutoff),
        menu_items={item.id: item},
        items=[line(item.id, quantity)],
        fulfilment_date=DAY,
        now=now or utc(8),
    )


class TestCutOff:

    def test_no_cutoff_is_skipped(self):
        canteen = Canteen(id=1, name="North", order_cutoff_time=None)
        assert check_cut_off(canteen, DAY, utc(23)) is None

    def test_unparseable_cutoff_is_skipped(self):
        canteen = Canteen(id=1, name="North", order_cutoff_time="half past nine")
        assert check_cut_off(canteen, DAY, utc(23)) is None

    def test_order_after_cutoff_on_fulfilment_day_fails(self):
        """Cut-off 09:30, order at 10:00 the same day"""
        canteen = Canteen(id=1, name="North", order_cutoff_time="09:30")
        failure = check_cut_off(canteen, DAY, utc(10))

        assert isinstance(failure, CutOffExceeded)
        assert failure.cutoff_instant == datetime(2025, 9, 1, 9, 30)
        assert failure.requested_instant == datetime(2025, 9, 1, 10, 0)

    def test_order_exactly_at_cutoff_passes(self):
        canteen = Canteen(id=1, name="North", order_cutoff_time="09:30")
        assert check_cut_off(canteen, DAY, utc(9, 30)) is None

    def test_late_evening_order_for_next_day_passes(self):
        canteen = Canteen(id=1, name="North", order_cutoff_time="09:30")
        assert check_cut_off(canteen, DAY + timedelta(days=1), utc(22)) is None

    def test_seconds_format_is_accepted(self):
        canteen = Canteen(id=1, name="North", order_cutoff_time="09:30:00")
        assert isinstance(check_cut_off(canteen, DAY, utc(9, 31)), CutOffExceeded)

    def test_compared_in_canteen_timezone(self):
        """08:00 UTC is 10:00 at UTC+2, past a 09:30 cut-off"""
        canteen = Canteen(id=1, name="North", order_cutoff_time="09:30")
        failure = check_cut_off(canteen, DAY, utc(8), tz=timezone(timedelta(hours=2)))

        assert isinstance(failure, CutOffExceeded)
        assert failure.requested_instant == datetime(2025, 9, 1, 10, 0)


class TestStock:

    def test_unlimited_item_passes(self):
        item = make_item(stock=None)
        assert check_stock([line(1, 500)], {1: item}.get) is None

    def test_exact_stock_passes(self):
        item = make_item(stock=3)
        assert check_stock([line(1, 3)], {1: item}.get) is None

    def test_insufficient_stock(self):
        item = make_item(stock=3)
        failure = check_stock([line(1, 4)], {1: item}.get)

        assert isinstance(failure, InsufficientStock)
        assert failure.menu_item_id == 1
        assert failure.name == "Chicken Sandwich"
        assert failure.requested == 4
        assert failure.available == 3

    def test_repeated_lines_are_summed(self):
        item = make_item(stock=5)
        failure = check_stock([line(1, 3), line(1, 3)], {1: item}.get)

        assert isinstance(failure, InsufficientStock)
        assert failure.requested == 6

    def test_zero_stock(self):
        item = make_item(stock=0)
        assert check_stock([line(1, 1)], {1: item}.get).available == 0


class TestWallet:

    def test_insufficient_balance(self):
        """10.00 in the wallet, two items at 6.50"""
        parent = Parent(id=1, name="Alice", email="a@example.com", wallet_balance=Decimal("10.00"))
        failure = check_wallet(parent, order_total([line(1, 2)], {1: make_item()}))

        assert isinstance(failure, InsufficientBalance)
        assert failure.required == Decimal("13.00")
        assert failure.available == Decimal("10.00")
        assert "Required: 13.00, Available: 10.00" in failure.message

    def test_exact_balance_passes(self):
        parent = Parent(id=1, name="Alice", email="a@example.com", wallet_balance=Decimal("13.00"))
        assert check_wallet(parent, Decimal("13.00")) is None


class TestAllergens:

    def test_student_without_allergens_passes(self):
        student = Student(id=1, parent_id=1, name="Sam")
        assert check_allergens(student, [make_item(tags="nuts")]) is None

    def test_conflict_reports_shared_tags(self):
        student = Student(id=1, parent_id=1, name="Sam", allergens="nuts")
        failure = check_allergens(student, [make_item(name="Peanut Cookie", tags="nuts,gluten")])

        assert isinstance(failure, AllergenConflict)
        assert failure.student_name == "Sam"
        assert failure.menu_item_name == "Peanut Cookie"
        assert failure.conflicting_tags == ["nuts"]

    def test_tags_are_trimmed_and_case_folded(self):
        student = Student(id=1, parent_id=1, name="Sam", allergens=" Dairy , NUTS ")
        failure = check_allergens(student, [make_item(tags=["nuts", "dairy", "soy"])])
        assert failure.conflicting_tags == ["dairy", "nuts"]

    def test_disjoint_tags_pass(self):
        student = Student(id=1, parent_id=1, name="Sam", allergens="shellfish")
        assert check_allergens(student, [make_item(tags="nuts")]) is None


class TestValidationPipeline:

    def test_all_rules_pass(self):
        assert ValidationPipeline().run(make_context()) is None

    def test_context_total(self):
        assert make_context(quantity=3).total == Decimal("19.50")

    def test_cutoff_checked_before_stock(self):
        ctx = make_context(stock=1, quantity=2, now=utc(10))
        assert isinstance(ValidationPipeline().run(ctx), CutOffExceeded)

    def test_stock_checked_before_wallet(self):
        ctx = make_context(stock=1, quantity=2, balance="1.00")
        assert isinstance(ValidationPipeline().run(ctx), InsufficientStock)

    def test_wallet_checked_before_allergens(self):
        ctx = make_context(balance="1.00", student_allergens="nuts", item_tags="nuts")
        assert isinstance(ValidationPipeline().run(ctx), InsufficientBalance)

    def test_allergen_conflict_last(self):
        ctx = make_context(student_allergens="nuts", item_tags="nuts")
        assert isinstance(ValidationPipeline().run(ctx), AllergenConflict)

    def test_pipeline_timezone(self):
        ctx = make_context(now=utc(8))
        assert ValidationPipeline("UTC").run(ctx) is None
