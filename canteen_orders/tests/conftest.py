"""
Test configuration
Fixtures for an in-memory database, seed data, a fixed clock and the API client
"""

import itertools
import os

os.environ.setdefault("CANTEEN_DATABASE_URL", "duckdb://:memory:")
os.environ.setdefault("CANTEEN_LOG_LEVEL", "WARNING")

from datetime import date, datetime, timezone
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient

from ..api.v1.orders import get_order_service
from ..app import create_app
from ..config.environments.test import TestSettings
from ..core.database import DatabaseManager
from ..models.base import serialize_tags
from ..services.order_service import build_order_service

FULFILMENT_DATE = date(2025, 9, 1)
BEFORE_CUTOFF = datetime(2025, 9, 1, 8, 0, tzinfo=timezone.utc)
AFTER_CUTOFF = datetime(2025, 9, 1, 10, 0, tzinfo=timezone.utc)


class FixedClock:
    """Settable clock returning aware UTC datetimes"""

    def __init__(self, now: datetime = BEFORE_CUTOFF):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


class Seeder:
    """Inserts reference data straight into the database"""

    _emails = itertools.count(1)

    def __init__(self, manager: DatabaseManager):
        self.manager = manager

    def _insert(self, sql: str, params: list) -> int:
        return self.manager.connection.execute(sql, params).fetchone()[0]

    def parent(self, name="Alice Parent", balance="50.00") -> int:
        return self._insert(
            "INSERT INTO parents(name, email, wallet_balance) VALUES (?,?,?) RETURNING id",
            [name, f"parent{next(self._emails)}@example.com", Decimal(balance)],
        )

    def student(self, parent_id: int, name="Sam Student", allergens=()) -> int:
        return self._insert(
            "INSERT INTO students(parent_id, name, allergens) VALUES (?,?,?) RETURNING id",
            [parent_id, name, serialize_tags(allergens)],
        )

    def canteen(self, name="North Canteen", cutoff="09:30") -> int:
        return self._insert(
            "INSERT INTO canteens(name, opening_days, order_cutoff_time) VALUES (?,?,?) RETURNING id",
            [name, "Mon,Tue,Wed,Thu,Fri", cutoff],
        )

    def menu_item(self, canteen_id: int, name: str, price: str, stock=None, allergens=()) -> int:
        return self._insert(
            "INSERT INTO menu_items(canteen_id, name, price, daily_stock_count, allergen_tags) "
            "VALUES (?,?,?,?,?) RETURNING id",
            [canteen_id, name, Decimal(price), stock, serialize_tags(allergens)],
        )

    # Readbacks
    def balance(self, parent_id: int) -> Decimal:
        return self.manager.execute_one(
            "SELECT wallet_balance FROM parents WHERE id=?", [parent_id])[0]

    def stock(self, menu_item_id: int):
        return self.manager.execute_one(
            "SELECT daily_stock_count FROM menu_items WHERE id=?", [menu_item_id])[0]

    def count(self, table: str) -> int:
        return self.manager.execute_one(f"SELECT COUNT(*) FROM {table}")[0]

    def log_actions(self):
        return [row[0] for row in self.manager.execute_query(
            "SELECT action FROM logs ORDER BY log_id")]


@pytest.fixture
def test_settings():
    return TestSettings()


@pytest.fixture
def db():
    """Fresh in-memory database"""
    manager = DatabaseManager(":memory:")
    manager.init_database()
    yield manager
    manager.close()


@pytest.fixture
def seed(db):
    return Seeder(db)


@pytest.fixture
def world(seed):
    """
    One parent with 50.00, one student without allergens and a canteen
    with a 09:30 cut-off selling a sandwich, juice and a cookie
    """
    parent_id = seed.parent()
    canteen_id = seed.canteen()
    return {
        "parent_id": parent_id,
        "student_id": seed.student(parent_id),
        "canteen_id": canteen_id,
        "sandwich_id": seed.menu_item(canteen_id, "Chicken Sandwich", "6.50", stock=10),
        "juice_id": seed.menu_item(canteen_id, "Apple Juice", "2.00"),
        "cookie_id": seed.menu_item(canteen_id, "Peanut Cookie", "1.50", stock=5,
                                    allergens=["Nuts", "gluten"]),
    }


@pytest.fixture
def clock():
    return FixedClock()


@pytest.fixture
def make_service(db, test_settings, clock):
    """Factory for services on their own cursor, closed at teardown"""
    services = []

    def factory():
        service = build_order_service(manager=db, settings=test_settings, clock=clock)
        services.append(service)
        return service

    yield factory
    for service in services:
        service.close()


@pytest.fixture
def service(make_service):
    return make_service()


@pytest.fixture
def client(db, test_settings, clock):
    app = create_app()

    def override_order_service():
        service = build_order_service(manager=db, settings=test_settings, clock=clock)
        try:
            yield service
        finally:
            service.close()

    app.dependency_overrides[get_order_service] = override_order_service
    return TestClient(app)
