"""
Order API integration tests
"""

from decimal import Decimal

import pytest

from ..config.settings import settings
from .conftest import AFTER_CUTOFF, FULFILMENT_DATE

PREFIX = settings.api_prefix


def order_body(world, quantity=2, **overrides):
    body = {
        "parent_id": world["parent_id"],
        "student_id": world["student_id"],
        "canteen_id": world["canteen_id"],
        "fulfilment_date": FULFILMENT_DATE.isoformat(),
        "order_items": [{"menu_item_id": world["sandwich_id"], "quantity": quantity}],
    }
    body.update(overrides)
    return body


class TestCreateOrderAPI:

    def test_create_order_success(self, client, world):
        response = client.post(f"{PREFIX}/orders", json=order_body(world))

        assert response.status_code == 201
        data = response.json()
        assert data["status"] == "Confirmed"
        assert data["parent_id"] == world["parent_id"]
        assert data["fulfilment_date"] == "2025-09-01"
        assert Decimal(data["total_amount"]) == Decimal("13.00")
        assert data["order_items"][0]["menu_item_name"] == "Chicken Sandwich"
        assert data["order_items"][0]["quantity"] == 2

    def test_idempotency_header_replays(self, client, seed, world):
        headers = {"Idempotency-Key": "req-123"}
        first = client.post(f"{PREFIX}/orders", json=order_body(world), headers=headers)
        second = client.post(f"{PREFIX}/orders", json=order_body(world), headers=headers)

        assert first.status_code == 201
        assert second.status_code == 200
        assert second.json()["id"] == first.json()["id"]
        assert second.json()["idempotency_key"] == "req-123"
        assert seed.balance(world["parent_id"]) == Decimal("37.00")

    def test_idempotency_key_in_body(self, client, seed, world):
        body = order_body(world, idempotency_key="body-key")
        first = client.post(f"{PREFIX}/orders", json=body)
        second = client.post(f"{PREFIX}/orders", json=body)

        assert second.status_code == 200
        assert second.json()["id"] == first.json()["id"]
        assert seed.count("orders") == 1

    def test_duplicate_reported_as_conflict(self, client, world, monkeypatch):
        monkeypatch.setattr(settings, "report_duplicates_as_conflict", True)
        headers = {"Idempotency-Key": "req-9"}
        first = client.post(f"{PREFIX}/orders", json=order_body(world), headers=headers)
        second = client.post(f"{PREFIX}/orders", json=order_body(world), headers=headers)

        assert second.status_code == 409
        error = second.json()
        assert error["error_code"] == "DUPLICATE_REQUEST"
        assert error["details"] == {"idempotency_key": "req-9",
                                    "existing_order_id": first.json()["id"]}

    def test_insufficient_balance(self, client, seed, world):
        parent_id = seed.parent(balance="10.00")
        student_id = seed.student(parent_id)

        response = client.post(f"{PREFIX}/orders",
                               json=order_body(world, parent_id=parent_id, student_id=student_id))

        assert response.status_code == 422
        error = response.json()
        assert error["success"] is False
        assert error["error_code"] == "INSUFFICIENT_BALANCE"
        assert error["message"] == "Insufficient wallet balance. Required: 13.00, Available: 10.00"
        assert error["details"] == {"required": "13.00", "available": "10.00"}

    def test_cut_off_exceeded(self, client, world, clock):
        clock.now = AFTER_CUTOFF

        response = client.post(f"{PREFIX}/orders", json=order_body(world))

        assert response.status_code == 422
        assert response.json()["error_code"] == "CUT_OFF_EXCEEDED"

    def test_allergen_conflict(self, client, seed, world):
        student_id = seed.student(world["parent_id"], allergens=["nuts"])
        body = order_body(world, student_id=student_id,
                          order_items=[{"menu_item_id": world["cookie_id"], "quantity": 1}])

        response = client.post(f"{PREFIX}/orders", json=body)

        assert response.status_code == 422
        assert response.json()["details"]["conflicting_tags"] == ["nuts"]

    def test_unknown_parent(self, client, world):
        response = client.post(f"{PREFIX}/orders", json=order_body(world, parent_id=999))

        assert response.status_code == 404
        assert response.json()["error_code"] == "NOT_FOUND"
        assert response.json()["details"] == {"entity_kind": "parent", "id": 999}

    def test_empty_items_rejected(self, client, world):
        response = client.post(f"{PREFIX}/orders", json=order_body(world, order_items=[]))

        assert response.status_code == 400
        assert response.json()["error_code"] == "INVALID_REQUEST"
        assert response.json()["details"]["field"] == "items"

    @pytest.mark.parametrize("quantity", [0, 2**40])
    def test_quantity_out_of_range(self, client, seed, world, quantity):
        body = order_body(world, order_items=[{"menu_item_id": world["juice_id"], "quantity": quantity}])

        response = client.post(f"{PREFIX}/orders", json=body)

        assert response.status_code == 400
        assert response.json()["error_code"] == "INVALID_REQUEST"
        assert response.json()["details"]["field"] == "quantity"
        assert seed.count("orders") == 0

    def test_overlong_body_key_matches_header(self, client, world):
        key = "k" * 101
        from_body = client.post(f"{PREFIX}/orders", json=order_body(world, idempotency_key=key))
        from_header = client.post(f"{PREFIX}/orders", json=order_body(world),
                                  headers={"Idempotency-Key": key})

        assert from_body.status_code == from_header.status_code == 400
        assert from_body.json() == from_header.json()

    def test_blank_header_counts_as_no_key(self, client, seed, world):
        headers = {"Idempotency-Key": " "}
        client.post(f"{PREFIX}/orders", json=order_body(world), headers=headers)
        client.post(f"{PREFIX}/orders", json=order_body(world), headers=headers)

        assert seed.count("orders") == 2

    def test_overlong_key_rejected(self, client, world):
        response = client.post(f"{PREFIX}/orders", json=order_body(world),
                               headers={"Idempotency-Key": "k" * 101})

        assert response.status_code == 400
        assert response.json()["error_code"] == "INVALID_REQUEST"


class TestReadOrdersAPI:

    def test_get_order(self, client, world):
        created = client.post(f"{PREFIX}/orders", json=order_body(world)).json()

        response = client.get(f"{PREFIX}/orders/{created['id']}")

        assert response.status_code == 200
        assert response.json() == created

    def test_get_missing_order(self, client):
        response = client.get(f"{PREFIX}/orders/999")

        assert response.status_code == 404
        assert response.json()["message"] == "Order with ID 999 not found"

    def test_list_parent_orders(self, client, world):
        created = client.post(f"{PREFIX}/orders", json=order_body(world)).json()

        response = client.get(f"{PREFIX}/parents/{world['parent_id']}/orders")

        assert response.status_code == 200
        data = response.json()
        assert data["parent_id"] == world["parent_id"]
        assert [o["id"] for o in data["orders"]] == [created["id"]]

    def test_list_unknown_parent(self, client):
        assert client.get(f"{PREFIX}/parents/999/orders").status_code == 404


class TestTransitionAPI:

    def test_fulfill_then_cancel(self, client, world):
        order_id = client.post(f"{PREFIX}/orders", json=order_body(world)).json()["id"]

        fulfilled = client.post(f"{PREFIX}/orders/{order_id}/transitions",
                                json={"status": "Fulfilled"})
        cancelled = client.post(f"{PREFIX}/orders/{order_id}/transitions",
                                json={"status": "Cancelled"})

        assert fulfilled.status_code == 200
        assert fulfilled.json()["status"] == "Fulfilled"
        assert cancelled.status_code == 409
        assert cancelled.json()["error_code"] == "INVALID_TRANSITION"
        assert cancelled.json()["details"] == {"from_state": "Fulfilled", "event": "cancel"}

    def test_unknown_status_rejected(self, client, world):
        order_id = client.post(f"{PREFIX}/orders", json=order_body(world)).json()["id"]

        response = client.post(f"{PREFIX}/orders/{order_id}/transitions",
                               json={"status": "Shipped"})

        assert response.status_code == 422
        assert response.json()["error_code"] == "VALIDATION_ERROR"


class TestHealthAPI:

    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    def test_root(self, client):
        assert client.get("/").json()["version"] == settings.api_version
