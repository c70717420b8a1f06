"""
Transactional store gateway
Atomic multi-entity reads and writes for order placement

StoreGateway is the interface the order services depend on.
DuckDBStoreGateway implements it over one DuckDB cursor, so each gateway
instance runs its own transaction isolated by DuckDB's MVCC.

Concurrency guards:
- orders.idempotency_key carries a unique constraint
- parents and menu_items are updated with an optimistic version check
- write-write conflicts, constraint violations and stale versions all
  surface as StoreConflictError
"""

import json
from contextlib import contextmanager
from typing import Any, Callable, Dict, Iterator, List, Optional

import duckdb
import structlog

from .exceptions import StoreConflictError, StoreError, TransactionStateError
from .failures import EntityKind
from ..models.entities import Canteen, MenuItem, Parent, Student
from ..models.order import Order, OrderItem

logger = structlog.get_logger(__name__)


class StoreGateway:
    """Interface of the transactional store"""

    def begin_transaction(self) -> None:
        raise NotImplementedError

    def commit(self) -> None:
        raise NotImplementedError

    def rollback(self) -> None:
        raise NotImplementedError

    @property
    def in_transaction(self) -> bool:
        raise NotImplementedError

    def get_by_id(self, kind: EntityKind, entity_id: int):
        raise NotImplementedError

    def find_order_by_idempotency_key(self, key: str) -> Optional[Order]:
        raise NotImplementedError

    def list_orders_by_parent(self, parent_id: int) -> List[Order]:
        raise NotImplementedError

    def insert_order(self, order: Order) -> Order:
        raise NotImplementedError

    def update_order(self, order: Order) -> Order:
        raise NotImplementedError

    def update_menu_item(self, item: MenuItem) -> MenuItem:
        raise NotImplementedError

    def update_parent(self, parent: Parent) -> Parent:
        raise NotImplementedError

    def insert_log(self, action: str, actor_id: Optional[int], detail: Dict[str, Any]) -> None:
        raise NotImplementedError

    def close(self) -> None:
        pass

    @contextmanager
    def transaction(self) -> Iterator["StoreGateway"]:
        """
        Transaction context manager

        Commits when the block exits normally and rolls back on any
        exception, including KeyboardInterrupt and task cancellation.
        """
        self.begin_transaction()
        try:
            yield self
        except BaseException:
            if self.in_transaction:
                self.rollback()
            raise
        self.commit()


class DuckDBStoreGateway(StoreGateway):
    """Store gateway over a single DuckDB cursor"""

    def __init__(self, conn: duckdb.DuckDBPyConnection, owns_connection: bool = True):
        self._conn = conn
        self._owns_connection = owns_connection
        self._in_transaction = False

    @classmethod
    def from_manager(cls, manager) -> "DuckDBStoreGateway":
        """Gateway on a fresh cursor of the given DatabaseManager"""
        return cls(manager.cursor())

    # ------------------------------------------------------------------
    # Transaction boundary
    # ------------------------------------------------------------------
    @property
    def in_transaction(self) -> bool:
        return self._in_transaction

    def begin_transaction(self) -> None:
        if self._in_transaction:
            raise TransactionStateError("Transaction already started")
        self._execute("BEGIN TRANSACTION")
        self._in_transaction = True

    def commit(self) -> None:
        if not self._in_transaction:
            raise TransactionStateError("No transaction to commit")
        try:
            self._execute("COMMIT")
        except StoreError:
            self._abort_after_failed_commit()
            raise
        finally:
            self._in_transaction = False

    def rollback(self) -> None:
        if not self._in_transaction:
            raise TransactionStateError("No transaction to rollback")
        try:
            self._execute("ROLLBACK")
        finally:
            self._in_transaction = False

    def _abort_after_failed_commit(self) -> None:
        # DuckDB may already have discarded the transaction
        try:
            self._conn.execute("ROLLBACK")
        except duckdb.Error as e:
            logger.debug("rollback after failed commit", error=str(e))

    def close(self) -> None:
        if self._in_transaction:
            self.rollback()
        if self._owns_connection:
            self._conn.close()

    # ------------------------------------------------------------------
    # Low level helpers
    # ------------------------------------------------------------------
    def _execute(self, sql: str, params: Optional[list] = None) -> duckdb.DuckDBPyConnection:
        try:
            if params is None:
                return self._conn.execute(sql)
            return self._conn.execute(sql, params)
        except (duckdb.TransactionException, duckdb.ConstraintException) as e:
            raise StoreConflictError(str(e), cause=e) from e
        except duckdb.Error as e:
            raise StoreError(str(e), cause=e) from e

    def _fetch_dicts(self, sql: str, params: Optional[list] = None) -> List[Dict[str, Any]]:
        cur = self._execute(sql, params)
        columns = [d[0] for d in cur.description]
        return [dict(zip(columns, row)) for row in cur.fetchall()]

    def _fetch_dict(self, sql: str, params: Optional[list] = None) -> Optional[Dict[str, Any]]:
        rows = self._fetch_dicts(sql, params)
        return rows[0] if rows else None

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------
    def get_by_id(self, kind: EntityKind, entity_id: int):
        """
        Load one entity by id

        Args:
            kind: which entity table to read
            entity_id: primary key

        Returns:
            the entity model, or None when the row does not exist
        """
        loader: Callable[[int], Any] = {
            EntityKind.PARENT: self._get_parent,
            EntityKind.STUDENT: self._get_student,
            EntityKind.CANTEEN: self._get_canteen,
            EntityKind.MENU_ITEM: self._get_menu_item,
            EntityKind.ORDER: self._get_order,
        }[EntityKind(kind)]
        return loader(entity_id)

    def _get_parent(self, parent_id: int) -> Optional[Parent]:
        row = self._fetch_dict(
            "SELECT id, name, email, wallet_balance, version FROM parents WHERE id=?",
            [parent_id],
        )
        return Parent(**row) if row else None

    def _get_student(self, student_id: int) -> Optional[Student]:
        row = self._fetch_dict(
            "SELECT id, parent_id, name, allergens FROM students WHERE id=?",
            [student_id],
        )
        return Student(**row) if row else None

    def _get_canteen(self, canteen_id: int) -> Optional[Canteen]:
        row = self._fetch_dict(
            "SELECT id, name, opening_days, order_cutoff_time FROM canteens WHERE id=?",
            [canteen_id],
        )
        return Canteen(**row) if row else None

    def _get_menu_item(self, menu_item_id: int) -> Optional[MenuItem]:
        row = self._fetch_dict(
            "SELECT id, canteen_id, name, description, price, daily_stock_count, "
            "allergen_tags, version FROM menu_items WHERE id=?",
            [menu_item_id],
        )
        return MenuItem(**row) if row else None

    def _get_order(self, order_id: int) -> Optional[Order]:
        orders = self._load_orders("WHERE o.id=?", [order_id])
        return orders[0] if orders else None

    def find_order_by_idempotency_key(self, key: str) -> Optional[Order]:
        orders = self._load_orders("WHERE o.idempotency_key=?", [key])
        return orders[0] if orders else None

    def list_orders_by_parent(self, parent_id: int) -> List[Order]:
        return self._load_orders(
            "WHERE o.parent_id=? ORDER BY o.created_at DESC, o.id DESC", [parent_id])

    def _load_orders(self, where: str, params: list) -> List[Order]:
        rows = self._fetch_dicts(
            "SELECT o.id, o.parent_id, o.student_id, o.canteen_id, o.fulfilment_date, "
            "o.status, o.idempotency_key, o.created_at, o.updated_at "
            f"FROM orders o {where}",
            params,
        )
        if not rows:
            return []
        items_by_order = self._load_items([row["id"] for row in rows])
        return [Order(**row, items=items_by_order.get(row["id"], [])) for row in rows]

    def _load_items(self, order_ids: List[int]) -> Dict[int, List[OrderItem]]:
        """Line items joined with the current menu name and price"""
        placeholders = ",".join("?" for _ in order_ids)
        rows = self._fetch_dicts(
            "SELECT oi.id, oi.order_id, oi.menu_item_id, oi.quantity, "
            "mi.name AS menu_item_name, mi.price AS unit_price "
            "FROM order_items oi LEFT JOIN menu_items mi ON mi.id = oi.menu_item_id "
            f"WHERE oi.order_id IN ({placeholders}) ORDER BY oi.id",
            list(order_ids),
        )
        grouped: Dict[int, List[OrderItem]] = {}
        for row in rows:
            grouped.setdefault(row["order_id"], []).append(OrderItem(**row))
        return grouped

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------
    def insert_order(self, order: Order) -> Order:
        """Insert an order and its items; returns the order with ids assigned"""
        row = self._execute(
            "INSERT INTO orders(parent_id, student_id, canteen_id, fulfilment_date, status, "
            "idempotency_key, created_at, updated_at) VALUES (?,?,?,?,?,?,?,?) RETURNING id",
            [order.parent_id, order.student_id, order.canteen_id, order.fulfilment_date,
             order.status.value, order.idempotency_key, order.created_at, order.updated_at],
        ).fetchone()
        order_id = row[0]

        items = []
        for item in order.items:
            item_row = self._execute(
                "INSERT INTO order_items(order_id, menu_item_id, quantity) VALUES (?,?,?) RETURNING id",
                [order_id, item.menu_item_id, item.quantity],
            ).fetchone()
            items.append(item.model_copy(update={"id": item_row[0], "order_id": order_id}))

        return order.model_copy(update={"id": order_id, "items": items})

    def update_order(self, order: Order) -> Order:
        row = self._execute(
            "UPDATE orders SET status=?, updated_at=? WHERE id=? RETURNING id",
            [order.status.value, order.updated_at, order.id],
        ).fetchone()
        if row is None:
            raise StoreError(f"Order {order.id} does not exist")
        return order

    def update_menu_item(self, item: MenuItem) -> MenuItem:
        """Persist the stock counter if nobody changed the row since it was read"""
        row = self._execute(
            "UPDATE menu_items SET daily_stock_count=?, version=version+1 "
            "WHERE id=? AND version=? RETURNING version",
            [item.daily_stock_count, item.id, item.version],
        ).fetchone()
        if row is None:
            raise StoreConflictError(f"Menu item {item.id} was modified concurrently")
        return item.model_copy(update={"version": row[0]})

    def update_parent(self, parent: Parent) -> Parent:
        """Persist the wallet balance if nobody changed the row since it was read"""
        row = self._execute(
            "UPDATE parents SET wallet_balance=?, version=version+1 "
            "WHERE id=? AND version=? RETURNING version",
            [parent.wallet_balance, parent.id, parent.version],
        ).fetchone()
        if row is None:
            raise StoreConflictError(f"Parent {parent.id} was modified concurrently")
        return parent.model_copy(update={"version": row[0]})

    def insert_log(self, action: str, actor_id: Optional[int], detail: Dict[str, Any]) -> None:
        """Audit entry, written inside the caller's transaction"""
        self._execute(
            "INSERT INTO logs(actor_id, action, detail_json) VALUES (?,?,?)",
            [actor_id, action, json.dumps(detail, default=str)],
        )
