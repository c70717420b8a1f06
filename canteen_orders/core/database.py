"""
Database connection and schema management
Owns the DuckDB database file (or in-memory database), the table
definitions and the per-request cursors handed to the store gateway.

Tables:
- parents: wallet holders
- students: children of a parent, with allergen tags
- canteens: canteens and their order cut-off time
- menu_items: prices, optional daily stock and allergen tags
- orders / order_items: placed orders and their line items
- logs: audit entries written alongside order changes
"""

import threading
from pathlib import Path
from typing import Optional

import duckdb

from .exceptions import DatabaseError
from ..config.settings import settings

# Full schema. Sequences give auto-increment keys that are safe under
# concurrent inserts from separate cursors.
SCHEMA_SQL = r"""
CREATE SEQUENCE IF NOT EXISTS parents_id_seq;
CREATE TABLE IF NOT EXISTS parents (
  id INTEGER DEFAULT nextval('parents_id_seq') PRIMARY KEY,
  email TEXT UNIQUE NOT NULL,
  name TEXT NOT NULL,
  wallet_balance DECIMAL(18,2) NOT NULL DEFAULT 0 CHECK (wallet_balance >= 0),
  version INTEGER NOT NULL DEFAULT 1
);

CREATE SEQUENCE IF NOT EXISTS students_id_seq;
CREATE TABLE IF NOT EXISTS students (
  id INTEGER DEFAULT nextval('students_id_seq') PRIMARY KEY,
  parent_id INTEGER NOT NULL,
  name TEXT NOT NULL,
  allergens TEXT
);

CREATE SEQUENCE IF NOT EXISTS canteens_id_seq;
CREATE TABLE IF NOT EXISTS canteens (
  id INTEGER DEFAULT nextval('canteens_id_seq') PRIMARY KEY,
  name TEXT NOT NULL,
  opening_days TEXT,
  order_cutoff_time TEXT
);

CREATE SEQUENCE IF NOT EXISTS menu_items_id_seq;
CREATE TABLE IF NOT EXISTS menu_items (
  id INTEGER DEFAULT nextval('menu_items_id_seq') PRIMARY KEY,
  canteen_id INTEGER NOT NULL,
  name TEXT NOT NULL,
  description TEXT,
  price DECIMAL(18,2) NOT NULL CHECK (price >= 0),
  daily_stock_count INTEGER CHECK (daily_stock_count IS NULL OR daily_stock_count >= 0),
  allergen_tags TEXT,
  version INTEGER NOT NULL DEFAULT 1
);

CREATE SEQUENCE IF NOT EXISTS orders_id_seq;
CREATE TABLE IF NOT EXISTS orders (
  id INTEGER DEFAULT nextval('orders_id_seq') PRIMARY KEY,
  parent_id INTEGER NOT NULL,
  student_id INTEGER NOT NULL,
  canteen_id INTEGER NOT NULL,
  fulfilment_date DATE NOT NULL,
  status TEXT CHECK(status IN ('Placed','Confirmed','Fulfilled','Cancelled')) NOT NULL,
  idempotency_key VARCHAR(100) UNIQUE,
  created_at TIMESTAMP NOT NULL,
  updated_at TIMESTAMP
);

CREATE SEQUENCE IF NOT EXISTS order_items_id_seq;
CREATE TABLE IF NOT EXISTS order_items (
  id INTEGER DEFAULT nextval('order_items_id_seq') PRIMARY KEY,
  order_id INTEGER NOT NULL,
  menu_item_id INTEGER NOT NULL,
  quantity INTEGER NOT NULL CHECK (quantity >= 1)
);

CREATE INDEX IF NOT EXISTS idx_orders_parent ON orders(parent_id);
CREATE INDEX IF NOT EXISTS idx_order_items_order ON order_items(order_id);

CREATE SEQUENCE IF NOT EXISTS logs_id_seq;
CREATE TABLE IF NOT EXISTS logs (
  log_id INTEGER DEFAULT nextval('logs_id_seq') PRIMARY KEY,
  actor_id INTEGER,
  action TEXT NOT NULL,
  detail_json TEXT,
  created_at TIMESTAMP DEFAULT now()
);
"""


class DatabaseManager:
    """Database manager wrapping the shared DuckDB connection"""

    def __init__(self, db_path: Optional[str] = None):
        self._connection: Optional[duckdb.DuckDBPyConnection] = None
        self._init_lock = threading.Lock()
        self.db_path = db_path or self._get_db_path_from_settings()

    def _get_db_path_from_settings(self) -> str:
        """Database path from settings"""
        db_url = settings.database_url
        if db_url.startswith("duckdb://"):
            return db_url.replace("duckdb://", "", 1)
        return db_url

    @property
    def connection(self) -> duckdb.DuckDBPyConnection:
        """Shared root connection, created and migrated on first use"""
        if self._connection is None:
            with self._init_lock:
                if self._connection is None:
                    self._connection = self._connect()
        return self._connection

    def _connect(self) -> duckdb.DuckDBPyConnection:
        try:
            if self.db_path != ":memory:":
                Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
            conn = duckdb.connect(self.db_path)
            conn.execute(SCHEMA_SQL)
            return conn
        except duckdb.Error as e:
            raise DatabaseError(f"Failed to initialize database: {e}")

    def cursor(self) -> duckdb.DuckDBPyConnection:
        """
        Independent connection to the same database

        Each request gets its own cursor so its transaction is isolated
        from concurrent requests by DuckDB's MVCC.
        """
        return self.connection.cursor()

    def init_database(self):
        """Create the schema if missing"""
        self.connection.execute(SCHEMA_SQL)

    def execute_query(self, query: str, params: list = None) -> list:
        """Run a query and return all rows"""
        try:
            cur = self.cursor()
            try:
                if params:
                    return cur.execute(query, params).fetchall()
                return cur.execute(query).fetchall()
            finally:
                cur.close()
        except duckdb.Error as e:
            raise DatabaseError(f"Query execution failed: {e}")

    def execute_one(self, query: str, params: list = None) -> Optional[tuple]:
        """Run a query and return the first row"""
        try:
            cur = self.cursor()
            try:
                if params:
                    return cur.execute(query, params).fetchone()
                return cur.execute(query).fetchone()
            finally:
                cur.close()
        except duckdb.Error as e:
            raise DatabaseError(f"Query execution failed: {e}")

    def close(self):
        if self._connection is not None:
            self._connection.close()
            self._connection = None


# Global database manager
db_manager = DatabaseManager()
