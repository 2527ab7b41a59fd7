"""Pytest configuration and fixtures."""

import os
import sqlite3
import tempfile
from datetime import datetime, timezone
from decimal import Decimal

# Keep test logs out of the project folder; must happen before logger is imported
os.environ.setdefault("LOG_DIR", tempfile.mkdtemp(prefix="order_sync_logs_"))
os.environ.setdefault("LOG_TO_CONSOLE", "0")

import pytest
from unittest.mock import MagicMock

from config import SyncSettings
from db import StateStore
from models import ExternalOrder, OrderLineItem, OrderStatus, StatusUpdateResult
from services.pos_orders import PosOrderRepository

# pyodbc binds Decimal and datetime natively; sqlite3 needs adapters
sqlite3.register_adapter(Decimal, str)
sqlite3.register_adapter(datetime, lambda d: d.strftime("%Y-%m-%d %H:%M:%S"))


POS_SCHEMA = """
CREATE TABLE order_head (
    order_head_id INTEGER PRIMARY KEY AUTOINCREMENT,
    check_id INTEGER,
    pos_name TEXT,
    check_name TEXT,
    order_start_time TEXT,
    order_end_time TEXT,
    should_amount NUMERIC,
    actual_amount NUMERIC,
    is_make INTEGER DEFAULT 0,
    table_id INTEGER,
    table_name TEXT,
    eat_type INTEGER,
    remark TEXT,
    service_amount NUMERIC,
    status INTEGER DEFAULT 0
);

CREATE TABLE order_detail (
    order_detail_id INTEGER PRIMARY KEY AUTOINCREMENT,
    order_head_id INTEGER NOT NULL REFERENCES order_head(order_head_id),
    check_id INTEGER,
    menu_item_id INTEGER,
    menu_item_name TEXT,
    product_price NUMERIC,
    quantity NUMERIC,
    actual_price NUMERIC,
    sales_amount NUMERIC,
    description TEXT,
    order_time TEXT,
    is_make INTEGER,
    order_employee_name TEXT,
    pos_device_id INTEGER,
    pos_name TEXT,
    discount_id INTEGER
);

CREATE TABLE payment (
    payment_id INTEGER PRIMARY KEY AUTOINCREMENT,
    order_head_id INTEGER NOT NULL REFERENCES order_head(order_head_id),
    check_id INTEGER,
    tender_media_id INTEGER,
    total NUMERIC,
    employee_id INTEGER,
    payment_time TEXT,
    pos_device_id INTEGER,
    order_detail_id INTEGER
);

CREATE TABLE menu_item (
    item_id INTEGER PRIMARY KEY,
    item_name1 TEXT
);

CREATE TABLE tender_media (
    tender_media_id INTEGER PRIMARY KEY,
    tender_media_name TEXT
);
"""


@pytest.fixture
def settings(tmp_path) -> SyncSettings:
    """Settings pointing at a temp state DB and an SQLite stand-in for the POS DB."""
    return SyncSettings(
        store_id="store-1",
        source_api_url="http://source.test/api/v1",
        source_api_key="test-key",
        pos_conn_str="",
        pos_identity_sql="SELECT last_insert_rowid()",
        state_db_path=str(tmp_path / "data" / "sync_state.db"),
        order_poll_seconds=1,
        status_poll_seconds=1,
        status_lookback_hours=24,
        state_retention_days=7,
        maintenance_interval_hours=1,
    )


@pytest.fixture
def store(settings) -> StateStore:
    return StateStore(settings.state_db_path)


@pytest.fixture
def pos_db_path(tmp_path) -> str:
    """File-backed POS schema with a small catalog and tender list."""
    path = str(tmp_path / "pos.db")
    conn = sqlite3.connect(path)
    try:
        conn.executescript(POS_SCHEMA)
        conn.executemany(
            "INSERT INTO menu_item (item_id, item_name1) VALUES (?, ?)",
            [(101, "Flat White"), (102, "Croissant")],
        )
        conn.executemany(
            "INSERT INTO tender_media (tender_media_id, tender_media_name) VALUES (?, ?)",
            [(1, "Cash"), (7, "Kody Pay")],
        )
        conn.commit()
    finally:
        conn.close()
    return path


@pytest.fixture
def pos_connect(pos_db_path):
    return lambda: sqlite3.connect(pos_db_path)


@pytest.fixture
def pos_query(pos_db_path):
    """Run a read query against the POS stand-in and return plain rows."""
    def _query(sql, params=()):
        conn = sqlite3.connect(pos_db_path)
        conn.row_factory = sqlite3.Row
        try:
            return [dict(r) for r in conn.execute(sql, params).fetchall()]
        finally:
            conn.close()
    return _query


@pytest.fixture
def pos_repo(settings, pos_connect) -> PosOrderRepository:
    return PosOrderRepository(settings, connect=pos_connect)


@pytest.fixture
def make_order():
    """Factory for source orders with two catalog lines."""
    def _make(order_id="E1", total="12.50", **overrides):
        fields = dict(
            order_id=order_id,
            store_id="store-1",
            total_amount=total,
            status=OrderStatus.ACCEPTED,
            date_created=datetime.now(timezone.utc).replace(microsecond=0),
            order_notes="no sugar",
            location_number="Window 3",
            service_charge_amount=None,
            items=(
                OrderLineItem(item_id="i-1", integration_id="101", quantity=2, unit_price="3.75"),
                OrderLineItem(item_id="i-2", integration_id="102", quantity=1, unit_price="5.00", item_notes="warm"),
            ),
        )
        fields.update(overrides)
        return ExternalOrder(**fields)
    return _make


@pytest.fixture
def source():
    """Stand-in for the remote order source client."""
    client = MagicMock()
    client.fetch_orders.return_value = []
    client.report_status.return_value = StatusUpdateResult(success=True, status_code=1)
    return client
