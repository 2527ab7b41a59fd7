# services/pos_orders.py

from datetime import datetime
from typing import Callable, Dict, List, Optional

from config import SyncSettings, get_pos_conn, utc_now
from db import rexec, rquery, rscalar
from exceptions import ConfigurationError
from logger import get_logger
from models import ExternalOrder, PosStatusSnapshot
from services.order_mapper import (
    DETAIL_COLUMNS,
    HEADER_COLUMNS,
    PAYMENT_COLUMNS,
    PAYMENT_DETAIL_COLUMNS,
    PRINT_COLUMNS,
    as_params,
    catalog_ids,
    insert_sql,
    map_order_header,
    map_order_items,
    map_payment_detail_row,
    map_payment_row,
    map_print_row,
    map_status_snapshot,
    pos_time,
)

log = get_logger("pos_orders")

FULFILLED_SQL = """
SELECT order_head_id, check_name, status, is_make, order_end_time
FROM order_head
WHERE pos_name = ?
  AND order_start_time >= ?
  AND (status >= 1 OR is_make = 1)
"""


class PosOrderRepository:
    """
    Writes source orders into the POS schema and reads fulfilment back.

    ``connect`` returns a DB-API connection with qmark parameters and
    autocommit off; by default it is a pyodbc connection built from the
    configured connection string.
    """

    def __init__(self, settings: SyncSettings, connect: Optional[Callable[[], object]] = None):
        if connect is None:
            if not settings.pos_conn_str:
                raise ConfigurationError("POS_CONN_STR is required in configuration")
            conn_str = settings.pos_conn_str
            connect = lambda: get_pos_conn(conn_str)

        self._connect = connect
        self.source_marker = settings.pos_source_marker
        self.identity_sql = settings.pos_identity_sql
        self.tender_keyword = settings.pos_tender_keyword

    def _last_id(self, conn) -> int:
        value = rscalar(conn, self.identity_sql)
        if value is None:
            raise RuntimeError(f"Identity query returned nothing: {self.identity_sql}")
        return int(value)

    def _menu_item_names(self, conn, ids) -> Dict[int, str]:
        if not ids:
            return {}
        ordered = sorted(ids)
        placeholders = ",".join("?" for _ in ordered)
        rows = rquery(
            conn,
            f"SELECT item_id, item_name1 FROM menu_item WHERE item_id IN ({placeholders})",
            tuple(ordered),
        )
        names = {}
        for r in rows:
            if r.get("item_name1") is not None:
                names[int(r["item_id"])] = str(r["item_name1"])
        return names

    def _tender_media_id(self, conn) -> int:
        value = rscalar(
            conn,
            "SELECT tender_media_id FROM tender_media WHERE tender_media_name LIKE ?",
            (f"%{self.tender_keyword}%",),
        )
        return int(value) if value is not None else 0

    def save_order(self, order: ExternalOrder) -> str:
        """Insert header, lines, print row and payment for one order in one transaction. Returns the header id."""
        if order is None:
            raise ValueError("order cannot be None")

        # Mapping raises OrderDataError before anything touches the database
        header = map_order_header(order, self.source_marker)
        items = map_order_items(order)
        wanted_ids = catalog_ids(order)
        total = header["actual_amount"]

        conn = self._connect()
        try:
            rexec(conn, insert_sql("order_head", HEADER_COLUMNS), as_params(header, HEADER_COLUMNS))
            order_head_id = self._last_id(conn)

            names = self._menu_item_names(conn, wanted_ids)
            unresolved = 0
            for row in items:
                row["order_head_id"] = order_head_id
                name = names.get(row["menu_item_id"])
                if name:
                    row["menu_item_name"] = name
                else:
                    unresolved += 1
                rexec(conn, insert_sql("order_detail", DETAIL_COLUMNS), as_params(row, DETAIL_COLUMNS))
            if unresolved:
                log.warning(f"Order {order.order_id}: {unresolved} item name(s) not found in menu_item.")

            now = utc_now()
            print_row = map_print_row(order_head_id, self.source_marker, now)
            rexec(conn, insert_sql("order_detail", PRINT_COLUMNS), as_params(print_row, PRINT_COLUMNS))

            pay_detail = map_payment_detail_row(order_head_id, total, self.source_marker, now)
            rexec(conn, insert_sql("order_detail", PAYMENT_DETAIL_COLUMNS), as_params(pay_detail, PAYMENT_DETAIL_COLUMNS))
            order_detail_id = self._last_id(conn)

            payment = map_payment_row(order_head_id, total, self._tender_media_id(conn), order_detail_id, now)
            rexec(conn, insert_sql("payment", PAYMENT_COLUMNS), as_params(payment, PAYMENT_COLUMNS))

            conn.commit()
        except Exception as e:
            log.error(f"Failed to save order {order.order_id} to POS DB, rolling back: {e}")
            try:
                conn.rollback()
            except Exception as rb:
                log.error(f"Rollback failed for order {order.order_id}: {rb}")
            raise
        finally:
            conn.close()

        log.info(f"Saved order {order.order_id} to POS DB with POS ID {order_head_id}")
        return str(order_head_id)

    def find_fulfilled_since(self, lookback: datetime) -> List[PosStatusSnapshot]:
        conn = self._connect()
        try:
            rows = rquery(conn, FULFILLED_SQL, (self.source_marker, pos_time(lookback)))
        except Exception as e:
            log.error(f"POS DB error when retrieving order status updates: {e}")
            raise
        finally:
            conn.close()

        snapshots = [map_status_snapshot(r) for r in rows]
        log.info(f"Retrieved {len(snapshots)} order status updates since {lookback.isoformat()}")
        return snapshots
