# services/order_mapper.py

from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional, Set

from exceptions import OrderDataError
from hasher import hash_order_id
from models import ExternalOrder, PosStatusSnapshot

CHECK_ID = 1
TABLE_ID_COUNTER = -1       # collected at the counter, not a real table
EAT_TYPE_TOGO = 1
STATUS_PAID = 1
LOCATION_MAX_LEN = 25
UNRESOLVED_ITEM_NAME = "not fill yet"

PRINT_ROW_ITEM_ID = -3
PAYMENT_ROW_ITEM_ID = -2

HEADER_COLUMNS = (
    "check_id", "pos_name", "check_name", "order_start_time",
    "should_amount", "actual_amount", "is_make", "table_id", "table_name",
    "eat_type", "remark", "service_amount", "status",
)

DETAIL_COLUMNS = (
    "order_head_id", "check_id", "menu_item_id", "menu_item_name",
    "product_price", "quantity", "actual_price", "sales_amount",
    "description", "order_time", "is_make",
)

PRINT_COLUMNS = (
    "order_head_id", "check_id", "menu_item_id", "menu_item_name",
    "product_price", "actual_price", "order_employee_name",
    "pos_device_id", "pos_name", "order_time",
)

PAYMENT_DETAIL_COLUMNS = (
    "order_head_id", "check_id", "menu_item_id", "menu_item_name",
    "product_price", "actual_price", "quantity",
    "order_employee_name", "pos_device_id", "pos_name", "order_time",
    "discount_id",
)

PAYMENT_COLUMNS = (
    "order_head_id", "check_id", "tender_media_id", "total",
    "employee_id", "payment_time", "pos_device_id", "order_detail_id",
)


def insert_sql(table: str, columns) -> str:
    placeholders = ", ".join("?" for _ in columns)
    return f"INSERT INTO {table} ({', '.join(columns)}) VALUES ({placeholders})"

def as_params(row: Dict[str, Any], columns) -> tuple:
    return tuple(row[c] for c in columns)


def pos_time(value: datetime) -> datetime:
    """POS DATETIME columns are naive UTC."""
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def parse_amount(value: Optional[str], field: str, order_id: str) -> Decimal:
    try:
        amount = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise OrderDataError(f"Order {order_id}: {field} {value!r} is not a decimal amount", order_id=order_id)
    if not amount.is_finite():
        raise OrderDataError(f"Order {order_id}: {field} {value!r} is not a finite amount", order_id=order_id)
    return amount


def catalog_id(integration_id: str) -> Optional[int]:
    try:
        return int(str(integration_id).strip())
    except (TypeError, ValueError):
        return None


def location_label(location_number: Optional[str]) -> str:
    return "ToGo-" + (location_number or "")[:LOCATION_MAX_LEN]


def map_order_header(order: ExternalOrder, source_marker: str) -> Dict[str, Any]:
    total = parse_amount(order.total_amount, "totalAmount", order.order_id)
    service = (
        parse_amount(order.service_charge_amount, "serviceChargeAmount", order.order_id)
        if order.service_charge_amount
        else Decimal("0")
    )
    return {
        "check_id": CHECK_ID,
        "pos_name": source_marker,
        "check_name": hash_order_id(order.order_id),
        "order_start_time": pos_time(order.date_created),
        "should_amount": total,
        "actual_amount": total,
        "is_make": 0,
        "table_id": TABLE_ID_COUNTER,
        "table_name": location_label(order.location_number),
        "eat_type": EAT_TYPE_TOGO,
        "remark": order.order_notes or "",
        "service_amount": service,
        "status": STATUS_PAID,
    }


def map_order_items(order: ExternalOrder) -> List[Dict[str, Any]]:
    """Detail rows without order_head_id; names are filled in after the catalog lookup."""
    rows = []
    for item in order.items:
        unit_price = parse_amount(item.unit_price, f"unitPrice of item {item.item_id}", order.order_id)
        quantity = Decimal(item.quantity)
        rows.append({
            "check_id": CHECK_ID,
            "menu_item_id": catalog_id(item.integration_id) or 0,
            "menu_item_name": UNRESOLVED_ITEM_NAME,
            "product_price": unit_price,
            "quantity": quantity,
            "actual_price": unit_price,
            "sales_amount": unit_price * quantity,
            "description": item.item_notes or "",
            "order_time": pos_time(order.date_created),
            "is_make": 0,
        })
    return rows


def catalog_ids(order: ExternalOrder) -> Set[int]:
    ids = set()
    for item in order.items:
        cid = catalog_id(item.integration_id)
        if cid is not None:
            ids.add(cid)
    return ids


def map_print_row(order_head_id: int, source_marker: str, now: datetime) -> Dict[str, Any]:
    local_label = now.astimezone().strftime("%Y-%m-%d %H:%M:%S")
    return {
        "order_head_id": order_head_id,
        "check_id": CHECK_ID,
        "menu_item_id": PRINT_ROW_ITEM_ID,
        "menu_item_name": f"**{source_marker} {local_label}**",
        "product_price": 0,
        "actual_price": 0,
        "order_employee_name": source_marker,
        "pos_device_id": 0,
        "pos_name": source_marker,
        "order_time": pos_time(now),
    }


def map_payment_detail_row(order_head_id: int, total: Decimal, source_marker: str, now: datetime) -> Dict[str, Any]:
    return {
        "order_head_id": order_head_id,
        "check_id": CHECK_ID,
        "menu_item_id": PAYMENT_ROW_ITEM_ID,
        "menu_item_name": f"{source_marker}:{total:.2f}",
        "product_price": 0,
        "actual_price": 0,
        "quantity": 0,
        "order_employee_name": source_marker,
        "pos_device_id": 0,
        "pos_name": source_marker,
        "order_time": pos_time(now),
        "discount_id": 0,
    }


def map_payment_row(
    order_head_id: int,
    total: Decimal,
    tender_media_id: int,
    order_detail_id: int,
    now: datetime,
) -> Dict[str, Any]:
    return {
        "order_head_id": order_head_id,
        "check_id": CHECK_ID,
        "tender_media_id": tender_media_id,
        "total": total,
        "employee_id": 0,
        "payment_time": pos_time(now),
        "pos_device_id": 0,
        "order_detail_id": order_detail_id,
    }


def _as_datetime(value) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        dt = datetime.fromisoformat(str(value).strip())
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def map_status_snapshot(row: Dict[str, Any]) -> PosStatusSnapshot:
    status = row.get("status")
    return PosStatusSnapshot(
        pos_order_id=int(row["order_head_id"]),
        hashed_external_id=str(row["check_name"]) if row.get("check_name") is not None else "",
        pos_status=int(status) if status is not None else None,
        is_make=int(row.get("is_make") or 0),
        order_end_time=_as_datetime(row.get("order_end_time")),
    )
