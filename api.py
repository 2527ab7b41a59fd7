#api.py
import threading
from urllib.parse import quote
from datetime import datetime, timezone
from typing import Optional, List, Dict, Any

import requests

from config import SyncSettings, build_session
from exceptions import ConfigurationError, RemoteSourceError, SyncCancelled
from logger import get_logger
from models import ExternalOrder, OrderLineItem, OrderStatus, StatusUpdateResult

log = get_logger("api")

REQUEST_TIMEOUT = 60


def _parse_ts(value) -> datetime:
    if isinstance(value, datetime):
        dt = value
    else:
        s = str(value).strip()
        # handles "2025-12-22T03:35:00Z", "+00:00" and naive strings
        dt = datetime.fromisoformat(s.replace("Z", "+00:00"))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def _opt_str(value) -> Optional[str]:
    if value is None:
        return None
    return str(value)


def _str(value) -> str:
    # numeric 0 is a real amount, only None is missing
    return "" if value is None else str(value)


def decode_order(raw: Dict[str, Any]) -> ExternalOrder:
    items = []
    for it in raw.get("items") or []:
        # Combo wrappers carry the line under "item"
        line = it.get("item", it) if isinstance(it, dict) else None
        if not line:
            continue
        items.append(OrderLineItem(
            item_id=_str(line.get("itemId")),
            integration_id=_str(line.get("integrationId")),
            quantity=int(line.get("quantity") or 0),
            unit_price=_str(line.get("unitPrice")),
            item_notes=_opt_str(line.get("itemNotes")),
        ))

    return ExternalOrder(
        order_id=_str(raw.get("orderId")),
        store_id=_str(raw.get("storeId")),
        total_amount=_str(raw.get("totalAmount")),
        status=OrderStatus.parse(raw.get("status")),
        date_created=_parse_ts(raw.get("dateCreated")),
        order_notes=_opt_str(raw.get("orderNotes")),
        location_number=_opt_str(raw.get("locationNumber")),
        service_charge_amount=_opt_str(raw.get("serviceChargeAmount")),
        items=tuple(items),
    )


def decode_status_response(resp: requests.Response) -> StatusUpdateResult:
    try:
        body = resp.json()
    except ValueError as e:
        return StatusUpdateResult(False, None, f"Exception parsing API response JSON: {e}")

    if not isinstance(body, dict):
        return StatusUpdateResult(False, None, "API response is not a JSON object.")

    status_code = body.get("statusCode")
    try:
        status_code = int(status_code) if status_code is not None else None
    except (TypeError, ValueError):
        status_code = None

    return StatusUpdateResult(
        success=bool(body.get("success")),
        status_code=status_code,
        error_message=body.get("errorMessage", "") or "",
    )


class OrderSourceClient:
    """HTTP client for the remote order source. Checks the cancel event before every call."""

    def __init__(self, settings: SyncSettings, session: Optional[requests.Session] = None):
        if not settings.store_id:
            raise ConfigurationError("ORDER_SOURCE_STORE_ID is required in configuration")
        if not settings.source_api_url:
            raise ConfigurationError("ORDER_SOURCE_API_URL is missing in configuration")
        if not settings.source_api_key:
            raise ConfigurationError("ORDER_SOURCE_API_KEY is missing in configuration")

        self.store_id = settings.store_id
        self.base_url = settings.source_api_url.rstrip("/")
        self.session = session or build_session()
        self.headers = {
            "Accept": "application/json",
            "X-API-KEY": settings.source_api_key,
        }
        log.info(f"Order source client initialized with API URL: {self.base_url}")

    def _request(self, method: str, path: str, cancel: Optional[threading.Event], **kwargs) -> requests.Response:
        if cancel is not None and cancel.is_set():
            raise SyncCancelled(f"{method} {path} not sent: shutdown requested")

        url = f"{self.base_url}{path}"
        try:
            resp = self.session.request(method, url, headers=self.headers, timeout=REQUEST_TIMEOUT, **kwargs)
        except requests.RequestException as e:
            log.error(f"{method} {url} failed: {e}")
            raise RemoteSourceError(f"{method} {path} failed: {e}") from e

        log.debug(f"API Response: {resp.status_code} {resp.text[:2000]}")

        try:
            resp.raise_for_status()
        except requests.HTTPError as e:
            raw_text = resp.text[:2000]
            log.error(f"{method} {url} returned HTTP {resp.status_code}: {raw_text}")
            raise RemoteSourceError(
                f"{method} {path} returned HTTP {resp.status_code}",
                http_status=resp.status_code,
                error_message=str(e),
                raw_response_text=raw_text,
            ) from e
        return resp

    def fetch_orders(
        self,
        after: Optional[datetime],
        page_size: int,
        cancel: Optional[threading.Event] = None,
    ) -> List[ExternalOrder]:
        params: Dict[str, Any] = {"pageSize": page_size}
        if after is not None:
            params["afterDate"] = after.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")

        log.debug(f"Getting orders for store {self.store_id} with params {params}")
        resp = self._request("GET", f"/stores/{quote(self.store_id, safe='')}/orders", cancel, params=params)

        try:
            body = resp.json()
        except ValueError as e:
            raise RemoteSourceError(
                f"Orders response is not JSON: {e}",
                http_status=resp.status_code,
                raw_response_text=resp.text[:2000],
            ) from e

        raw_orders = body.get("orders") if isinstance(body, dict) else None

        orders = []
        for raw in raw_orders or []:
            try:
                orders.append(decode_order(raw))
            except (AttributeError, TypeError, ValueError) as e:
                oid = raw.get("orderId") if isinstance(raw, dict) else None
                log.warning(f"Skipping malformed order {oid!r} from source: {e}")
        return orders

    def report_status(
        self,
        external_id: str,
        status: OrderStatus,
        cancel: Optional[threading.Event] = None,
    ) -> StatusUpdateResult:
        log.debug(f"Updating order status - OrderId: {external_id}, new status: {status.value}")
        resp = self._request(
            "POST",
            f"/stores/{quote(self.store_id, safe='')}/orders/{quote(external_id, safe='')}/status",
            cancel,
            json={"newStatus": status.value},
        )
        result = decode_status_response(resp)
        if not result.success:
            log.warning(
                f"Source rejected status {status.value} for order {external_id}: "
                f"statusCode={result.status_code} error={result.error_message!r}"
            )
        return result
