"""Tests for the remote order source client."""

import threading
from dataclasses import replace
from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest
import requests

from api import OrderSourceClient, decode_order
from exceptions import ConfigurationError, RemoteSourceError, SyncCancelled
from models import OrderStatus


def _response(status=200, body=None, text=None):
    resp = MagicMock()
    resp.status_code = status
    resp.text = text if text is not None else str(body)
    if body is None:
        resp.json.side_effect = ValueError("no json")
    else:
        resp.json.return_value = body
    if status >= 400:
        resp.raise_for_status.side_effect = requests.HTTPError(f"{status} Error")
    return resp


RAW_ORDER = {
    "orderId": "E1",
    "storeId": "store-1",
    "totalAmount": "12.50",
    "status": "accepted",
    "dateCreated": "2025-12-22T03:35:00Z",
    "orderNotes": "no sugar",
    "locationNumber": "Window 3",
    "items": [
        {"itemId": "i-1", "integrationId": "101", "quantity": 2, "unitPrice": "3.75"},
        {"item": {"itemId": "i-2", "integrationId": "102", "quantity": 1, "unitPrice": "5.00", "itemNotes": "warm"}},
    ],
}


@pytest.fixture
def session():
    return MagicMock()


@pytest.fixture
def client(settings, session):
    return OrderSourceClient(settings, session=session)


class TestDecode:

    def test_decode_order(self):
        order = decode_order(RAW_ORDER)

        assert order.order_id == "E1"
        assert order.status == OrderStatus.ACCEPTED
        assert order.date_created == datetime(2025, 12, 22, 3, 35, tzinfo=timezone.utc)
        assert [i.integration_id for i in order.items] == ["101", "102"]
        assert order.items[1].item_notes == "warm"
        assert order.service_charge_amount is None

    def test_numeric_zero_amounts_kept(self):
        raw = {
            **RAW_ORDER,
            "totalAmount": 0,
            "serviceChargeAmount": 0.0,
            "items": [{"itemId": "i-1", "integrationId": 101, "quantity": 1, "unitPrice": 0}],
        }

        order = decode_order(raw)

        assert order.total_amount == "0"
        assert order.service_charge_amount == "0.0"
        assert order.items[0].unit_price == "0"
        assert order.items[0].integration_id == "101"

    def test_missing_amount_is_empty(self):
        raw = {k: v for k, v in RAW_ORDER.items() if k != "totalAmount"}
        assert decode_order(raw).total_amount == ""

    def test_unknown_status(self):
        assert decode_order({**RAW_ORDER, "status": "weird"}).status == OrderStatus.UNKNOWN


class TestFetchOrders:

    def test_first_fetch_has_no_after_date(self, client, session):
        session.request.return_value = _response(body={"orders": [RAW_ORDER]})

        orders = client.fetch_orders(None, 50)

        assert [o.order_id for o in orders] == ["E1"]
        method, url = session.request.call_args.args
        assert method == "GET"
        assert url == "http://source.test/api/v1/stores/store-1/orders"
        assert session.request.call_args.kwargs["params"] == {"pageSize": 50}
        assert session.request.call_args.kwargs["headers"]["X-API-KEY"] == "test-key"

    def test_after_date_sent_as_utc(self, client, session):
        session.request.return_value = _response(body={"orders": []})

        client.fetch_orders(datetime(2025, 1, 2, 3, 4, 5, tzinfo=timezone.utc), 100)

        assert session.request.call_args.kwargs["params"]["afterDate"] == "2025-01-02T03:04:05Z"

    def test_store_id_escaped_in_path(self, settings, session):
        session.request.return_value = _response(body={"orders": []})
        client = OrderSourceClient(replace(settings, store_id="north/1"), session=session)

        client.fetch_orders(None, 10)

        _method, url = session.request.call_args.args
        assert url == "http://source.test/api/v1/stores/north%2F1/orders"

    def test_malformed_order_skipped(self, client, session):
        bad = {**RAW_ORDER, "orderId": "E2", "dateCreated": "not a date"}
        session.request.return_value = _response(body={"orders": [bad, RAW_ORDER]})

        orders = client.fetch_orders(None, 100)

        assert [o.order_id for o in orders] == ["E1"]

    def test_missing_orders_key_is_empty(self, client, session):
        session.request.return_value = _response(body={})
        assert client.fetch_orders(None, 100) == []

    def test_http_error_raises(self, client, session):
        session.request.return_value = _response(status=500, text="server exploded")

        with pytest.raises(RemoteSourceError) as exc:
            client.fetch_orders(None, 100)
        assert exc.value.http_status == 500
        assert exc.value.raw_response_text == "server exploded"

    def test_transport_error_wrapped(self, client, session):
        session.request.side_effect = requests.ConnectionError("refused")

        with pytest.raises(RemoteSourceError):
            client.fetch_orders(None, 100)

    def test_non_json_body_raises(self, client, session):
        session.request.return_value = _response(text="<html>")

        with pytest.raises(RemoteSourceError):
            client.fetch_orders(None, 100)

    def test_cancel_stops_before_request(self, client, session):
        cancel = threading.Event()
        cancel.set()

        with pytest.raises(SyncCancelled):
            client.fetch_orders(None, 100, cancel)
        session.request.assert_not_called()


class TestReportStatus:

    def test_success(self, client, session):
        session.request.return_value = _response(body={"success": True, "statusCode": 1})

        result = client.report_status("E1", OrderStatus.COMPLETED)

        assert result.success is True
        assert result.status_code == 1
        method, url = session.request.call_args.args
        assert method == "POST"
        assert url.endswith("/stores/store-1/orders/E1/status")
        assert session.request.call_args.kwargs["json"] == {"newStatus": "COMPLETED"}

    def test_order_id_escaped_in_path(self, client, session):
        session.request.return_value = _response(body={"success": True, "statusCode": 1})

        client.report_status("ord/7#a?x", OrderStatus.COMPLETED)

        _method, url = session.request.call_args.args
        assert url == "http://source.test/api/v1/stores/store-1/orders/ord%2F7%23a%3Fx/status"

    def test_rejected(self, client, session):
        session.request.return_value = _response(
            body={"success": False, "statusCode": 4, "errorMessage": "order closed"},
        )

        result = client.report_status("E1", OrderStatus.COMPLETED)

        assert result.success is False
        assert result.status_code == 4
        assert result.error_message == "order closed"

    def test_unparseable_response_is_failure(self, client, session):
        session.request.return_value = _response(text="ok")

        assert client.report_status("E1", OrderStatus.COMPLETED).success is False

    def test_cancel_stops_before_request(self, client, session):
        cancel = threading.Event()
        cancel.set()

        with pytest.raises(SyncCancelled):
            client.report_status("E1", OrderStatus.COMPLETED, cancel)
        session.request.assert_not_called()


class TestConfiguration:

    @pytest.mark.parametrize("field", ["store_id", "source_api_url", "source_api_key"])
    def test_missing_setting_rejected(self, settings, field):
        with pytest.raises(ConfigurationError):
            OrderSourceClient(replace(settings, **{field: ""}), session=MagicMock())
