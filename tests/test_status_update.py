"""Tests for the status update (reconciliation) worker."""

import threading
from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest

from hasher import hash_order_id
from models import FULFILLED_MARKER, OrderStatus, PosStatusSnapshot, ProcessingState, StatusUpdateResult
from services.lifecycle import ReconcilePhase
from services.status_update import OrderStatusUpdateWorker


def _snapshot(external_id="E1", pos_id=1, status=1, is_make=1, hashed=None):
    return PosStatusSnapshot(
        pos_order_id=pos_id,
        hashed_external_id=hash_order_id(external_id) if hashed is None else hashed,
        pos_status=status,
        is_make=is_make,
        order_end_time=datetime.now(timezone.utc),
    )


@pytest.fixture
def pos_reader():
    repo = MagicMock()
    repo.find_fulfilled_since.return_value = [_snapshot("E1")]
    return repo


@pytest.fixture
def worker(settings, source, pos_reader, store):
    return OrderStatusUpdateWorker(settings, source, pos_reader, store)


@pytest.fixture
def ingested(store):
    store.insert_if_absent(ProcessingState(
        external_id="E1", hashed_external_id=hash_order_id("E1"), pos_order_id="1",
    ))
    return store.get_by_external_id("E1")


class TestReconciliation:

    def test_fulfilled_order_reported_and_persisted(self, worker, source, store, ingested):
        stats = worker.run_cycle(threading.Event())

        assert stats.processed == 1
        source.report_status.assert_called_once()
        args = source.report_status.call_args.args
        assert args[0] == "E1" and args[1] == OrderStatus.COMPLETED
        state = store.get_by_external_id("E1")
        assert state.last_status_sent == FULFILLED_MARKER
        assert state.pos_order_id == ingested.pos_order_id
        assert state.order_pulled_at == ingested.order_pulled_at

    def test_second_cycle_does_not_report_again(self, worker, source, ingested):
        worker.run_cycle(threading.Event())
        stats = worker.run_cycle(threading.Event())

        assert source.report_status.call_count == 1
        assert stats.skipped == 1

    def test_rejected_report_leaves_state_unchanged(self, worker, source, store, ingested):
        source.report_status.return_value = StatusUpdateResult(success=False, status_code=9, error_message="nope")

        stats = worker.run_cycle(threading.Event())

        assert stats.failed == 1
        assert store.get_by_external_id("E1") == ingested

    def test_rejected_report_retried_next_cycle(self, worker, source, store, ingested):
        source.report_status.side_effect = [
            StatusUpdateResult(success=False),
            StatusUpdateResult(success=True),
        ]

        worker.run_cycle(threading.Event())
        worker.run_cycle(threading.Event())

        assert source.report_status.call_count == 2
        assert store.get_by_external_id("E1").last_status_sent == FULFILLED_MARKER

    def test_report_exception_isolated(self, worker, source, pos_reader, store, ingested):
        store.insert_if_absent(ProcessingState(external_id="E2", hashed_external_id=hash_order_id("E2")))
        pos_reader.find_fulfilled_since.return_value = [_snapshot("E1", 1), _snapshot("E2", 2)]
        source.report_status.side_effect = [ConnectionError("reset"), StatusUpdateResult(success=True)]

        stats = worker.run_cycle(threading.Event())

        assert (stats.failed, stats.processed) == (1, 1)
        assert store.get_by_external_id("E1").last_status_sent is None
        assert store.get_by_external_id("E2").last_status_sent == FULFILLED_MARKER

    def test_empty_reference_skipped(self, worker, source, pos_reader, ingested):
        pos_reader.find_fulfilled_since.return_value = [_snapshot(hashed="")]

        stats = worker.run_cycle(threading.Event())

        assert stats.skipped == 1
        source.report_status.assert_not_called()

    def test_unknown_order_skipped(self, worker, source, pos_reader, store):
        pos_reader.find_fulfilled_since.return_value = [_snapshot("never-ingested")]

        stats = worker.run_cycle(threading.Event())

        assert stats.skipped == 1
        source.report_status.assert_not_called()
        assert store.count() == 0

    def test_unfulfilled_snapshot_skipped(self, worker, source, pos_reader, ingested):
        pos_reader.find_fulfilled_since.return_value = [_snapshot("E1", status=0, is_make=0)]

        worker.run_cycle(threading.Event())

        source.report_status.assert_not_called()

    def test_duplicate_snapshots_report_once(self, worker, source, pos_reader, ingested):
        pos_reader.find_fulfilled_since.return_value = [_snapshot("E1", 1), _snapshot("E1", 1)]

        worker.run_cycle(threading.Event())

        assert source.report_status.call_count == 1
        assert worker.machine.entered(ReconcilePhase.REPORT, "E1") == 1

    def test_lookback_window(self, worker, pos_reader, settings):
        before = datetime.now(timezone.utc)
        worker.run_cycle(threading.Event())

        lookback = pos_reader.find_fulfilled_since.call_args.args[0]
        hours = (before - lookback).total_seconds() / 3600
        assert settings.status_lookback_hours - 0.01 <= hours <= settings.status_lookback_hours + 0.01

    def test_pos_failure_aborts_cycle(self, worker, source, pos_reader):
        pos_reader.find_fulfilled_since.side_effect = RuntimeError("POS down")

        assert worker.run_once(threading.Event()) is None
        source.report_status.assert_not_called()
        assert worker.machine.state == ReconcilePhase.IDLE

    def test_cancel_before_batch(self, worker, source, ingested):
        cancel = threading.Event()
        cancel.set()

        stats = worker.run_cycle(cancel)

        assert stats.cancelled
        source.report_status.assert_not_called()


class TestStateMachine:

    def test_phases_for_reported_order(self, worker, ingested):
        worker.run_cycle(threading.Event())

        assert [p for p, _ in worker.machine.history] == [
            ReconcilePhase.SCANNING,
            ReconcilePhase.LOOKUP,
            ReconcilePhase.COMPARE,
            ReconcilePhase.REPORT,
            ReconcilePhase.PERSIST,
            ReconcilePhase.IDLE,
        ]

    def test_phases_for_already_reported_order(self, worker, store, ingested):
        store.update_last_status("E1", FULFILLED_MARKER)

        worker.run_cycle(threading.Event())

        assert ReconcilePhase.REPORT not in [p for p, _ in worker.machine.history]
