# services/status_update.py

import threading
from datetime import timedelta
from typing import Set

from config import SyncSettings, utc_now
from db import StateStore
from exceptions import SyncCancelled
from models import FULFILLED_MARKER, OrderStatus, PosStatusSnapshot
from services.lifecycle import ReconcilePhase, reconcile_machine
from services.worker import CycleStats, PollingWorker


class OrderStatusUpdateWorker(PollingWorker):
    """Reports POS-fulfilled orders back to the order source, once per order."""

    name = "status_update"

    def __init__(self, settings: SyncSettings, source, pos_repo, store: StateStore):
        super().__init__(store, settings.status_poll_interval)
        self.source = source
        self.pos_repo = pos_repo
        self.lookback_hours = settings.status_lookback
        self.machine = reconcile_machine()

    def run_cycle(self, cancel: threading.Event) -> CycleStats:
        stats = CycleStats()
        lookback = utc_now() - timedelta(hours=self.lookback_hours)

        self.machine.advance(ReconcilePhase.SCANNING)
        try:
            self.log.info(f"Checking for POS order status updates since {lookback.isoformat()}")
            snapshots = self.pos_repo.find_fulfilled_since(lookback)
            self.log.debug(f"Found {len(snapshots)} potential status updates in POS DB.")

            reported: Set[str] = set()
            for snap in snapshots:
                if cancel.is_set():
                    stats.cancelled = True
                    self.log.info("Status update cancelled before next order.")
                    break

                stats.seen += 1
                self.machine.advance(ReconcilePhase.LOOKUP, snap.hashed_external_id or None)
                outcome = self._process_snapshot(snap, reported, cancel)
                if outcome == "reported":
                    stats.processed += 1
                elif outcome == "skipped":
                    stats.skipped += 1
                else:
                    stats.failed += 1
        finally:
            self.machine.reset()

        self.log.info(
            f"Status update cycle finished | seen={stats.seen}, reported={stats.processed}, "
            f"skipped={stats.skipped}, failed={stats.failed}"
        )
        return stats

    def _process_snapshot(self, snap: PosStatusSnapshot, reported: Set[str], cancel: threading.Event) -> str:
        if not snap.hashed_external_id:
            self.log.warning(f"Completed POS order {snap.pos_order_id} has no order reference. Skipping.")
            return "skipped"

        if not snap.fulfilled:
            return "skipped"

        try:
            state = self.store.get_by_hash(snap.hashed_external_id)
            if state is None:
                self.log.warning(
                    f"POS order {snap.pos_order_id} (ref {snap.hashed_external_id}) is complete "
                    f"but has no state record. Skipping."
                )
                return "skipped"

            oid = state.external_id
            self.machine.advance(ReconcilePhase.COMPARE, oid)
            if state.last_status_sent == FULFILLED_MARKER or oid in reported:
                self.log.debug(f"'{FULFILLED_MARKER}' for order {oid} was already sent. Skipping.")
                return "skipped"

            self.log.info(
                f"POS order {snap.pos_order_id} complete for order {oid}. "
                f"Previous status: '{state.last_status_sent or 'N/A'}'. Sending '{FULFILLED_MARKER}'."
            )
            self.machine.advance(ReconcilePhase.REPORT, oid)
            result = self.source.report_status(oid, OrderStatus.COMPLETED, cancel)
            if not result.success:
                self.log.error(
                    f"Failed to send '{FULFILLED_MARKER}' for order {oid} "
                    f"(statusCode={result.status_code}, error={result.error_message!r}). Will retry next cycle."
                )
                return "failed"
            reported.add(oid)

            self.machine.advance(ReconcilePhase.PERSIST, oid)
            self.store.update_last_status(oid, FULFILLED_MARKER)
            self.log.info(f"Sent '{FULFILLED_MARKER}' for order {oid} and updated state DB.")
            return "reported"

        except SyncCancelled:
            raise
        except Exception as e:
            self.log.exception(f"Failed to reconcile POS order {snap.pos_order_id}: {e}")
            return "failed"
