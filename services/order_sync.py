# services/order_sync.py

import threading
from typing import Set

from config import SyncSettings, utc_now
from db import StateStore
from exceptions import OrderDataError, SyncCancelled
from hasher import hash_order_id
from models import ExternalOrder, ProcessingState
from services.lifecycle import IngestPhase, ingest_machine
from services.worker import CycleStats, PollingWorker


class OrderSyncWorker(PollingWorker):
    """
    Pulls new orders from the source and writes them to the POS DB.

    State is recorded only after the POS transaction committed, so a failed
    write leaves no trace and the order is picked up again on a later poll.
    """

    name = "order_sync"

    def __init__(self, settings: SyncSettings, source, pos_repo, store: StateStore):
        super().__init__(store, settings.order_poll_interval)
        self.source = source
        self.pos_repo = pos_repo
        self.store_id = settings.store_id
        self.page_size = settings.order_page_size if settings.order_page_size > 0 else 100
        self.machine = ingest_machine()
        # Orders rejected for bad data are not retried while the process lives
        self.rejected: Set[str] = set()

    def run_cycle(self, cancel: threading.Event) -> CycleStats:
        stats = CycleStats()
        self.machine.advance(IngestPhase.FETCHING)
        try:
            watermark = self.store.get_max_pulled_timestamp()
            self.log.info(
                f"Checking order source for new orders since {watermark.isoformat() if watermark else 'beginning'}"
            )
            orders = self.source.fetch_orders(watermark, self.page_size, cancel)
            self.log.info(f"Found {len(orders)} new orders from order source.")

            for order in orders:
                if cancel.is_set():
                    stats.cancelled = True
                    self.log.info("Order sync cancelled before next order.")
                    break

                stats.seen += 1
                self.machine.advance(IngestPhase.DEDUPING, order.order_id)
                outcome = self._process_order(order)
                if outcome == "ingested":
                    stats.processed += 1
                elif outcome == "skipped":
                    stats.skipped += 1
                else:
                    stats.failed += 1
        finally:
            self.machine.reset()

        self.log.info(
            f"Order sync cycle finished | seen={stats.seen}, ingested={stats.processed}, "
            f"skipped={stats.skipped}, failed={stats.failed}"
        )
        return stats

    def _process_order(self, order: ExternalOrder) -> str:
        oid = order.order_id
        self.log.debug(f"Processing order {oid}")

        if not oid:
            self.log.warning("Order without an id from order source. Skipping.")
            return "skipped"

        if oid in self.rejected:
            self.log.debug(f"Order {oid} was rejected earlier for invalid data. Skipping.")
            return "skipped"

        try:
            existing = self.store.get_by_external_id(oid)
            if existing is not None:
                self.log.warning(f"Order {oid} already exists in state DB. Skipping insertion.")
                return "skipped"

            self.machine.advance(IngestPhase.WRITING, oid)
            pos_order_id = self.pos_repo.save_order(order)
            self.log.info(f"Saved order {oid} to POS DB with POS order id {pos_order_id}")

            self.machine.advance(IngestPhase.RECORDING, oid)
            self.store.insert_if_absent(ProcessingState(
                external_id=oid,
                hashed_external_id=hash_order_id(oid),
                pos_order_id=pos_order_id,
                last_status_sent=None,
                order_pulled_at=utc_now(),
            ))
            self.log.info(f"Successfully processed order {oid} to POS and state DB.")
            return "ingested"

        except SyncCancelled:
            raise
        except OrderDataError as e:
            self.rejected.add(oid)
            self.log.error(f"Order {oid} has invalid data and will not be retried: {e}")
            return "failed"
        except Exception as e:
            self.log.exception(f"Failed to process or save order {oid}: {e}")
            return "failed"
