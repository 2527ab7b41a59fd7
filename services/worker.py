# services/worker.py

import threading
from dataclasses import dataclass
from typing import Optional

from db import StateStore
from exceptions import SyncCancelled
from logger import get_logger


@dataclass
class CycleStats:
    seen: int = 0
    processed: int = 0
    skipped: int = 0
    failed: int = 0
    cancelled: bool = False


class PollingWorker:
    """
    Cooperative periodic loop: run one cycle, then wait on the cancel event
    for ``interval`` seconds. A failed cycle is logged and retried on the next
    interval; only the cancel event ends the loop.
    """

    name = "worker"

    def __init__(self, store: Optional[StateStore], interval: float):
        self.store = store
        self.interval = interval
        self.log = get_logger(self.name)

    def enabled(self) -> bool:
        return True

    def run_cycle(self, cancel: threading.Event) -> CycleStats:
        raise NotImplementedError

    def _mark_run(self) -> Optional[str]:
        if self.store is None:
            return None
        try:
            return self.store.mark_run(self.name)
        except Exception as e:
            self.log.warning(f"Could not record run start: {e}")
            return None

    def _close_run(self, run_id: Optional[str], status: str, stats: CycleStats, error: Optional[str] = None) -> None:
        if run_id is None:
            return
        try:
            self.store.close_run(
                run_id, status,
                seen=stats.seen, processed=stats.processed,
                skipped=stats.skipped, failed=stats.failed,
                error=error,
            )
        except Exception as e:
            self.log.warning(f"Could not record run {run_id} end: {e}")

    def run_once(self, cancel: threading.Event) -> Optional[CycleStats]:
        """One cycle with the run ledger around it. Returns None when the cycle aborted."""
        run_id = self._mark_run()
        try:
            stats = self.run_cycle(cancel)
        except SyncCancelled:
            self.log.info(f"{self.name} cancellation requested.")
            self._close_run(run_id, "CANCELLED", CycleStats(cancelled=True))
            return CycleStats(cancelled=True)
        except Exception as e:
            self.log.exception(f"Error occurred during {self.name} cycle: {e}")
            self._close_run(run_id, "FAILED", CycleStats(), error=str(e)[:2000])
            return None

        status = "CANCELLED" if stats.cancelled else "OK"
        self._close_run(run_id, status, stats)
        return stats

    def run(self, cancel: threading.Event) -> None:
        if not self.enabled():
            return

        self.log.info(f"{self.name} starting. Interval: {self.interval}s")
        while not cancel.is_set():
            self.run_once(cancel)

            self.log.debug(f"{self.name} cycle complete. Waiting for {self.interval}s")
            if cancel.wait(self.interval):
                self.log.info(f"{self.name} stopping during delay.")
                break

        self.log.info(f"{self.name} stopped.")

    def start(self, cancel: threading.Event) -> threading.Thread:
        t = threading.Thread(target=self.run, args=(cancel,), name=self.name, daemon=True)
        t.start()
        return t
