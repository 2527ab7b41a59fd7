# services/state_maintenance.py

import os
import threading
from datetime import timedelta
from typing import Optional

from config import SyncSettings, utc_now
from db import StateStore
from services.worker import CycleStats, PollingWorker

# Compact only when a sweep removed at least this many records
COMPACT_MIN_DELETED = 1


class StateMaintenanceWorker(PollingWorker):
    """Deletes state records past the retention window and compacts the state file."""

    name = "state_maintenance"

    def __init__(self, settings: SyncSettings, store: Optional[StateStore]):
        super().__init__(store, settings.maintenance_interval)
        self.retention_days = settings.state_retention_days
        self.db_path = store.path if store is not None else settings.state_db_path

        if not self.db_path:
            self.log.error("STATE_DB_PATH is not configured. State DB maintenance will NOT run.")
        if self.retention_days <= 0:
            self.log.warning(
                f"STATE_RETENTION_DAYS is {self.retention_days}. No state records will be deleted."
            )

    def enabled(self) -> bool:
        if not self.db_path or self.retention_days <= 0 or self.store is None:
            self.log.warning("State DB maintenance worker is disabled due to configuration.")
            return False
        return True

    def run_cycle(self, cancel: threading.Event) -> CycleStats:
        stats = CycleStats()
        if not os.path.exists(self.db_path):
            self.log.warning(f"State DB file not found at {self.db_path}. Skipping maintenance cycle.")
            return stats

        cutoff = utc_now() - timedelta(days=self.retention_days)
        self.log.info(f"Deleting state records last updated before {cutoff.isoformat()}")

        deleted = self.store.delete_older_than(cutoff)
        stats.processed = deleted
        self.log.info(f"Deleted {deleted} old state records.")

        pruned = self.store.prune_runs(cutoff)
        if pruned:
            self.log.info(f"Pruned {pruned} run ledger rows.")

        if cancel.is_set():
            stats.cancelled = True
            return stats

        if deleted >= COMPACT_MIN_DELETED:
            initial_size = os.path.getsize(self.db_path)
            self.log.info("Compacting state DB to reclaim space...")
            self.store.compact()
            final_size = os.path.getsize(self.db_path) if os.path.exists(self.db_path) else 0
            self.log.info(f"State DB compacted. Initial size: {initial_size} bytes, final size: {final_size} bytes")
        else:
            self.log.info("No old records found to delete. Compaction skipped.")
        return stats
