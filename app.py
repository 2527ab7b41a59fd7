# order_sync/app.py

import signal
import threading
from typing import List, Optional

from api import OrderSourceClient
from config import ENV, SyncSettings, load_settings
from db import StateStore
from exceptions import ConfigurationError
from logger import get_logger
from services.order_sync import OrderSyncWorker
from services.pos_orders import PosOrderRepository
from services.state_maintenance import StateMaintenanceWorker
from services.status_update import OrderStatusUpdateWorker
from services.worker import PollingWorker

log = get_logger("app")


def build_workers(settings: SyncSettings) -> List[PollingWorker]:
    """
    Wire the three workers. A configuration fault stops only the workers that
    depend on the missing setting; the others still start.
    """
    store = StateStore(settings.state_db_path) if settings.state_db_path else None
    workers: List[PollingWorker] = []

    try:
        source = OrderSourceClient(settings)
        pos_repo = PosOrderRepository(settings)
    except ConfigurationError as e:
        log.critical(f"Order sync and status update workers NOT started: {e}")
        source = pos_repo = None

    if store is None:
        log.critical("STATE_DB_PATH is not configured. Order sync and status update workers NOT started.")
    elif source is not None and pos_repo is not None:
        workers.append(OrderSyncWorker(settings, source, pos_repo, store))
        workers.append(OrderStatusUpdateWorker(settings, source, pos_repo, store))

    workers.append(StateMaintenanceWorker(settings, store))
    return workers


def run(settings: SyncSettings, cancel: Optional[threading.Event] = None) -> int:
    cancel = cancel or threading.Event()
    workers = build_workers(settings)

    log.info(f"===== SERVICE START: env={ENV}, store={settings.store_id or '-'} =====")
    threads = [w.start(cancel) for w in workers]

    # join with a timeout so the main thread keeps receiving signals
    while any(t.is_alive() for t in threads) and not cancel.is_set():
        for t in threads:
            t.join(timeout=1.0)

    cancel.set()
    for t in threads:
        t.join()

    log.info("===== SERVICE EXIT =====")
    return 0


def main() -> int:
    try:
        settings = load_settings()
    except ConfigurationError as e:
        log.critical(f"Invalid configuration: {e}")
        return 2

    cancel = threading.Event()

    def _stop(signum, frame):
        log.info(f"Shutdown signal {signum} received.")
        cancel.set()

    signal.signal(signal.SIGINT, _stop)
    signal.signal(signal.SIGTERM, _stop)

    return run(settings, cancel)


if __name__ == "__main__":
    raise SystemExit(main())
