import os
import sys
import logging
from logging.handlers import RotatingFileHandler

from config import LOG_DIR, LOG_FILE, LOG_LEVEL, LOG_TO_CONSOLE

ROOT_LOGGER = "order_sync"

_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"


def _configure_root() -> logging.Logger:
    root = logging.getLogger(ROOT_LOGGER)
    if root.handlers:
        return root

    root.setLevel(getattr(logging, LOG_LEVEL, logging.INFO))
    fmt = logging.Formatter(_FORMAT)

    os.makedirs(LOG_DIR, exist_ok=True)
    handler = RotatingFileHandler(
        os.path.join(LOG_DIR, LOG_FILE),
        maxBytes=5 * 1024 * 1024,   # 5 MB
        backupCount=5,              # keep 5 logs
        encoding="utf-8",
    )
    handler.setFormatter(fmt)
    root.addHandler(handler)

    if LOG_TO_CONSOLE:
        console = logging.StreamHandler(sys.stdout)
        console.setFormatter(fmt)
        root.addHandler(console)

    return root


def get_logger(name: str) -> logging.Logger:
    """Child of the shared ``order_sync`` logger; handlers live on the parent only."""
    _configure_root()
    return logging.getLogger(f"{ROOT_LOGGER}.{name}")
