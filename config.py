import os
from dataclasses import dataclass
from datetime import datetime, timezone

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from exceptions import ConfigurationError

ENV = os.getenv("ENV", "TEST").upper()

DEFAULTS = {
    "TEST": {
        "API_URL": "http://localhost:8080/api/v1",
        "DSN": "PosDb_Test64",
        "DB_USER": "odbcuser",
        "DB_PASS": "",
    },
    "LIVE": {
        "API_URL": "",
        "DSN": "PosDb_Live64",
        "DB_USER": "",
        "DB_PASS": "",
    }
}

# ---------------- Paths (stable, absolute) ----------------
BASE_DIR = os.path.dirname(os.path.abspath(__file__))

# Logging
LOG_DIR = os.getenv("LOG_DIR", os.path.join(BASE_DIR, "logs"))
LOG_FILE = os.getenv("LOG_FILE", "order_sync.log")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
LOG_TO_CONSOLE = os.getenv("LOG_TO_CONSOLE", "1").strip().lower() in ("1", "true", "yes")

DEFAULT_STATE_DB_PATH = os.path.join(BASE_DIR, "data", "sync_state.db")

# Fallbacks used when a configured interval is non-positive
DEFAULT_ORDER_POLL_SECONDS = 30
DEFAULT_STATUS_POLL_SECONDS = 120
DEFAULT_STATUS_LOOKBACK_HOURS = 24
DEFAULT_MAINTENANCE_HOURS = 24


@dataclass(frozen=True)
class SyncSettings:
    store_id: str = ""
    source_api_url: str = ""
    source_api_key: str = ""
    pos_conn_str: str = ""
    pos_identity_sql: str = "SELECT LAST_INSERT_ID()"
    pos_source_marker: str = "KODYORDER"
    pos_tender_keyword: str = "kody"
    state_db_path: str = DEFAULT_STATE_DB_PATH

    # Order sync worker
    order_poll_seconds: int = DEFAULT_ORDER_POLL_SECONDS
    order_page_size: int = 100

    # Status update worker
    status_poll_seconds: int = DEFAULT_STATUS_POLL_SECONDS
    status_lookback_hours: int = DEFAULT_STATUS_LOOKBACK_HOURS

    # State DB maintenance worker
    state_retention_days: int = 90
    maintenance_interval_hours: int = DEFAULT_MAINTENANCE_HOURS

    @property
    def order_poll_interval(self) -> int:
        return self.order_poll_seconds if self.order_poll_seconds > 0 else DEFAULT_ORDER_POLL_SECONDS

    @property
    def status_poll_interval(self) -> int:
        return self.status_poll_seconds if self.status_poll_seconds > 0 else DEFAULT_STATUS_POLL_SECONDS

    @property
    def status_lookback(self) -> int:
        return self.status_lookback_hours if self.status_lookback_hours > 0 else DEFAULT_STATUS_LOOKBACK_HOURS

    @property
    def maintenance_interval(self) -> int:
        hours = self.maintenance_interval_hours if self.maintenance_interval_hours > 0 else DEFAULT_MAINTENANCE_HOURS
        return hours * 3600


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer (got {raw!r})")


def load_settings() -> SyncSettings:
    """Build the settings value from the environment. Only app/admin entry points call this."""
    cfg = DEFAULTS["LIVE"] if ENV == "LIVE" else DEFAULTS["TEST"]

    dsn = os.getenv("POS_DSN", cfg["DSN"])
    db_user = os.getenv("POS_DB_USER", cfg["DB_USER"])
    db_pass = os.getenv("POS_DB_PASS", cfg["DB_PASS"])
    default_conn_str = f"DSN={dsn};UID={db_user};PWD={db_pass}" if dsn else ""

    return SyncSettings(
        store_id=os.getenv("ORDER_SOURCE_STORE_ID", ""),
        source_api_url=os.getenv("ORDER_SOURCE_API_URL", cfg["API_URL"]),
        source_api_key=os.getenv("ORDER_SOURCE_API_KEY", ""),
        pos_conn_str=os.getenv("POS_CONN_STR", default_conn_str),
        pos_identity_sql=os.getenv("POS_IDENTITY_SQL", "SELECT LAST_INSERT_ID()"),
        pos_tender_keyword=os.getenv("POS_TENDER_KEYWORD", "kody"),
        state_db_path=os.getenv("STATE_DB_PATH", DEFAULT_STATE_DB_PATH),
        order_poll_seconds=_env_int("ORDER_POLL_SECONDS", DEFAULT_ORDER_POLL_SECONDS),
        order_page_size=_env_int("ORDER_PAGE_SIZE", 100),
        status_poll_seconds=_env_int("STATUS_POLL_SECONDS", DEFAULT_STATUS_POLL_SECONDS),
        status_lookback_hours=_env_int("STATUS_LOOKBACK_HOURS", DEFAULT_STATUS_LOOKBACK_HOURS),
        state_retention_days=_env_int("STATE_RETENTION_DAYS", 90),
        maintenance_interval_hours=_env_int("STATE_MAINTENANCE_HOURS", DEFAULT_MAINTENANCE_HOURS),
    )


# -------------- DB Helpers --------------
def get_pos_conn(conn_str: str):
    import pyodbc

    return pyodbc.connect(conn_str, autocommit=False, timeout=30)


# -------------- HTTP Session --------------
def build_session() -> requests.Session:
    session = requests.Session()
    retries = Retry(
        total=3,
        backoff_factor=2.0,
        status_forcelist=[502, 503, 504],
        allowed_methods=["GET", "POST"],
    )
    session.mount("http://", HTTPAdapter(max_retries=retries))
    session.mount("https://", HTTPAdapter(max_retries=retries))
    return session


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def utc_now_iso() -> str:
    return utc_now().strftime("%Y-%m-%dT%H:%M:%SZ")
