# db.py

import os
import sqlite3
import threading
import uuid
from datetime import datetime, timezone
from typing import Any, List, Dict, Optional, Tuple

from config import utc_now
from logger import get_logger
from models import ProcessingState


log = get_logger("db")

STATE_TABLE = "order_processing_state"


# ---------- POS (DB-API) Helpers ----------
def fetchall_dict(cur) -> List[Dict[str, Any]]:
    cols = [c[0] for c in cur.description]
    out = []
    for row in cur.fetchall():
        d = dict(zip(cols, row))

        # Add lowercase aliases so ODBC drivers that upper-case names still work
        for k, v in list(d.items()):
            lk = str(k).lower()
            if lk not in d:
                d[lk] = v

        out.append(d)
    return out

def rquery(conn, sql: str, params: Tuple[Any, ...] = ()) -> List[Dict[str, Any]]:
    cur = conn.cursor()
    cur.execute(sql, params)
    return fetchall_dict(cur)

def rexec(conn, sql: str, params: Tuple[Any, ...] = ()) -> int:
    cur = conn.cursor()
    cur.execute(sql, params)
    return cur.rowcount

def rscalar(conn, sql: str, params: Tuple[Any, ...] = ()) -> Any:
    cur = conn.cursor()
    cur.execute(sql, params)
    row = cur.fetchone()
    return row[0] if row else None


# ---------- Timestamps ----------
def to_db_ts(value: datetime) -> str:
    """Naive-UTC ISO text with fixed width, so lexical order == time order."""
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value.isoformat(sep="T", timespec="microseconds")

def from_db_ts(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    dt = datetime.fromisoformat(str(value))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def _table_columns(cur: sqlite3.Cursor, table: str) -> set[str]:
    cur.execute(f"PRAGMA table_info({table})")
    return {row[1] for row in cur.fetchall()}

def _ensure_column(cur: sqlite3.Cursor, table: str, column: str, col_type: str) -> None:
    cols = _table_columns(cur, table)
    if column not in cols:
        log.info(f"DB MIGRATION: adding column {table}.{column} {col_type}")
        cur.execute(f'ALTER TABLE {table} ADD COLUMN "{column}" {col_type}')


def _row_to_state(row: Optional[sqlite3.Row]) -> Optional[ProcessingState]:
    if row is None:
        return None
    return ProcessingState(
        external_id=row["external_id"],
        hashed_external_id=row["hashed_external_id"],
        pos_order_id=row["pos_order_id"],
        last_status_sent=row["last_status_sent"],
        order_pulled_at=from_db_ts(row["order_pulled_at"]),
        last_updated_at=from_db_ts(row["last_updated_at"]),
    )


# ---------- Local State DB ----------
class StateStore:
    """
    Durable processing state, one row per external order id.

    Both the external id and its hash are unique. Every call opens its own
    short-lived connection; writers are serialised by a process-wide lock so
    insert-if-absent and update-by-key never interleave. sqlite3 errors
    propagate to the caller.
    """

    _write_lock = threading.RLock()

    def __init__(self, path: str):
        if not path:
            raise ValueError("State DB path cannot be empty.")
        self.path = path
        self.init_db()

    def _conn(self, isolation_level: Optional[str] = "") -> sqlite3.Connection:
        conn = sqlite3.connect(self.path, timeout=30, isolation_level=isolation_level)
        conn.row_factory = sqlite3.Row
        return conn

    def init_db(self) -> None:
        db_dir = os.path.dirname(self.path)
        if db_dir and not os.path.isdir(db_dir):
            os.makedirs(db_dir, exist_ok=True)
            log.info(f"Created state DB directory: {db_dir}")

        with self._write_lock:
            conn = self._conn()
            try:
                cur = conn.cursor()
                cur.execute(f"""
                CREATE TABLE IF NOT EXISTS {STATE_TABLE} (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    external_id TEXT NOT NULL UNIQUE,
                    hashed_external_id TEXT NOT NULL UNIQUE,
                    pos_order_id TEXT,
                    last_status_sent TEXT,
                    order_pulled_at TEXT NOT NULL,
                    last_updated_at TEXT NOT NULL
                )
                """)

                cur.execute("""
                CREATE TABLE IF NOT EXISTS sync_runs (
                    run_id TEXT PRIMARY KEY,
                    worker TEXT NOT NULL,
                    start_ts TEXT NOT NULL,
                    end_ts TEXT,
                    status TEXT,
                    seen INTEGER DEFAULT 0,
                    processed INTEGER DEFAULT 0,
                    skipped INTEGER DEFAULT 0,
                    failed INTEGER DEFAULT 0
                )
                """)

                # ---- MIGRATIONS / SAFE UPGRADES ----
                _ensure_column(cur, "sync_runs", "error", "TEXT")

                cur.executescript(f"""
                CREATE INDEX IF NOT EXISTS idx_state_last_updated_at ON {STATE_TABLE}(last_updated_at);
                CREATE INDEX IF NOT EXISTS idx_state_order_pulled_at ON {STATE_TABLE}(order_pulled_at);
                CREATE INDEX IF NOT EXISTS idx_sync_runs_start_ts ON sync_runs(start_ts);
                """)
                conn.commit()
            finally:
                conn.close()

        log.info(f"State store initialized at {self.path}")

    # ---- processing state ----
    def insert_if_absent(self, state: ProcessingState) -> bool:
        """Insert a new record. A second insert for the same external id is ignored (first write wins)."""
        if state is None:
            raise ValueError("state cannot be None")
        if not state.external_id:
            raise ValueError("external_id cannot be empty")
        if not state.hashed_external_id:
            raise ValueError("hashed_external_id cannot be empty")

        now = utc_now()
        pulled = state.order_pulled_at or now

        with self._write_lock:
            conn = self._conn()
            try:
                cur = conn.execute(f"""
                INSERT OR IGNORE INTO {STATE_TABLE} (
                    external_id, hashed_external_id, pos_order_id,
                    last_status_sent, order_pulled_at, last_updated_at
                ) VALUES (?, ?, ?, ?, ?, ?)
                """, (
                    state.external_id, state.hashed_external_id, state.pos_order_id,
                    state.last_status_sent, to_db_ts(pulled), to_db_ts(now),
                ))
                inserted = cur.rowcount == 1

                if not inserted:
                    existing = conn.execute(
                        f"SELECT external_id FROM {STATE_TABLE} WHERE external_id=?",
                        (state.external_id,),
                    ).fetchone()
                    if existing:
                        log.warning(f"Order {state.external_id} already in state DB. Ignoring duplicate insert.")
                    else:
                        other = conn.execute(
                            f"SELECT external_id FROM {STATE_TABLE} WHERE hashed_external_id=?",
                            (state.hashed_external_id,),
                        ).fetchone()
                        log.error(
                            f"Hash collision: order {state.external_id} maps to {state.hashed_external_id} "
                            f"already held by order {other['external_id'] if other else '?'}. Not inserted."
                        )
                conn.commit()
            finally:
                conn.close()

        if inserted:
            log.info(f"Added processed order {state.external_id} (pos_order_id={state.pos_order_id})")
            state.order_pulled_at = pulled
            state.last_updated_at = now
        return inserted

    def get_by_external_id(self, external_id: str) -> Optional[ProcessingState]:
        if not external_id:
            return None
        conn = self._conn()
        try:
            row = conn.execute(
                f"SELECT * FROM {STATE_TABLE} WHERE external_id=?", (external_id,)
            ).fetchone()
        finally:
            conn.close()
        return _row_to_state(row)

    def get_by_hash(self, hashed_external_id: str) -> Optional[ProcessingState]:
        if not hashed_external_id:
            return None
        conn = self._conn()
        try:
            row = conn.execute(
                f"SELECT * FROM {STATE_TABLE} WHERE hashed_external_id=?", (hashed_external_id,)
            ).fetchone()
        finally:
            conn.close()
        return _row_to_state(row)

    def update_last_status(self, external_id: str, status: str) -> int:
        """Set last_status_sent and last_updated_at only. Never creates a record."""
        if not external_id:
            log.warning("update_last_status called with empty external_id.")
            return 0

        with self._write_lock:
            conn = self._conn()
            try:
                cur = conn.execute(f"""
                UPDATE {STATE_TABLE}
                   SET last_status_sent=?, last_updated_at=?
                 WHERE external_id=?
                """, (status, to_db_ts(utc_now()), external_id))
                updated = cur.rowcount
                conn.commit()
            finally:
                conn.close()

        if updated == 0:
            log.warning(f"Status update for order {external_id} ignored: no state record.")
        else:
            log.debug(f"Order {external_id}: last_status_sent={status} ({updated} row)")
        return updated

    def get_max_pulled_timestamp(self) -> Optional[datetime]:
        conn = self._conn()
        try:
            row = conn.execute(f"SELECT MAX(order_pulled_at) AS ts FROM {STATE_TABLE}").fetchone()
        finally:
            conn.close()
        return from_db_ts(row["ts"]) if row else None

    def delete_older_than(self, cutoff: datetime) -> int:
        with self._write_lock:
            conn = self._conn()
            try:
                cur = conn.execute(
                    f"DELETE FROM {STATE_TABLE} WHERE last_updated_at < ?", (to_db_ts(cutoff),)
                )
                deleted = cur.rowcount
                conn.commit()
            finally:
                conn.close()
        return deleted

    def compact(self) -> None:
        with self._write_lock:
            # VACUUM cannot run inside a transaction
            conn = self._conn(isolation_level=None)
            try:
                conn.execute("VACUUM")
            finally:
                conn.close()

    def count(self) -> int:
        conn = self._conn()
        try:
            row = conn.execute(f"SELECT COUNT(*) AS cnt FROM {STATE_TABLE}").fetchone()
        finally:
            conn.close()
        return int(row["cnt"])

    # ---- run ledger ----
    def mark_run(self, worker: str) -> str:
        run_id = str(uuid.uuid4())
        with self._write_lock:
            conn = self._conn()
            try:
                conn.execute("""
                INSERT INTO sync_runs (run_id, worker, start_ts, status)
                VALUES (?, ?, ?, 'RUNNING')
                """, (run_id, worker, to_db_ts(utc_now())))
                conn.commit()
            finally:
                conn.close()
        return run_id

    def close_run(
        self,
        run_id: str,
        status: str,
        seen: int = 0,
        processed: int = 0,
        skipped: int = 0,
        failed: int = 0,
        error: Optional[str] = None,
    ) -> None:
        with self._write_lock:
            conn = self._conn()
            try:
                conn.execute("""
                UPDATE sync_runs
                SET end_ts=?, status=?, seen=?, processed=?, skipped=?, failed=?, error=?
                WHERE run_id=?
                """, (to_db_ts(utc_now()), status, seen, processed, skipped, failed, error, run_id))
                conn.commit()
            finally:
                conn.close()

    def prune_runs(self, cutoff: datetime) -> int:
        with self._write_lock:
            conn = self._conn()
            try:
                cur = conn.execute("DELETE FROM sync_runs WHERE start_ts < ?", (to_db_ts(cutoff),))
                deleted = cur.rowcount
                conn.commit()
            finally:
                conn.close()
        return deleted

    def recent_runs(self, limit: int = 25, worker: Optional[str] = None) -> List[Dict[str, Any]]:
        conn = self._conn()
        try:
            if worker:
                rows = conn.execute(
                    "SELECT * FROM sync_runs WHERE worker=? ORDER BY start_ts DESC LIMIT ?",
                    (worker, limit),
                ).fetchall()
            else:
                rows = conn.execute(
                    "SELECT * FROM sync_runs ORDER BY start_ts DESC LIMIT ?", (limit,)
                ).fetchall()
        finally:
            conn.close()
        return [dict(r) for r in rows]
