"""SQLite persistence for the dashboard.

Two tables: ``cache_entries`` backs the slow (raw runs) cache tier, and
``optimization_history`` keeps the latest advisor result per user and
workflow.  WAL mode lets request threads read while a background refresh
writes.
"""

from __future__ import annotations

import json
import pathlib
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime, timezone

from actions_dashboard.config import DEFAULT_DB_PATH

_INITIALIZED_DBS: set[str] = set()
_INIT_LOCK = threading.Lock()

SCHEMA_SQL = """\
CREATE TABLE IF NOT EXISTS cache_entries (
    key         TEXT PRIMARY KEY,
    payload     TEXT NOT NULL,
    fetched_at  REAL NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_cache_entries_fetched_at ON cache_entries(fetched_at);

CREATE TABLE IF NOT EXISTS optimization_history (
    id                 INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id            TEXT    NOT NULL,
    workflow_id        INTEGER NOT NULL,
    owner              TEXT    NOT NULL,
    repo               TEXT    NOT NULL,
    result             TEXT    NOT NULL,
    prompt_tokens      INTEGER,
    completion_tokens  INTEGER,
    created_at         TEXT    NOT NULL,
    UNIQUE(user_id, workflow_id)
);
"""


def get_connection(db_path: str | pathlib.Path | None = None) -> sqlite3.Connection:
    path = str(db_path or DEFAULT_DB_PATH)
    conn = sqlite3.connect(path, check_same_thread=False, timeout=10)
    conn.row_factory = sqlite3.Row
    if path != ":memory:":
        conn.execute("PRAGMA journal_mode=WAL")
    with _INIT_LOCK:
        if path == ":memory:" or path not in _INITIALIZED_DBS:
            init_db(conn)
            if path != ":memory:":
                _INITIALIZED_DBS.add(path)
    return conn


@contextmanager
def db_connection(db_path: str | pathlib.Path | None = None):
    """Context manager that yields a DB connection and closes it on exit."""
    conn = get_connection(db_path)
    try:
        yield conn
    finally:
        conn.close()


def init_db(conn: sqlite3.Connection) -> None:
    conn.executescript(SCHEMA_SQL)


# ---------------------------------------------------------------------------
# Cache entries
# ---------------------------------------------------------------------------

def read_cache_entry(conn: sqlite3.Connection, key: str) -> tuple[object, float] | None:
    row = conn.execute(
        "SELECT payload, fetched_at FROM cache_entries WHERE key = ?", (key,)
    ).fetchone()
    if row is None:
        return None
    return json.loads(row["payload"]), float(row["fetched_at"])


def upsert_cache_entry(conn: sqlite3.Connection, key: str, payload: object, fetched_at: float) -> None:
    conn.execute(
        "INSERT INTO cache_entries (key, payload, fetched_at) VALUES (?, ?, ?) "
        "ON CONFLICT(key) DO UPDATE SET payload = excluded.payload, fetched_at = excluded.fetched_at",
        (key, json.dumps(payload), fetched_at),
    )
    conn.commit()


def delete_cache_entries_before(conn: sqlite3.Connection, cutoff: float) -> int:
    cur = conn.execute("DELETE FROM cache_entries WHERE fetched_at < ?", (cutoff,))
    conn.commit()
    return cur.rowcount


# ---------------------------------------------------------------------------
# Optimization history
# ---------------------------------------------------------------------------

def save_optimization(
    conn: sqlite3.Connection,
    user_id: str,
    workflow_id: int,
    owner: str,
    repo: str,
    result: dict,
    usage: dict | None = None,
) -> None:
    """Store the latest result for (user, workflow), replacing any earlier one."""
    usage = usage or {}
    conn.execute(
        "INSERT INTO optimization_history "
        "(user_id, workflow_id, owner, repo, result, prompt_tokens, completion_tokens, created_at) "
        "VALUES (?, ?, ?, ?, ?, ?, ?, ?) "
        "ON CONFLICT(user_id, workflow_id) DO UPDATE SET "
        "owner = excluded.owner, repo = excluded.repo, result = excluded.result, "
        "prompt_tokens = excluded.prompt_tokens, completion_tokens = excluded.completion_tokens, "
        "created_at = excluded.created_at",
        (
            user_id,
            workflow_id,
            owner,
            repo,
            json.dumps(result),
            usage.get("prompt_tokens"),
            usage.get("completion_tokens"),
            datetime.now(timezone.utc).isoformat(),
        ),
    )
    conn.commit()


def get_latest_optimization(conn: sqlite3.Connection, user_id: str, workflow_id: int) -> dict | None:
    row = conn.execute(
        "SELECT * FROM optimization_history WHERE user_id = ? AND workflow_id = ?",
        (user_id, workflow_id),
    ).fetchone()
    if row is None:
        return None
    return {
        "workflow_id": row["workflow_id"],
        "owner": row["owner"],
        "repo": row["repo"],
        "result": json.loads(row["result"]),
        "prompt_tokens": row["prompt_tokens"],
        "completion_tokens": row["completion_tokens"],
        "created_at": row["created_at"],
    }
