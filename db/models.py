"""
Database schema and helpers for the up/down market assistant.

Uses raw SQL with sqlite3. Two tables:
- paper_state: single-row full-state document of the paper engine
- signals: one row per published snapshot
"""

import json
import sqlite3
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path

import pytz

from config import DB_PATH
from errors import PersistenceFailure

ET = pytz.timezone("America/New_York")

SIGNAL_COLUMNS = (
    "timestamp",
    "market_slug",
    "time_left_min",
    "phase",
    "regime",
    "model_up",
    "model_down",
    "market_up",
    "market_down",
    "edge_up",
    "edge_down",
    "action",
    "side",
    "strength",
    "price_to_beat",
    "oracle_price",
    "spot_price",
)


def get_connection(db_path: Path | str | None = None) -> sqlite3.Connection:
    """Get a SQLite connection with row factory enabled."""
    path = db_path or DB_PATH
    Path(path).parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(str(path))
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL")
    return conn


@contextmanager
def get_db(conn: sqlite3.Connection | None = None, db_path: Path | str | None = None):
    """Context manager for DB connections. Commits on success, closes if we opened it."""
    should_close = conn is None
    if should_close:
        conn = get_connection(db_path)
    try:
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        if should_close:
            conn.close()


def init_tables(conn: sqlite3.Connection | None = None, db_path: Path | str | None = None) -> None:
    """Create all tables if they don't exist. Raises PersistenceFailure if the store is unusable."""
    try:
        _create_tables(conn, db_path)
    except (sqlite3.Error, OSError) as e:
        raise PersistenceFailure(f"Could not initialize {db_path or DB_PATH}: {e}") from e


def _create_tables(conn: sqlite3.Connection | None, db_path: Path | str | None) -> None:
    with get_db(conn, db_path) as c:
        c.executescript("""
        CREATE TABLE IF NOT EXISTS paper_state (
            id INTEGER PRIMARY KEY CHECK (id = 1),
            state TEXT NOT NULL,
            updated_at TEXT NOT NULL
        );

        CREATE TABLE IF NOT EXISTS signals (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            timestamp TEXT NOT NULL,
            market_slug TEXT,
            time_left_min REAL,
            phase TEXT,
            regime TEXT,
            model_up REAL,
            model_down REAL,
            market_up REAL,
            market_down REAL,
            edge_up REAL,
            edge_down REAL,
            action TEXT,
            side TEXT,
            strength TEXT,
            price_to_beat REAL,
            oracle_price REAL,
            spot_price REAL
        );

        CREATE INDEX IF NOT EXISTS idx_signals_slug ON signals(market_slug);
        """)


# ── Paper engine state ──


def save_paper_state(
    state: dict, conn: sqlite3.Connection | None = None, db_path: Path | str | None = None
) -> None:
    """Replace the stored paper state with a full snapshot.

    Raises PersistenceFailure if the document cannot be encoded or written.
    """
    try:
        payload = json.dumps(state)
        with get_db(conn, db_path) as c:
            c.execute(
                "INSERT INTO paper_state (id, state, updated_at) VALUES (1, ?, ?) "
                "ON CONFLICT(id) DO UPDATE SET state = excluded.state, updated_at = excluded.updated_at",
                [payload, datetime.now(ET).isoformat()],
            )
    except (sqlite3.Error, OSError, TypeError, ValueError) as e:
        raise PersistenceFailure(f"Could not save paper state: {e}") from e


def load_paper_state(
    conn: sqlite3.Connection | None = None, db_path: Path | str | None = None
) -> dict | None:
    """Return the stored paper state, or None if nothing has been saved yet.

    Raises PersistenceFailure on a corrupt document or an unreadable store;
    the caller decides how to recover.
    """
    try:
        with get_db(conn, db_path) as c:
            row = c.execute("SELECT state FROM paper_state WHERE id = 1").fetchone()
        if row is None:
            return None
        state = json.loads(row["state"])
    except (sqlite3.Error, OSError, ValueError) as e:
        raise PersistenceFailure(f"Could not load paper state: {e}") from e
    if not isinstance(state, dict):
        raise PersistenceFailure("Stored paper state is not an object")
    return state


# ── Signal log ──


def log_signal(data: dict, conn: sqlite3.Connection | None = None, db_path: Path | str | None = None) -> int:
    """Insert one signal row. Unknown keys are ignored. Returns the row ID."""
    row = {k: data.get(k) for k in SIGNAL_COLUMNS}
    if not row["timestamp"]:
        row["timestamp"] = datetime.now(ET).isoformat()
    columns = list(row.keys())
    placeholders = ", ".join(["?"] * len(columns))
    col_str = ", ".join(columns)
    with get_db(conn, db_path) as c:
        cursor = c.execute(
            f"INSERT INTO signals ({col_str}) VALUES ({placeholders})",
            [row[col] for col in columns],
        )
        return cursor.lastrowid


def get_recent_signals(
    limit: int = 20,
    market_slug: str | None = None,
    conn: sqlite3.Connection | None = None,
    db_path: Path | str | None = None,
) -> list[dict]:
    """Most recent signal rows, newest first."""
    with get_db(conn, db_path) as c:
        if market_slug:
            rows = c.execute(
                "SELECT * FROM signals WHERE market_slug = ? ORDER BY id DESC LIMIT ?",
                [market_slug, limit],
            ).fetchall()
        else:
            rows = c.execute(
                "SELECT * FROM signals ORDER BY id DESC LIMIT ?", [limit]
            ).fetchall()
        return [dict(r) for r in rows]


def prune_signals(max_rows: int, conn: sqlite3.Connection | None = None, db_path: Path | str | None = None) -> int:
    """Keep only the newest `max_rows` signal rows. Returns the number deleted."""
    with get_db(conn, db_path) as c:
        cursor = c.execute(
            "DELETE FROM signals WHERE id <= (SELECT MAX(id) FROM signals) - ?",
            [max_rows],
        )
        return cursor.rowcount
