import sqlite3
from datetime import datetime, timezone
from pathlib import Path

from models import RemoteUsage, UsageSnapshot

DB_PATH = Path(__file__).parent / "usage.db"

USAGE_KIND = "usage"
REMOTE_KIND = "remote"


def _get_conn(db_path: Path = DB_PATH) -> sqlite3.Connection:
    conn = sqlite3.connect(str(db_path))
    conn.execute("""
        CREATE TABLE IF NOT EXISTS snapshots (
            kind TEXT NOT NULL,
            data TEXT NOT NULL,
            updated_at TEXT NOT NULL,
            PRIMARY KEY (kind)
        )
    """)
    conn.commit()
    return conn


def _save(kind: str, data: str, db_path: Path) -> None:
    conn = _get_conn(db_path)
    try:
        conn.execute(
            "INSERT OR REPLACE INTO snapshots (kind, data, updated_at) VALUES (?, ?, ?)",
            (kind, data, datetime.now(timezone.utc).isoformat()),
        )
        conn.commit()
    finally:
        conn.close()


def _load(kind: str, db_path: Path) -> str | None:
    conn = _get_conn(db_path)
    try:
        row = conn.execute("SELECT data FROM snapshots WHERE kind = ?", (kind,)).fetchone()
    finally:
        conn.close()
    return row[0] if row else None


def save_snapshot(snapshot: UsageSnapshot, db_path: Path = DB_PATH) -> None:
    _save(USAGE_KIND, snapshot.model_dump_json(), db_path)


def load_snapshot(db_path: Path = DB_PATH) -> UsageSnapshot | None:
    data = _load(USAGE_KIND, db_path)
    return UsageSnapshot.model_validate_json(data) if data else None


def save_remote(usage: RemoteUsage, db_path: Path = DB_PATH) -> None:
    _save(REMOTE_KIND, usage.model_dump_json(), db_path)


def load_remote(db_path: Path = DB_PATH) -> RemoteUsage | None:
    data = _load(REMOTE_KIND, db_path)
    return RemoteUsage.model_validate_json(data) if data else None
