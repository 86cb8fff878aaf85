"""SQLite-backed durable key/value store for the session."""

from __future__ import annotations

import sqlite3
from dataclasses import dataclass
from pathlib import Path

from ..utils import ensure_dir, now_utc_iso


DB_PATH = Path.home() / ".prism" / "store.sqlite"

CREDENTIAL_KEY = "credential"
HISTORY_KEY = "history"


@dataclass
class LocalStore:
    path: Path = DB_PATH

    def connect(self) -> sqlite3.Connection:
        ensure_dir(self.path.parent)
        conn = sqlite3.connect(self.path)
        conn.row_factory = sqlite3.Row
        return conn

    def init_db(self) -> None:
        with self.connect() as conn:
            conn.executescript(
                """
                CREATE TABLE IF NOT EXISTS entries (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL,
                    updated_at TEXT
                );
                """
            )

    def get(self, key: str) -> str | None:
        with self.connect() as conn:
            row = conn.execute("SELECT value FROM entries WHERE key = ?", (key,)).fetchone()
        return row[0] if row else None

    def set(self, key: str, value: str) -> None:
        with self.connect() as conn:
            conn.execute(
                """
                INSERT INTO entries (key, value, updated_at)
                VALUES (?, ?, ?)
                ON CONFLICT(key) DO UPDATE SET
                    value=excluded.value,
                    updated_at=excluded.updated_at
                """,
                (key, value, now_utc_iso()),
            )

    def delete(self, key: str) -> None:
        with self.connect() as conn:
            conn.execute("DELETE FROM entries WHERE key = ?", (key,))

    def keys(self) -> list[str]:
        with self.connect() as conn:
            rows = conn.execute("SELECT key FROM entries ORDER BY key").fetchall()
        return [row[0] for row in rows]
