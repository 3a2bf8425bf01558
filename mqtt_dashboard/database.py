#!/usr/bin/env python3
"""SQLite-backed preference store for mqtt_dashboard."""

from __future__ import annotations

import pathlib
import sqlite3
import threading
from typing import Optional

from .models import utc_now_iso


class PrefStore:
    """Small key/value table for settings that survive restarts (broker URL, theme)."""

    def __init__(self, path: str = ":memory:") -> None:
        if path != ":memory:":
            p = pathlib.Path(path).expanduser()
            p.parent.mkdir(parents=True, exist_ok=True)
            path = str(p)
        self.path = path
        self._lock = threading.Lock()
        self._conn = sqlite3.connect(self.path, check_same_thread=False, timeout=30.0)
        self._conn.execute("PRAGMA busy_timeout=5000;")
        self._init_schema()

    def _init_schema(self) -> None:
        with self._conn:
            self._conn.executescript(
                """
                CREATE TABLE IF NOT EXISTS preference (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL,
                    updated_utc TEXT
                );
                """
            )

    def close(self) -> None:
        try:
            self._conn.close()
        except Exception:
            pass

    def get(self, key: str, default: Optional[str] = None) -> Optional[str]:
        with self._lock:
            row = self._conn.execute("SELECT value FROM preference WHERE key=?", (key,)).fetchone()
        return row[0] if row else default

    def set(self, key: str, value: str) -> None:
        with self._lock, self._conn:
            self._conn.execute(
                """
                INSERT INTO preference(key, value, updated_utc) VALUES (?,?,?)
                ON CONFLICT(key) DO UPDATE SET
                    value=excluded.value,
                    updated_utc=excluded.updated_utc
                """,
                (key, value, utc_now_iso()),
            )
