# warpio_gateway/db.py
# Copyright (c) 2026 Monolink Systems
# Licensed under AGPLv3
import os
import sqlite3
import threading
from contextlib import contextmanager

from .utils.logger import get_logger

logger = get_logger("warpio_gateway.registry")

SCHEMA = """
CREATE TABLE IF NOT EXISTS users (
    id TEXT PRIMARY KEY,
    username TEXT UNIQUE NOT NULL,
    password_hash TEXT NOT NULL,
    home_directory TEXT NOT NULL,
    api_key TEXT,
    created_at TEXT NOT NULL,
    last_login TEXT
);
"""


class RegistryError(RuntimeError):
    """The user registry exists but cannot be read or written."""


class UserRegistry:
    """
    Single SQLite file holding every user record.

    All connections are serialized through one lock so that read-modify-write
    sequences from concurrent requests in this process cannot interleave;
    ``BEGIN IMMEDIATE`` covers other processes sharing the file.
    """

    def __init__(self, path: str):
        self.path = os.path.abspath(path)
        self._lock = threading.Lock()
        self._schema_ready = False

    def _ensure_dirs(self):
        parent = os.path.dirname(self.path)
        if parent and not os.path.exists(parent):
            os.makedirs(parent, exist_ok=True)

    def _open(self) -> sqlite3.Connection:
        self._ensure_dirs()
        conn = sqlite3.connect(self.path, timeout=5.0, isolation_level=None)
        conn.row_factory = sqlite3.Row
        return conn

    @contextmanager
    def connect(self, *, write: bool = False):
        """
        Yield a connection inside a transaction.

        Any SQLite-level failure other than a constraint violation is raised
        as RegistryError: an unreadable registry must never look empty.
        """
        with self._lock:
            try:
                conn = self._open()
            except sqlite3.Error as exc:
                logger.error("Registry %s cannot be opened: %s", self.path, exc)
                raise RegistryError("User registry unavailable") from exc
            try:
                if not self._schema_ready:
                    conn.executescript(SCHEMA)
                    self._schema_ready = True
                conn.execute("BEGIN IMMEDIATE" if write else "BEGIN")
                yield conn
                conn.execute("COMMIT")
            except sqlite3.IntegrityError:
                conn.execute("ROLLBACK")
                raise
            except sqlite3.DatabaseError as exc:
                if conn.in_transaction:
                    conn.execute("ROLLBACK")
                logger.error("Registry %s is unreadable: %s", self.path, exc)
                raise RegistryError("User registry unavailable") from exc
            except BaseException:
                if conn.in_transaction:
                    conn.execute("ROLLBACK")
                raise
            finally:
                conn.close()
