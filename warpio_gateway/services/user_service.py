# warpio_gateway/services/user_service.py
# Copyright (c) 2026 Monolink Systems
# Licensed under AGPLv3
import os
import sqlite3
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional

import bcrypt

from ..db import UserRegistry
from ..models.user import SessionClaims, User, UserCreate
from ..utils.logger import get_logger

logger = get_logger("warpio_gateway.users")


class DuplicateUsernameError(ValueError):
    pass


class SetupCompletedError(RuntimeError):
    pass


class HomeDirectoryError(ValueError):
    pass


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


class UserService:
    def __init__(self, registry: UserRegistry, home_root: str = "data/homes"):
        self.registry = registry
        self.home_root = Path(home_root)
        # Checked against when the username is unknown so both failure paths cost one bcrypt round.
        self._dummy_hash = bcrypt.hashpw(b"warpio-dummy-password", bcrypt.gensalt())

    def hash_password(self, password: str) -> str:
        return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("ascii")

    def verify_password(self, plain_password: str, stored_hash) -> bool:
        if isinstance(stored_hash, str):
            stored_hash = stored_hash.encode("utf-8")
        try:
            return bcrypt.checkpw(plain_password.encode("utf-8"), stored_hash)
        except ValueError:
            logger.warning("Stored password hash is malformed")
            return False

    def _prepare_home(self, username: str, requested: Optional[str]) -> str:
        home = Path(requested) if requested else self.home_root / username
        home = home.expanduser().resolve()
        try:
            home.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise HomeDirectoryError(f"Cannot create home directory for {username}") from exc
        if not home.is_dir() or not os.access(home, os.W_OK | os.X_OK):
            raise HomeDirectoryError(f"Home directory for {username} is not writable")
        return str(home)

    @staticmethod
    def _row_to_user(row) -> User:
        return User(
            id=row["id"],
            username=row["username"],
            home_directory=row["home_directory"],
            has_api_key=bool(row["api_key"]),
            created_at=row["created_at"],
            last_login=row["last_login"],
        )

    def _insert(self, conn, data: UserCreate) -> User:
        existing = conn.execute(
            "SELECT 1 FROM users WHERE username = ? LIMIT 1", (data.username,)
        ).fetchone()
        if existing:
            raise DuplicateUsernameError("Username already exists")

        home = self._prepare_home(data.username, data.home_directory)
        user_id = f"user-{uuid.uuid4().hex[:12]}"
        created_at = _utc_now()
        try:
            conn.execute(
                "INSERT INTO users (id, username, password_hash, home_directory, api_key, created_at) "
                "VALUES (?, ?, ?, ?, ?, ?)",
                (user_id, data.username, self.hash_password(data.password), home, data.api_key or None, created_at),
            )
        except sqlite3.IntegrityError as exc:
            raise DuplicateUsernameError("Username already exists") from exc
        logger.info(f"User created: {data.username} (home={home})")
        return User(
            id=user_id,
            username=data.username,
            home_directory=home,
            has_api_key=bool(data.api_key),
            created_at=created_at,
        )

    def create_user(self, data: UserCreate) -> User:
        with self.registry.connect(write=True) as conn:
            return self._insert(conn, data)

    def create_first_user(self, data: UserCreate) -> User:
        """Create the bootstrap user; refused as soon as the registry holds anyone."""
        with self.registry.connect(write=True) as conn:
            count = conn.execute("SELECT COUNT(*) FROM users").fetchone()[0]
            if count:
                raise SetupCompletedError("Setup already completed")
            return self._insert(conn, data)

    def has_any_user(self) -> bool:
        with self.registry.connect() as conn:
            row = conn.execute("SELECT 1 FROM users LIMIT 1").fetchone()
        return row is not None

    def authenticate(self, username: str, password: str) -> Optional[SessionClaims]:
        with self.registry.connect() as conn:
            row = conn.execute("SELECT * FROM users WHERE username = ?", (username,)).fetchone()
        if not row:
            self.verify_password(password, self._dummy_hash)
            return None
        if not self.verify_password(password, row["password_hash"]):
            return None
        with self.registry.connect(write=True) as conn:
            conn.execute("UPDATE users SET last_login = ? WHERE id = ?", (_utc_now(), row["id"]))
        return SessionClaims(
            user_id=row["id"],
            username=row["username"],
            working_directory=row["home_directory"],
            api_key=row["api_key"],
        )

    def get_user(self, user_id: str) -> Optional[User]:
        with self.registry.connect() as conn:
            row = conn.execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()
        return self._row_to_user(row) if row else None

    def list_users(self) -> List[User]:
        with self.registry.connect() as conn:
            rows = conn.execute("SELECT * FROM users ORDER BY created_at, username").fetchall()
        return [self._row_to_user(r) for r in rows]
