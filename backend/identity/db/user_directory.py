"""SQLite-backed user directory."""

from __future__ import annotations

import asyncio
import logging
import sqlite3
import time
from typing import TYPE_CHECKING

from identity.directory import DirectoryError, UserConflictError, UserDirectory, UserNotFoundError
from identity.models import AuthUser

if TYPE_CHECKING:
    from collections.abc import Iterable

    from identity.db.connection import Database

logger = logging.getLogger(__name__)

_USER_COLUMNS = "uuid, username, email, first_name, email_verified_at, password_hash, api_key_hash"

_CONFLICT_FIELDS = (
    ("users.uuid", "uuid"),
    ("users.username", "username"),
    ("idx_users_username", "username"),
    ("users.email", "email"),
    ("idx_users_email", "email"),
    ("users.api_key_hash", "api_key_hash"),
    ("idx_users_api_key_hash", "api_key_hash"),
)


def _row_to_user(row: tuple) -> AuthUser:
    uuid, username, email, first_name, verified_at, password_hash, api_key_hash = row
    return AuthUser(
        uuid=uuid,
        username=username,
        email=email,
        first_name=first_name,
        email_verified_at=verified_at,
        password_hash=password_hash,
        api_key_hash=api_key_hash,
    )


def _conflict_from(exc: sqlite3.IntegrityError) -> DirectoryError:
    error_msg = str(exc).lower()
    for marker, field in _CONFLICT_FIELDS:
        if marker in error_msg:
            return UserConflictError(field)
    if "foreign key" in error_msg:
        return DirectoryError("unknown role")
    return DirectoryError(str(exc))  # pragma: no cover


class SqliteUserDirectory(UserDirectory):
    """SQLite implementation of UserDirectory.

    Writes are serialized under an asyncio lock; uniqueness is enforced by the
    schema and IntegrityError is mapped to UserConflictError.
    """

    def __init__(self, db: Database) -> None:
        self._db = db
        self._lock = asyncio.Lock()

    async def create_user(self, user: AuthUser, roles: Iterable[str] = ()) -> AuthUser:
        conn = self._db.connection
        async with self._lock:
            try:
                conn.execute(
                    f"INSERT INTO users ({_USER_COLUMNS}, created_at) VALUES (?, ?, ?, ?, ?, ?, ?, ?)",  # noqa: S608
                    (
                        user.uuid,
                        user.username,
                        user.email,
                        user.first_name,
                        user.email_verified_at,
                        user.password_hash,
                        user.api_key_hash,
                        int(time.time()),
                    ),
                )
                conn.executemany(
                    "INSERT INTO user_roles (user_uuid, role) VALUES (?, ?)",
                    [(user.uuid, role) for role in sorted(set(roles))],
                )
                conn.commit()
            except sqlite3.IntegrityError as exc:
                conn.rollback()
                raise _conflict_from(exc) from exc
        logger.info("user created: %s", user.uuid)
        return user

    async def get_by_uuid(self, uuid: str) -> AuthUser | None:
        return self._fetch_one("uuid = ?", uuid)

    async def get_by_username(self, username: str) -> AuthUser | None:
        """Look up a user by username (case-insensitive)."""
        return self._fetch_one("username = ? COLLATE NOCASE", username)

    async def get_by_email(self, email: str) -> AuthUser | None:
        """Look up a user by email (case-insensitive)."""
        return self._fetch_one("email = ? COLLATE NOCASE", email)

    async def get_by_api_key_hash(self, api_key_hash: str) -> AuthUser | None:
        return self._fetch_one("api_key_hash = ?", api_key_hash)

    async def set_password_hash(self, uuid: str, password_hash: str) -> AuthUser:
        return await self._update(uuid, "password_hash = ?", (password_hash,))

    async def mark_email_verified(self, uuid: str, verified_at: int) -> AuthUser:
        async with self._lock:
            conn = self._db.connection
            conn.execute(
                "UPDATE users SET email_verified_at = ? WHERE uuid = ? AND email_verified_at = 0",
                (verified_at, uuid),
            )
            conn.commit()
        return self._require(uuid)

    async def set_email(self, uuid: str, email: str) -> AuthUser:
        return await self._update(uuid, "email = ?, email_verified_at = 0", (email,))

    async def update_profile(
        self,
        uuid: str,
        *,
        username: str | None = None,
        first_name: str | None = None,
    ) -> AuthUser:
        assignments: list[str] = []
        params: list[str] = []
        if username is not None:
            assignments.append("username = ?")
            params.append(username)
        if first_name is not None:
            assignments.append("first_name = ?")
            params.append(first_name)
        if not assignments:
            return self._require(uuid)
        return await self._update(uuid, ", ".join(assignments), tuple(params))

    async def set_api_key_hash(self, uuid: str, api_key_hash: str | None) -> AuthUser:
        return await self._update(uuid, "api_key_hash = ?", (api_key_hash,))

    async def list_roles(self, uuid: str) -> list[str]:
        rows = self._db.connection.execute(
            "SELECT role FROM user_roles WHERE user_uuid = ? ORDER BY role",
            (uuid,),
        ).fetchall()
        return [row[0] for row in rows]

    async def set_roles(self, uuid: str, roles: Iterable[str]) -> list[str]:
        wanted = sorted(set(roles))
        conn = self._db.connection
        async with self._lock:
            if conn.execute("SELECT 1 FROM users WHERE uuid = ?", (uuid,)).fetchone() is None:
                raise UserNotFoundError(uuid)
            try:
                conn.execute("DELETE FROM user_roles WHERE user_uuid = ?", (uuid,))
                conn.executemany(
                    "INSERT INTO user_roles (user_uuid, role) VALUES (?, ?)",
                    [(uuid, role) for role in wanted],
                )
                conn.commit()
            except sqlite3.IntegrityError as exc:
                conn.rollback()
                raise _conflict_from(exc) from exc
        return wanted

    async def all_roles(self) -> list[str]:
        rows = self._db.connection.execute("SELECT name FROM roles ORDER BY name").fetchall()
        return [row[0] for row in rows]

    async def list_users(self, offset: int = 0, limit: int = 100, query: str = "") -> list[AuthUser]:
        sql = f"SELECT {_USER_COLUMNS} FROM users"  # noqa: S608
        params: tuple = ()
        if query:
            sql += " WHERE username LIKE ? OR email LIKE ?"
            pattern = f"%{query}%"
            params = (pattern, pattern)
        sql += " ORDER BY created_at, username LIMIT ? OFFSET ?"
        rows = self._db.connection.execute(sql, (*params, limit, offset)).fetchall()
        return [_row_to_user(row) for row in rows]

    async def count_users(self) -> int:
        row = self._db.connection.execute("SELECT COUNT(*) FROM users").fetchone()
        return row[0]

    async def delete_user(self, uuid: str) -> bool:
        async with self._lock:
            conn = self._db.connection
            cursor = conn.execute("DELETE FROM users WHERE uuid = ?", (uuid,))
            conn.commit()
        return cursor.rowcount > 0

    # -- private helpers --

    def _fetch_one(self, where: str, value: str) -> AuthUser | None:
        row = self._db.connection.execute(
            f"SELECT {_USER_COLUMNS} FROM users WHERE {where}",  # noqa: S608
            (value,),
        ).fetchone()
        if row is None:
            return None
        return _row_to_user(row)

    def _require(self, uuid: str) -> AuthUser:
        user = self._fetch_one("uuid = ?", uuid)
        if user is None:
            raise UserNotFoundError(uuid)
        return user

    async def _update(self, uuid: str, assignments: str, params: tuple) -> AuthUser:
        conn = self._db.connection
        async with self._lock:
            try:
                cursor = conn.execute(f"UPDATE users SET {assignments} WHERE uuid = ?", (*params, uuid))  # noqa: S608
                conn.commit()
            except sqlite3.IntegrityError as exc:
                conn.rollback()
                raise _conflict_from(exc) from exc
        if cursor.rowcount == 0:
            raise UserNotFoundError(uuid)
        return self._require(uuid)
