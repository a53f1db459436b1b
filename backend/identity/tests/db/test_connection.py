"""Tests for the SQLite Database wrapper."""

from __future__ import annotations

import os
import stat
from typing import TYPE_CHECKING

import pytest

from identity.db import Database

if TYPE_CHECKING:
    from pathlib import Path


class TestDatabase:
    def test_connect_creates_schema_and_parent_dirs(self, tmp_path: Path) -> None:
        db = Database(tmp_path / "nested" / "users.db")
        db.connect()
        try:
            tables = {
                row[0] for row in db.connection.execute("SELECT name FROM sqlite_master WHERE type = 'table'")
            }
            assert {"users", "roles", "user_roles"} <= tables
        finally:
            db.close()

    def test_connect_is_idempotent(self, tmp_path: Path) -> None:
        path = tmp_path / "users.db"
        for _ in range(2):
            db = Database(path)
            db.connect()
            db.close()

    def test_connection_requires_connect(self, tmp_path: Path) -> None:
        db = Database(tmp_path / "users.db")

        with pytest.raises(RuntimeError, match="not connected"):
            _ = db.connection

    def test_foreign_keys_enabled(self, tmp_path: Path) -> None:
        db = Database(tmp_path / "users.db")
        db.connect()
        try:
            assert db.connection.execute("PRAGMA foreign_keys").fetchone()[0] == 1
        finally:
            db.close()

    @pytest.mark.skipif(os.name != "posix", reason="POSIX permissions only")
    def test_file_permissions_restricted(self, tmp_path: Path) -> None:
        path = tmp_path / "users.db"
        db = Database(path)
        db.connect()
        try:
            assert stat.S_IMODE(path.stat().st_mode) == 0o600
        finally:
            db.close()
