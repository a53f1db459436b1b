"""SQLite database layer: connection management and the user directory."""

from identity.db.connection import Database
from identity.db.user_directory import SqliteUserDirectory

__all__ = [
    "Database",
    "SqliteUserDirectory",
]
