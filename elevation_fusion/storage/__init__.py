"""Storage module for completed sessions."""

from .sqlite_store import SessionStore, SqliteSessionStore

__all__ = ["SessionStore", "SqliteSessionStore"]
