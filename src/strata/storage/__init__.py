"""Persistent chunk storage."""

from strata.storage.sqlite_store import SQLiteStore

__all__ = ["SQLiteStore"]
