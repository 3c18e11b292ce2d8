"""Persistent store for credentials, conversations and messages.

Provides SQLite persistence behind an asynchronous access layer.
"""

from .backends import DatabaseBackend, SQLiteBackend, create_backend
from .chat_store import ChatStore, get_store, reset_store

__all__ = [
    "DatabaseBackend",
    "SQLiteBackend",
    "create_backend",
    "ChatStore",
    "get_store",
    "reset_store",
]
