"""Durable collections for credentials, conversations and messages."""

from __future__ import annotations

import asyncio
import logging
import sqlite3
import threading
from typing import Any, Callable, TypeVar

from chatstream.chat.models import Conversation, Credential, Message
from chatstream.errors import StorageError

from .backends import DatabaseBackend, create_backend

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ChatStore:
    """Persistent store for the chat data model.

    Every public operation is a coroutine; the blocking SQLite call runs in
    the loop's default executor. Any database failure surfaces as
    ``StorageError`` and is never retried here.

    Lifecycle: the schema is created on first use (or by ``open()``), the
    store is shared for the process lifetime and ``close()`` releases the
    connection on shutdown.
    """

    SCHEMA = """
        CREATE TABLE IF NOT EXISTS credentials (
            id TEXT PRIMARY KEY,
            name TEXT NOT NULL,
            provider TEXT NOT NULL,
            secret TEXT NOT NULL,
            is_default INTEGER NOT NULL DEFAULT 0
        );

        CREATE TABLE IF NOT EXISTS conversations (
            id TEXT PRIMARY KEY,
            title TEXT NOT NULL DEFAULT 'New Chat',
            created_at TEXT NOT NULL,
            selected_credential_id TEXT,
            selected_server_id TEXT
        );

        CREATE TABLE IF NOT EXISTS messages (
            seq INTEGER PRIMARY KEY AUTOINCREMENT,
            id TEXT NOT NULL UNIQUE,
            conversation_id TEXT NOT NULL,
            role TEXT NOT NULL,
            content TEXT NOT NULL,
            timestamp TEXT NOT NULL,
            FOREIGN KEY (conversation_id) REFERENCES conversations(id) ON DELETE CASCADE
        );

        CREATE INDEX IF NOT EXISTS idx_messages_conversation
        ON messages(conversation_id, seq);
    """

    def __init__(self, backend: DatabaseBackend):
        self.backend = backend
        self._schema_ready = False
        self._schema_lock = threading.Lock()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def open(self) -> None:
        """Create the schema if it does not exist yet."""
        await self._run(lambda: None)

    async def close(self) -> None:
        """Close the backend connection."""
        await self._run_raw(self.backend.close)
        self._schema_ready = False

    def _ensure_schema(self) -> None:
        with self._schema_lock:
            if not self._schema_ready:
                self.backend.executescript(self.SCHEMA)
                self._schema_ready = True

    async def _run_raw(self, func: Callable[[], T]) -> T:
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(None, func)
        except sqlite3.Error as e:
            logger.error(f"Store operation failed: {e}")
            raise StorageError(f"Storage unavailable: {e}") from e

    async def _run(self, func: Callable[..., T], *args: Any) -> T:
        def call() -> T:
            self._ensure_schema()
            return func(*args)

        return await self._run_raw(call)

    # ------------------------------------------------------------------
    # Credentials
    # ------------------------------------------------------------------

    async def list_credentials(self) -> list[Credential]:
        """List all stored credentials."""
        rows = await self._run(
            self.backend.fetchall, "SELECT * FROM credentials ORDER BY rowid ASC"
        )
        return [Credential.from_db_row(row) for row in rows]

    async def get_credential(self, credential_id: str) -> Credential | None:
        """Get a credential by id."""
        row = await self._run(
            self.backend.fetchone,
            "SELECT * FROM credentials WHERE id = ?",
            (credential_id,),
        )
        return Credential.from_db_row(row) if row else None

    async def get_default_credential(self) -> Credential | None:
        """Get the credential marked as default, if any."""
        row = await self._run(
            self.backend.fetchone,
            "SELECT * FROM credentials WHERE is_default = 1 ORDER BY rowid LIMIT 1",
        )
        return Credential.from_db_row(row) if row else None

    async def add_credential(self, credential: Credential) -> Credential:
        """Store a new credential.

        The first credential stored becomes the default. Adding one that is
        already marked default clears the flag on every other credential.
        """
        return await self._run(self._write_credential, credential, False)

    async def update_credential(self, credential: Credential) -> Credential:
        """Insert or replace a credential (last write wins)."""
        return await self._run(self._write_credential, credential, True)

    def _write_credential(self, credential: Credential, upsert: bool) -> Credential:
        with self.backend.transaction():
            if not upsert:
                row = self.backend.fetchone("SELECT COUNT(*) AS count FROM credentials")
                if row and row["count"] == 0:
                    credential = credential.model_copy(update={"is_default": True})
            if credential.is_default:
                self.backend.execute(
                    "UPDATE credentials SET is_default = 0 WHERE id != ?",
                    (credential.id,),
                )
            query = """
                INSERT INTO credentials (id, name, provider, secret, is_default)
                VALUES (?, ?, ?, ?, ?)
            """
            if upsert:
                query += """
                    ON CONFLICT(id) DO UPDATE SET
                        name = excluded.name,
                        provider = excluded.provider,
                        secret = excluded.secret,
                        is_default = excluded.is_default
                """
            self.backend.execute(
                query,
                (
                    credential.id,
                    credential.name,
                    credential.provider_id,
                    credential.secret,
                    int(credential.is_default),
                ),
            )
        logger.info(
            f"Stored credential {credential.id} ({credential.provider_id})"
        )
        return credential

    async def set_default_credential(self, credential_id: str) -> bool:
        """Mark one credential as default and every other one as not default.

        Returns:
            False if the credential does not exist (nothing changes).
        """
        return await self._run(self._set_default_credential, credential_id)

    def _set_default_credential(self, credential_id: str) -> bool:
        with self.backend.transaction():
            row = self.backend.fetchone(
                "SELECT id FROM credentials WHERE id = ?", (credential_id,)
            )
            if not row:
                return False
            self.backend.execute(
                "UPDATE credentials SET is_default = CASE WHEN id = ? THEN 1 ELSE 0 END",
                (credential_id,),
            )
        return True

    async def delete_credential(self, credential_id: str) -> bool:
        """Delete a credential and unselect it from every conversation."""
        return await self._run(self._delete_credential, credential_id)

    def _delete_credential(self, credential_id: str) -> bool:
        with self.backend.transaction():
            row = self.backend.fetchone(
                "SELECT id FROM credentials WHERE id = ?", (credential_id,)
            )
            if not row:
                return False
            self.backend.execute(
                "DELETE FROM credentials WHERE id = ?", (credential_id,)
            )
            self.backend.execute(
                "UPDATE conversations SET selected_credential_id = NULL "
                "WHERE selected_credential_id = ?",
                (credential_id,),
            )
        logger.info(f"Deleted credential {credential_id}")
        return True

    # ------------------------------------------------------------------
    # Conversations
    # ------------------------------------------------------------------

    async def list_conversations(self) -> list[Conversation]:
        """List conversations, oldest first."""
        rows = await self._run(
            self.backend.fetchall,
            "SELECT * FROM conversations ORDER BY created_at ASC, rowid ASC",
        )
        return [Conversation.from_db_row(row) for row in rows]

    async def get_conversation(self, conversation_id: str) -> Conversation | None:
        """Get a conversation by id."""
        row = await self._run(
            self.backend.fetchone,
            "SELECT * FROM conversations WHERE id = ?",
            (conversation_id,),
        )
        return Conversation.from_db_row(row) if row else None

    async def add_conversation(self, conversation: Conversation) -> Conversation:
        """Store a new conversation."""
        await self._run(
            self.backend.execute,
            """
            INSERT INTO conversations
                (id, title, created_at, selected_credential_id, selected_server_id)
            VALUES (?, ?, ?, ?, ?)
            """,
            self._conversation_params(conversation),
        )
        logger.info(f"Created conversation: {conversation.id}")
        return conversation

    async def update_conversation(self, conversation: Conversation) -> Conversation:
        """Insert or update a conversation in place (its messages are kept)."""
        await self._run(
            self.backend.execute,
            """
            INSERT INTO conversations
                (id, title, created_at, selected_credential_id, selected_server_id)
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                title = excluded.title,
                selected_credential_id = excluded.selected_credential_id,
                selected_server_id = excluded.selected_server_id
            """,
            self._conversation_params(conversation),
        )
        return conversation

    @staticmethod
    def _conversation_params(conversation: Conversation) -> tuple:
        return (
            conversation.id,
            conversation.title,
            conversation.created_at.isoformat(),
            conversation.selected_credential_id,
            conversation.selected_server_id,
        )

    async def delete_conversation(self, conversation_id: str) -> bool:
        """Delete a conversation and all of its messages.

        Returns:
            True if deleted, False if not found.
        """
        return await self._run(self._delete_conversation, conversation_id)

    def _delete_conversation(self, conversation_id: str) -> bool:
        with self.backend.transaction():
            row = self.backend.fetchone(
                "SELECT id FROM conversations WHERE id = ?", (conversation_id,)
            )
            if not row:
                return False
            # Explicit delete as well as the FK cascade, for files created
            # without foreign key enforcement
            self.backend.execute(
                "DELETE FROM messages WHERE conversation_id = ?", (conversation_id,)
            )
            self.backend.execute(
                "DELETE FROM conversations WHERE id = ?", (conversation_id,)
            )
        logger.info(f"Deleted conversation: {conversation_id}")
        return True

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    async def add_message(self, message: Message) -> Message:
        """Append a message; returns it with its sequence assigned."""
        seq = await self._run(self._insert_message, message)
        return message.model_copy(update={"sequence": seq})

    async def add_messages(self, messages: list[Message]) -> list[Message]:
        """Append several messages in order, atomically."""

        def insert_all() -> list[int]:
            with self.backend.transaction():
                return [self._insert_message(m) for m in messages]

        seqs = await self._run(insert_all)
        return [m.model_copy(update={"sequence": s}) for m, s in zip(messages, seqs)]

    def _insert_message(self, message: Message) -> int:
        return self.backend.execute(
            """
            INSERT INTO messages (id, conversation_id, role, content, timestamp)
            VALUES (?, ?, ?, ?, ?)
            """,
            (
                message.id,
                message.conversation_id,
                message.role.value,
                message.content,
                message.timestamp.isoformat(),
            ),
        )

    async def get_messages(self, conversation_id: str) -> list[Message]:
        """All messages of a conversation ordered by sequence."""
        rows = await self._run(
            self.backend.fetchall,
            "SELECT * FROM messages WHERE conversation_id = ? ORDER BY seq ASC",
            (conversation_id,),
        )
        return [Message.from_db_row(row) for row in rows]

    async def get_message(self, message_id: str) -> Message | None:
        """Get a message by id."""
        row = await self._run(
            self.backend.fetchone, "SELECT * FROM messages WHERE id = ?", (message_id,)
        )
        return Message.from_db_row(row) if row else None

    async def update_message(self, message: Message) -> bool:
        """Overwrite a persisted message's content (last write wins)."""

        def update() -> bool:
            with self.backend.transaction():
                row = self.backend.fetchone(
                    "SELECT seq FROM messages WHERE id = ?", (message.id,)
                )
                if not row:
                    return False
                self.backend.execute(
                    "UPDATE messages SET role = ?, content = ?, timestamp = ? WHERE id = ?",
                    (
                        message.role.value,
                        message.content,
                        message.timestamp.isoformat(),
                        message.id,
                    ),
                )
            return True

        return await self._run(update)

    async def delete_message(self, message_id: str) -> bool:
        """Delete one message."""

        def delete() -> bool:
            with self.backend.transaction():
                row = self.backend.fetchone(
                    "SELECT seq FROM messages WHERE id = ?", (message_id,)
                )
                if not row:
                    return False
                self.backend.execute("DELETE FROM messages WHERE id = ?", (message_id,))
            return True

        return await self._run(delete)

    async def get_latest_message(self, conversation_id: str) -> Message | None:
        """The highest-sequence message of a conversation."""
        row = await self._run(
            self.backend.fetchone,
            """
            SELECT * FROM messages WHERE conversation_id = ?
            ORDER BY seq DESC LIMIT 1
            """,
            (conversation_id,),
        )
        return Message.from_db_row(row) if row else None

    async def get_message_count(self, conversation_id: str) -> int:
        """Number of persisted messages in a conversation."""
        row = await self._run(
            self.backend.fetchone,
            "SELECT COUNT(*) AS count FROM messages WHERE conversation_id = ?",
            (conversation_id,),
        )
        return row["count"] if row else 0

    async def clear_all(self) -> None:
        """Remove every credential, conversation and message."""

        def clear() -> None:
            with self.backend.transaction():
                self.backend.execute("DELETE FROM messages")
                self.backend.execute("DELETE FROM conversations")
                self.backend.execute("DELETE FROM credentials")

        await self._run(clear)
        logger.info("Cleared all stored data")


_store: ChatStore | None = None


def get_store(url: str | None = None) -> ChatStore:
    """Get the process-wide store, creating it from settings on first use."""
    global _store
    if _store is None:
        if url is None:
            from chatstream.config import get_settings

            url = get_settings().database_url
        _store = ChatStore(create_backend(url))
    return _store


def reset_store() -> None:
    """Drop the process-wide store (its connection is closed)."""
    global _store
    if _store is not None:
        _store.backend.close()
    _store = None
