"""Tests for the persistent chat store."""

from __future__ import annotations

import pytest

from chatstream.chat.models import Conversation, Credential, Message, MessageRole, ProviderName
from chatstream.errors import StorageError
from chatstream.store import ChatStore, SQLiteBackend, create_backend

from conftest import FailingBackend


def make_credential(name="Work", provider=ProviderName.OPENAI, **kwargs):
    return Credential(name=name, provider=provider, secret=f"sk-{name.lower()}-1234567", **kwargs)


def user(conversation_id, content):
    return Message(conversation_id=conversation_id, role=MessageRole.USER, content=content)


def assistant(conversation_id, content):
    return Message(conversation_id=conversation_id, role=MessageRole.ASSISTANT, content=content)


class TestCreateBackend:
    """Tests for database URL parsing."""

    def test_sqlite_url(self):
        backend = create_backend("sqlite:///data/chat.db")
        assert isinstance(backend, SQLiteBackend)
        assert backend.db_path == "data/chat.db"

    def test_memory_url(self):
        assert create_backend("sqlite:///:memory:").db_path == ":memory:"

    def test_default_is_memory(self):
        assert create_backend().db_path == ":memory:"

    def test_unsupported_url(self):
        with pytest.raises(ValueError, match="Unsupported database URL"):
            create_backend("postgresql://localhost/chat")


class TestSQLiteBackend:
    """Tests for SQLiteBackend."""

    def test_transaction_rolls_back(self, db_path):
        """A failing transaction leaves nothing behind."""
        backend = SQLiteBackend(db_path=db_path)
        backend.executescript("CREATE TABLE t (x INTEGER)")
        with pytest.raises(RuntimeError):
            with backend.transaction():
                backend.execute("INSERT INTO t (x) VALUES (1)")
                raise RuntimeError("boom")
        assert backend.fetchone("SELECT COUNT(*) AS n FROM t")["n"] == 0
        backend.close()

    def test_nested_transaction_joins_outer(self, db_path):
        backend = SQLiteBackend(db_path=db_path)
        backend.executescript("CREATE TABLE t (x INTEGER)")
        with backend.transaction():
            backend.execute("INSERT INTO t (x) VALUES (1)")
            with backend.transaction():
                backend.execute("INSERT INTO t (x) VALUES (2)")
        assert [r["x"] for r in backend.fetchall("SELECT x FROM t ORDER BY x")] == [1, 2]
        backend.close()


class TestCredentials:
    """Tests for credential persistence."""

    @pytest.mark.asyncio
    async def test_first_credential_becomes_default(self, store: ChatStore):
        first = await store.add_credential(make_credential("Work"))
        second = await store.add_credential(make_credential("Home"))
        assert first.is_default is True
        assert second.is_default is False
        assert (await store.get_default_credential()).id == first.id

    @pytest.mark.asyncio
    async def test_set_default_is_exclusive(self, store: ChatStore):
        """Exactly one credential is default after set_default."""
        first = await store.add_credential(make_credential("Work"))
        second = await store.add_credential(make_credential("Home", ProviderName.ANTHROPIC))

        assert await store.set_default_credential(second.id) is True

        credentials = {c.id: c for c in await store.list_credentials()}
        assert credentials[second.id].is_default
        assert not credentials[first.id].is_default

    @pytest.mark.asyncio
    async def test_set_default_unknown(self, store: ChatStore):
        """Unknown ids change nothing."""
        first = await store.add_credential(make_credential("Work"))
        assert await store.set_default_credential("missing") is False
        assert (await store.get_default_credential()).id == first.id

    @pytest.mark.asyncio
    async def test_add_default_clears_others(self, store: ChatStore):
        await store.add_credential(make_credential("Work"))
        home = await store.add_credential(make_credential("Home", is_default=True))
        defaults = [c for c in await store.list_credentials() if c.is_default]
        assert [c.id for c in defaults] == [home.id]

    @pytest.mark.asyncio
    async def test_update_credential_last_write_wins(self, store: ChatStore):
        credential = await store.add_credential(make_credential("Work"))
        await store.update_credential(credential.model_copy(update={"name": "Office"}))
        assert (await store.get_credential(credential.id)).name == "Office"

    @pytest.mark.asyncio
    async def test_delete_credential_unselects(self, store: ChatStore):
        """Conversations that used a deleted key lose their selection."""
        credential = await store.add_credential(make_credential("Work"))
        conversation = await store.add_conversation(
            Conversation(selected_credential_id=credential.id)
        )

        assert await store.delete_credential(credential.id) is True
        assert await store.get_credential(credential.id) is None
        reloaded = await store.get_conversation(conversation.id)
        assert reloaded.selected_credential_id is None
        assert await store.delete_credential(credential.id) is False


class TestConversations:
    """Tests for conversation persistence."""

    @pytest.mark.asyncio
    async def test_add_and_get(self, store: ChatStore):
        conversation = await store.add_conversation(Conversation(selected_server_id="srv-1"))
        loaded = await store.get_conversation(conversation.id)
        assert loaded.title == "New Chat"
        assert loaded.selected_server_id == "srv-1"
        assert loaded.created_at == conversation.created_at

    @pytest.mark.asyncio
    async def test_get_missing(self, store: ChatStore):
        assert await store.get_conversation("missing") is None

    @pytest.mark.asyncio
    async def test_update_keeps_messages(self, store: ChatStore):
        """Renaming a conversation does not touch its messages."""
        conversation = await store.add_conversation(Conversation())
        await store.add_message(user(conversation.id, "Hello"))

        await store.update_conversation(conversation.model_copy(update={"title": "Greetings"}))

        assert (await store.get_conversation(conversation.id)).title == "Greetings"
        assert await store.get_message_count(conversation.id) == 1

    @pytest.mark.asyncio
    async def test_delete_cascades(self, store: ChatStore):
        """Deleting a conversation removes every one of its messages."""
        keep = await store.add_conversation(Conversation())
        doomed = await store.add_conversation(Conversation())
        await store.add_messages([user(doomed.id, "a"), assistant(doomed.id, "b")])
        await store.add_message(user(keep.id, "c"))

        assert await store.delete_conversation(doomed.id) is True

        assert await store.get_conversation(doomed.id) is None
        assert await store.get_messages(doomed.id) == []
        assert await store.get_message_count(keep.id) == 1
        assert await store.delete_conversation(doomed.id) is False

    @pytest.mark.asyncio
    async def test_list_oldest_first(self, store: ChatStore):
        first = await store.add_conversation(Conversation(title="first"))
        second = await store.add_conversation(Conversation(title="second"))
        assert [c.id for c in await store.list_conversations()] == [first.id, second.id]


class TestMessages:
    """Tests for message persistence and ordering."""

    @pytest.mark.asyncio
    async def test_sequence_strictly_increasing(self, store: ChatStore):
        """Each stored message gets a larger sequence than every earlier one."""
        conversation = await store.add_conversation(Conversation())
        other = await store.add_conversation(Conversation())
        stored = [
            await store.add_message(user(conversation.id, "one")),
            await store.add_message(user(other.id, "elsewhere")),
            await store.add_message(assistant(conversation.id, "two")),
            await store.add_message(user(conversation.id, "three")),
        ]
        sequences = [m.sequence for m in stored]
        assert sequences == sorted(sequences)
        assert len(set(sequences)) == len(sequences)

    @pytest.mark.asyncio
    async def test_history_ordered_by_sequence(self, store: ChatStore):
        """History comes back in insertion order regardless of timestamps."""
        conversation = await store.add_conversation(Conversation())
        later = user(conversation.id, "written first")
        earlier = assistant(conversation.id, "written second")
        # Clock skew: the second message carries an older timestamp
        earlier = earlier.model_copy(update={"timestamp": later.timestamp.replace(year=2000)})
        await store.add_message(later)
        await store.add_message(earlier)

        history = await store.get_messages(conversation.id)
        assert [m.content for m in history] == ["written first", "written second"]
        assert history[0].sequence < history[1].sequence

    @pytest.mark.asyncio
    async def test_add_messages_is_atomic(self, store: ChatStore):
        """A failing batch stores none of its messages."""
        conversation = await store.add_conversation(Conversation())
        duplicate = user(conversation.id, "dup")
        with pytest.raises(StorageError):
            await store.add_messages([user(conversation.id, "ok"), duplicate, duplicate])
        assert await store.get_message_count(conversation.id) == 0

    @pytest.mark.asyncio
    async def test_update_and_delete_message(self, store: ChatStore):
        conversation = await store.add_conversation(Conversation())
        stored = await store.add_message(assistant(conversation.id, "draft"))

        assert await store.update_message(stored.model_copy(update={"content": "final"}))
        assert (await store.get_message(stored.id)).content == "final"

        assert await store.delete_message(stored.id) is True
        assert await store.get_message(stored.id) is None
        assert await store.delete_message(stored.id) is False
        assert await store.update_message(stored) is False

    @pytest.mark.asyncio
    async def test_latest_message(self, store: ChatStore):
        conversation = await store.add_conversation(Conversation())
        assert await store.get_latest_message(conversation.id) is None
        await store.add_message(user(conversation.id, "Hello"))
        await store.add_message(assistant(conversation.id, "Hi there"))
        assert (await store.get_latest_message(conversation.id)).content == "Hi there"

    @pytest.mark.asyncio
    async def test_survives_reopen(self, db_path):
        """Data written by one store is visible after a restart."""
        backend = SQLiteBackend(db_path=db_path)
        store = ChatStore(backend)
        conversation = await store.add_conversation(Conversation(title="Durable"))
        await store.add_message(user(conversation.id, "Hello"))
        await store.close()

        reopened = ChatStore(SQLiteBackend(db_path=db_path))
        assert (await reopened.get_conversation(conversation.id)).title == "Durable"
        assert [m.content for m in await reopened.get_messages(conversation.id)] == ["Hello"]
        await reopened.close()

    @pytest.mark.asyncio
    async def test_clear_all(self, store: ChatStore):
        conversation = await store.add_conversation(Conversation())
        await store.add_message(user(conversation.id, "Hello"))
        await store.add_credential(make_credential())
        await store.clear_all()
        assert await store.list_conversations() == []
        assert await store.list_credentials() == []


class TestStorageErrors:
    """Database failures surface as StorageError."""

    @pytest.mark.asyncio
    async def test_write_failure(self, db_path):
        store = ChatStore(FailingBackend(db_path, fail_on="INSERT INTO messages"))
        conversation = await store.add_conversation(Conversation())
        with pytest.raises(StorageError, match="Storage unavailable"):
            await store.add_message(user(conversation.id, "Hello"))
        await store.close()
