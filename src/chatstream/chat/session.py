"""Session controller: the active conversation's in-memory state machine.

States per active conversation::

    IDLE -> SENDING -> STREAMING -> IDLE
                    \\-> ERROR -> IDLE

The controller appends the user's turn and persists it at once, appends an
unpersisted assistant placeholder, grows the placeholder in place with every
content delta, and writes it to the store in a single write when the stream
is done. A failed or cancelled stream never leaves partial assistant content
in the store.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import aclosing, asynccontextmanager
from enum import Enum
from typing import TYPE_CHECKING, AsyncIterator, Callable

from chatstream.errors import ChatStreamError, StorageError, UpstreamError, ValidationError

from .cancellation import CancellationToken
from .models import (
    DEFAULT_TITLE,
    ChatTurn,
    Conversation,
    Credential,
    Message,
    MessageRole,
    StreamEventType,
)

if TYPE_CHECKING:
    from chatstream.providers.base import CompletionDispatcher
    from chatstream.store import ChatStore

logger = logging.getLogger(__name__)

TITLE_LENGTH = 50


class SessionState(str, Enum):
    """Session controller state."""

    IDLE = "idle"
    SENDING = "sending"
    STREAMING = "streaming"
    ERROR = "error"


def title_from_content(content: str) -> str:
    """Conversation title from the first user message."""
    content = " ".join(content.split())
    if len(content) > TITLE_LENGTH:
        return content[:TITLE_LENGTH] + "..."
    return content or DEFAULT_TITLE


class SessionController:
    """Holds the active conversation and drives sends against a dispatcher.

    Every error kind is caught here and turned into a transition through
    ``ERROR`` back to ``IDLE`` plus a user-visible ``error`` message; public
    methods do not raise ``ChatStreamError``.

    Args:
        store: Persistent store, shared for the process lifetime.
        dispatcher: In-process ``ProviderDispatcher`` or ``RemoteDispatcher``.
        on_change: Called with the controller after every visible change.
    """

    def __init__(
        self,
        store: ChatStore,
        dispatcher: CompletionDispatcher,
        on_change: Callable[[SessionController], None] | None = None,
    ):
        self.store = store
        self.dispatcher = dispatcher
        self.on_change = on_change

        self.state = SessionState.IDLE
        self.error: str | None = None
        self.conversation: Conversation | None = None
        self.messages: list[Message] = []
        self.credentials: list[Credential] = []
        self.conversations: list[Conversation] = []

        self._token: CancellationToken | None = None
        self._stream_task: asyncio.Task | None = None
        self._placeholder: Message | None = None
        self._selection = 0

    # ------------------------------------------------------------------
    # State helpers
    # ------------------------------------------------------------------

    @property
    def can_send(self) -> bool:
        """True when idle with a conversation that has a credential selected."""
        return (
            self.state == SessionState.IDLE
            and self.conversation is not None
            and self.conversation.selected_credential_id is not None
        )

    @property
    def streaming_message(self) -> Message | None:
        """The in-flight assistant message, if a stream is running."""
        return self._placeholder

    def _notify(self) -> None:
        if self.on_change is not None:
            self.on_change(self)

    def _set_state(self, state: SessionState) -> None:
        if self.state != state:
            logger.debug(f"Session state {self.state.value} -> {state.value}")
            self.state = state
            self._notify()

    def _report(self, error: ChatStreamError, action: str) -> None:
        """Surface an error to the user and return to IDLE."""
        if isinstance(error, ValidationError):
            logger.info(f"Cannot {action}: {error.message}")
        else:
            logger.error(f"Failed to {action}: {error.message}")
        self.error = error.message
        self._set_state(SessionState.ERROR)
        self._set_state(SessionState.IDLE)

    @asynccontextmanager
    async def _guard(self, action: str) -> AsyncIterator[None]:
        try:
            yield
        except ChatStreamError as e:
            self._report(e, action)

    def dismiss_error(self) -> None:
        if self.error is not None:
            self.error = None
            self._notify()

    def _replace_message(self, old: Message, new: Message) -> None:
        for i, message in enumerate(self.messages):
            if message.id == old.id:
                self.messages[i] = new
                return

    def _discard_message(self, message: Message) -> None:
        self.messages = [m for m in self.messages if m.id != message.id]

    # ------------------------------------------------------------------
    # Reads for the settings collaborator
    # ------------------------------------------------------------------

    async def load(self) -> None:
        """Read credentials and conversations from the store."""
        async with self._guard("load data"):
            self.credentials = await self.store.list_credentials()
            self.conversations = await self.store.list_conversations()
            if self.conversation is not None:
                self.conversation = next(
                    (c for c in self.conversations if c.id == self.conversation.id),
                    None,
                )
                if self.conversation is None:
                    self.messages = []
            self._notify()

    async def list_credentials(self) -> list[Credential]:
        async with self._guard("list credentials"):
            self.credentials = await self.store.list_credentials()
        return self.credentials

    async def list_conversations(self) -> list[Conversation]:
        async with self._guard("list conversations"):
            self.conversations = await self.store.list_conversations()
        return self.conversations

    async def get_messages(self, conversation_id: str) -> list[Message]:
        async with self._guard("load messages"):
            return await self.store.get_messages(conversation_id)
        return []

    # ------------------------------------------------------------------
    # Conversation lifecycle
    # ------------------------------------------------------------------

    async def new_conversation(
        self, title: str | None = None, server_id: str | None = None
    ) -> Conversation | None:
        """Start a new chat with the default credential selected."""
        await self._abort("new conversation")
        async with self._guard("create conversation"):
            default = await self.store.get_default_credential()
            conversation = Conversation(
                title=title or DEFAULT_TITLE,
                selected_credential_id=default.id if default else None,
                selected_server_id=server_id,
            )
            await self.store.add_conversation(conversation)
            self._selection += 1
            self.conversations.append(conversation)
            self.conversation = conversation
            self.messages = []
            self._notify()
            return conversation
        return None

    async def select_conversation(self, conversation_id: str) -> Conversation | None:
        """Make a conversation active and load its history by sequence.

        Any in-flight stream is aborted before the new history is read, so
        no late chunk lands in the wrong conversation.
        """
        await self._abort("conversation switched")
        self._selection += 1
        selection = self._selection
        async with self._guard("open conversation"):
            conversation = await self.store.get_conversation(conversation_id)
            if conversation is None:
                raise ValidationError(f"Conversation not found: {conversation_id}")
            messages = await self.store.get_messages(conversation_id)
            if selection != self._selection:
                # A newer selection won the race
                return None
            self.conversation = conversation
            self.messages = messages
            self._notify()
            return conversation
        return None

    async def close_conversation(self) -> None:
        """Abort any stream and clear the active conversation."""
        await self._abort("conversation closed")
        self._selection += 1
        self.conversation = None
        self.messages = []
        self._notify()

    async def rename_conversation(self, conversation_id: str, title: str) -> bool:
        async with self._guard("rename conversation"):
            if not title.strip():
                raise ValidationError("Title cannot be empty")
            conversation = await self.store.get_conversation(conversation_id)
            if conversation is None:
                raise ValidationError(f"Conversation not found: {conversation_id}")
            updated = conversation.model_copy(update={"title": title.strip()})
            await self.store.update_conversation(updated)
            self._apply_conversation(updated)
            return True
        return False

    async def delete_conversation(self, conversation_id: str) -> bool:
        """Delete a conversation and its messages."""
        is_active = (
            self.conversation is not None and self.conversation.id == conversation_id
        )
        if is_active:
            await self._abort("conversation deleted")
        async with self._guard("delete conversation"):
            deleted = await self.store.delete_conversation(conversation_id)
            self.conversations = [c for c in self.conversations if c.id != conversation_id]
            if is_active:
                self._selection += 1
                self.conversation = None
                self.messages = []
            self._notify()
            return deleted
        return False

    async def select_credential(self, credential_id: str | None) -> bool:
        """Select the credential used by the active conversation (None disables sending)."""
        async with self._guard("select API key"):
            conversation = self._require_conversation()
            if credential_id is not None:
                if await self.store.get_credential(credential_id) is None:
                    raise ValidationError(f"API key not found: {credential_id}")
            updated = conversation.model_copy(
                update={"selected_credential_id": credential_id}
            )
            await self.store.update_conversation(updated)
            self._apply_conversation(updated)
            return True
        return False

    async def select_server(self, server_id: str | None) -> bool:
        """Record the server selected for the active conversation."""
        async with self._guard("select server"):
            conversation = self._require_conversation()
            updated = conversation.model_copy(update={"selected_server_id": server_id})
            await self.store.update_conversation(updated)
            self._apply_conversation(updated)
            return True
        return False

    def _require_conversation(self) -> Conversation:
        if self.conversation is None:
            raise ValidationError("No conversation selected")
        return self.conversation

    def _apply_conversation(self, conversation: Conversation) -> None:
        self.conversations = [
            conversation if c.id == conversation.id else c for c in self.conversations
        ]
        if self.conversation is not None and self.conversation.id == conversation.id:
            self.conversation = conversation
        self._notify()

    async def _selected_credential(self, conversation: Conversation) -> Credential:
        if conversation.selected_credential_id is None:
            raise ValidationError("No API key selected")
        credential = await self.store.get_credential(conversation.selected_credential_id)
        if credential is None:
            raise ValidationError("Selected API key no longer exists")
        return credential

    # ------------------------------------------------------------------
    # Sending and streaming
    # ------------------------------------------------------------------

    async def send_message(self, content: str) -> Message | None:
        """Send a user turn and stream the assistant reply.

        Returns:
            The persisted assistant Message, or None if the send failed or
            was cancelled (see ``error``).
        """
        if not content.strip():
            self._report(ValidationError("Message is empty"), "send message")
            return None
        conversation = self.conversation
        if conversation is None:
            self._report(ValidationError("No conversation selected"), "send message")
            return None

        # Only one stream per conversation
        await self._abort("superseded by a new message")
        token = CancellationToken()
        self._token = token
        try:
            return await self._send(conversation, content, token)
        finally:
            if self._token is token:
                self._token = None

    async def _send(
        self, conversation: Conversation, content: str, token: CancellationToken
    ) -> Message | None:
        try:
            credential = await self._selected_credential(conversation)
        except ChatStreamError as e:
            self._report(e, "send message")
            return None
        if token.cancelled:
            return None

        self.error = None
        self._set_state(SessionState.SENDING)
        user_message = Message(
            conversation_id=conversation.id, role=MessageRole.USER, content=content
        )
        self.messages.append(user_message)
        self._notify()

        try:
            stored = await self.store.add_message(user_message)
        except StorageError as e:
            # The user turn stays visible; retrying is up to the user
            self._report(e, "save message")
            return None
        if token.cancelled:
            return None
        self._replace_message(user_message, stored)
        await self._autotitle(conversation, content)
        if token.cancelled:
            return None

        history = [m.to_turn() for m in self.messages]
        placeholder = Message(conversation_id=conversation.id, role=MessageRole.ASSISTANT)
        self._placeholder = placeholder
        self.messages.append(placeholder)
        self._notify()

        task = asyncio.create_task(self._consume(history, credential, placeholder, token))
        self._stream_task = task
        try:
            return await task
        except asyncio.CancelledError:
            if token.cancelled:
                return None
            raise
        finally:
            if self._stream_task is task:
                self._stream_task = None
            if self._placeholder is placeholder:
                self._placeholder = None

    async def _autotitle(self, conversation: Conversation, content: str) -> None:
        if conversation.title != DEFAULT_TITLE:
            return
        if sum(1 for m in self.messages if m.role == MessageRole.USER) != 1:
            return
        updated = conversation.model_copy(update={"title": title_from_content(content)})
        try:
            await self.store.update_conversation(updated)
        except StorageError as e:
            logger.warning(f"Could not save title for {conversation.id}: {e.message}")
            return
        self._apply_conversation(updated)

    async def _consume(
        self,
        history: list[ChatTurn],
        credential: Credential,
        placeholder: Message,
        token: CancellationToken,
    ) -> Message | None:
        try:
            finished = await self._apply_stream(history, credential, placeholder, token)
        except asyncio.CancelledError:
            self._discard_message(placeholder)
            self._notify()
            raise
        except ChatStreamError as e:
            self._discard_message(placeholder)
            if token.cancelled:
                return None
            self._report(e, "stream reply")
            return None

        if not finished:
            self._discard_message(placeholder)
            self._notify()
            return None

        write = asyncio.ensure_future(self.store.add_message(placeholder))
        try:
            try:
                stored = await asyncio.shield(write)
            except asyncio.CancelledError:
                # The reply is complete; an abort during the write keeps it
                logger.info("Abort arrived while saving the reply; finishing the write")
                stored = await write
        except StorageError as e:
            # Shown but not persisted; not rolled back
            self._report(e, "save reply")
            return None
        if self._placeholder is placeholder:
            self._placeholder = None
        self._replace_message(placeholder, stored)
        logger.info(
            f"Saved assistant reply #{stored.sequence} ({len(stored.content)} chars)",
            extra={"conversation_id": stored.conversation_id},
        )
        self._set_state(SessionState.IDLE)
        self._notify()
        return stored

    async def _apply_stream(
        self,
        history: list[ChatTurn],
        credential: Credential,
        placeholder: Message,
        token: CancellationToken,
    ) -> bool:
        """Grow the placeholder with each delta; True once ``done`` arrives."""
        events = self.dispatcher.stream_completion(history, credential, token)
        async with aclosing(events):
            async for event in events:
                if token.cancelled:
                    return False
                if event.type == StreamEventType.DELTA:
                    # One notification per chunk, state change included
                    if self.state != SessionState.STREAMING:
                        logger.debug(f"Session state {self.state.value} -> streaming")
                        self.state = SessionState.STREAMING
                    placeholder.content += event.content or ""
                    self._notify()
                elif event.type == StreamEventType.DONE:
                    return True
                else:
                    raise UpstreamError(event.error or "unknown error")
        if token.cancelled:
            return False
        raise UpstreamError("Stream ended before completion")

    async def _abort(self, reason: str) -> None:
        """Cancel the in-flight stream, if any, and wait for it to unwind."""
        token, task = self._token, self._stream_task
        if token is not None and not token.cancelled:
            logger.info(f"Aborting stream: {reason}")
            token.cancel(reason)
        if task is not None and not task.done():
            task.cancel()
            await asyncio.wait([task])
        if self._placeholder is not None:
            self._discard_message(self._placeholder)
            self._placeholder = None
        self._token = None
        self._stream_task = None
        if self.state != SessionState.IDLE:
            self._set_state(SessionState.IDLE)

    async def cancel(self) -> None:
        """Abort the in-flight stream; the partial reply is discarded."""
        await self._abort("cancelled by user")

    async def aclose(self) -> None:
        await self._abort("controller closed")
