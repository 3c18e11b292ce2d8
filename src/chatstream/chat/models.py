"""Chat data models."""

from __future__ import annotations

import uuid
from datetime import datetime
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, Field

from chatstream.utils.validation import mask_secret

DEFAULT_TITLE = "New Chat"


def new_id() -> str:
    """Generate a record id."""
    return str(uuid.uuid4())


class ProviderName(str, Enum):
    """Provider identifiers a credential may carry."""

    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    GOOGLE = "google"
    OTHER = "other"


class MessageRole(str, Enum):
    """Message author role."""

    USER = "user"
    ASSISTANT = "assistant"


class Credential(BaseModel):
    """A named provider API key, optionally marked as the default.

    ``provider`` is a ``ProviderName`` for the known providers. Rows written
    by another client may carry any other identifier; those stay readable as
    plain strings and the dispatcher reports them as unsupported.
    """

    id: str = Field(default_factory=new_id)
    name: str
    provider: ProviderName | str = Field(union_mode="left_to_right")
    secret: str = Field(repr=False)
    is_default: bool = False

    @property
    def provider_id(self) -> str:
        """Provider identifier as stored and sent on the wire."""
        return getattr(self.provider, "value", self.provider)

    @property
    def masked_secret(self) -> str:
        """Secret in display form (``sk-...abc``)."""
        return mask_secret(self.secret)

    @classmethod
    def from_db_row(cls, row: dict) -> Credential:
        """Create from database row."""
        return cls(
            id=row["id"],
            name=row["name"],
            provider=row["provider"],
            secret=row["secret"],
            is_default=bool(row.get("is_default")),
        )


class Conversation(BaseModel):
    """One durable chat thread with its own credential and server selection."""

    id: str = Field(default_factory=new_id)
    title: str = DEFAULT_TITLE
    created_at: datetime = Field(default_factory=datetime.now)
    selected_credential_id: str | None = None
    selected_server_id: str | None = None

    @classmethod
    def from_db_row(cls, row: dict) -> Conversation:
        """Create from database row."""
        created_at = row.get("created_at")
        if isinstance(created_at, str):
            created_at = datetime.fromisoformat(created_at)
        return cls(
            id=row["id"],
            title=row.get("title") or DEFAULT_TITLE,
            created_at=created_at or datetime.now(),
            selected_credential_id=row.get("selected_credential_id"),
            selected_server_id=row.get("selected_server_id"),
        )


class Message(BaseModel):
    """A chat message.

    ``sequence`` stays None until the store assigns it on insert.
    """

    id: str = Field(default_factory=new_id)
    sequence: int | None = None
    conversation_id: str
    role: MessageRole
    content: str = ""
    timestamp: datetime = Field(default_factory=datetime.now)

    def to_turn(self) -> ChatTurn:
        """Strip the message down to what a provider receives."""
        return ChatTurn(role=self.role, content=self.content)

    @classmethod
    def from_db_row(cls, row: dict) -> Message:
        """Create from database row."""
        timestamp = row["timestamp"]
        if isinstance(timestamp, str):
            timestamp = datetime.fromisoformat(timestamp)
        return cls(
            id=row["id"],
            sequence=row.get("seq"),
            conversation_id=row["conversation_id"],
            role=MessageRole(row["role"]),
            content=row["content"],
            timestamp=timestamp,
        )


class ChatTurn(BaseModel):
    """An ordered role/content turn sent to a provider."""

    role: MessageRole
    content: str


# Dispatcher wire models


class CredentialPayload(BaseModel):
    """Credential as forwarded per request; never persisted server side.

    Both fields are optional here so a missing value is reported by the
    dispatcher as a validation error rather than a schema error.
    """

    provider: str | None = None
    secret: str | None = Field(default=None, repr=False)

    @classmethod
    def from_credential(cls, credential: Credential) -> CredentialPayload:
        """Build the wire form of a stored credential."""
        return cls(provider=credential.provider_id, secret=credential.secret)


class CompletionRequest(BaseModel):
    """Request to stream a completion."""

    messages: list[ChatTurn] = Field(default_factory=list)
    credential: CredentialPayload = Field(default_factory=CredentialPayload)


class StreamEventType(str, Enum):
    """Kinds of event in a completion stream."""

    DELTA = "delta"
    DONE = "done"
    ERROR = "error"


class StreamEvent(BaseModel):
    """A content delta, or the terminal completion or error marker."""

    type: StreamEventType
    content: str | None = None
    error: str | None = None

    @classmethod
    def delta(cls, content: str) -> StreamEvent:
        return cls(type=StreamEventType.DELTA, content=content)

    @classmethod
    def done(cls) -> StreamEvent:
        return cls(type=StreamEventType.DONE)

    @classmethod
    def failure(cls, error: str) -> StreamEvent:
        return cls(type=StreamEventType.ERROR, error=error)

    @property
    def is_terminal(self) -> bool:
        return self.type != StreamEventType.DELTA

    def to_sse(self) -> str:
        """Encode as a Server-Sent-Events frame."""
        return f"data: {self.model_dump_json(exclude_none=True)}\n\n"


class ProviderInfo(BaseModel):
    """A supported dispatcher variant."""

    name: str
    default_model: str


class ProvidersResponse(BaseModel):
    """Supported providers listing."""

    providers: list[ProviderInfo]


class HealthResponse(BaseModel):
    """Health check response."""

    status: Literal["ok"] = "ok"
    version: str
    details: dict[str, Any] = Field(default_factory=dict)
