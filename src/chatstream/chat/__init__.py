"""Chat sessions: data model, cancellation, session controller and dispatcher client.

The FastAPI router lives in ``chatstream.chat.router`` and is imported
explicitly by the app factory.
"""

from .models import (
    ChatTurn,
    CompletionRequest,
    Conversation,
    Credential,
    CredentialPayload,
    Message,
    MessageRole,
    ProviderName,
    StreamEvent,
    StreamEventType,
)
from .cancellation import CancellationToken
from .session import SessionController, SessionState
from .client import RemoteDispatcher

__all__ = [
    "ChatTurn",
    "CompletionRequest",
    "Conversation",
    "Credential",
    "CredentialPayload",
    "Message",
    "MessageRole",
    "ProviderName",
    "StreamEvent",
    "StreamEventType",
    "CancellationToken",
    "SessionController",
    "SessionState",
    "RemoteDispatcher",
]
