"""Base classes for provider dispatch.

A provider variant knows how to turn ordered role/content turns plus an API
secret into an incremental text stream. Adding a provider means adding a
``CompletionProvider`` subclass and registering it with the dispatcher;
callers never change.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, AsyncIterator, Callable, Protocol, Sequence

if TYPE_CHECKING:
    from chatstream.chat.cancellation import CancellationToken
    from chatstream.chat.models import ChatTurn, Credential, CredentialPayload, StreamEvent


@dataclass
class ProviderSettings:
    """Per-provider request settings."""

    model: str
    max_tokens: int = 4096
    timeout: float = 30.0
    max_retries: int = 0


class CompletionProvider(ABC):
    """Abstract streaming completion provider.

    Subclasses set ``name`` to the provider identifier used in credentials and
    implement ``stream``. ``client_factory`` builds the SDK client from a
    secret; tests replace it with a fake.
    """

    name: str = ""

    def __init__(
        self,
        settings: ProviderSettings,
        client_factory: Callable[[str], Any] | None = None,
    ):
        self.settings = settings
        self._client_factory = client_factory or self._create_client

    @property
    def default_model(self) -> str:
        return self.settings.model

    @abstractmethod
    def _create_client(self, secret: str) -> Any:
        """Build the vendor SDK client for one request."""

    @abstractmethod
    def stream(
        self,
        turns: Sequence[ChatTurn],
        secret: str,
        model: str | None = None,
    ) -> AsyncIterator[str]:
        """Open one upstream stream and yield text fragments in order.

        Implementations are async generators. Vendor failures are raised as
        ``UpstreamError``.
        """

    @staticmethod
    def to_api_messages(turns: Sequence[ChatTurn]) -> list[dict[str, str]]:
        """Convert turns to the ``[{"role", "content"}]`` wire form."""
        return [{"role": t.role.value, "content": t.content} for t in turns]

    def __repr__(self) -> str:
        return f"<{type(self).__name__} model={self.default_model!r}>"


class CompletionDispatcher(Protocol):
    """Anything that can stream a completion for a credential.

    Satisfied by the in-process ``ProviderDispatcher`` and by the HTTP
    ``RemoteDispatcher``.
    """

    def stream_completion(
        self,
        history: Sequence[ChatTurn],
        credential: Credential | CredentialPayload,
        cancel_token: CancellationToken | None = None,
    ) -> AsyncIterator[StreamEvent]:
        ...
