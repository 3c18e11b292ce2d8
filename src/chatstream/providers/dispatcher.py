"""Stateless provider dispatch.

Given a credential and a conversation history, ``ProviderDispatcher`` opens
exactly one streaming completion against the credential's provider and relays
the fragments as ``StreamEvent`` objects: one ``delta`` per fragment, in the
order received, followed by a single ``done`` or ``error`` event.
"""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, AsyncIterator, Iterable, Sequence

from chatstream.chat.models import (
    ChatTurn,
    Credential,
    CredentialPayload,
    ProviderInfo,
    StreamEvent,
)
from chatstream.errors import UnsupportedProviderError, UpstreamError, ValidationError

from .base import CompletionProvider, ProviderSettings

if TYPE_CHECKING:
    from chatstream.chat.cancellation import CancellationToken
    from chatstream.config import Settings

logger = logging.getLogger(__name__)


def describe_error(error: object) -> str:
    """Turn anything raised or reported by a provider into a user message."""
    if error is None:
        return "unknown error"
    if isinstance(error, str):
        return error
    if isinstance(error, BaseException):
        return getattr(error, "message", None) or str(error) or type(error).__name__
    try:
        return json.dumps(error)
    except (TypeError, ValueError):
        return str(error)


def _credential_fields(credential: Credential | CredentialPayload) -> tuple[str, str]:
    provider = credential.provider
    provider = getattr(provider, "value", provider) or ""
    return provider.strip().lower(), credential.secret or ""


class ProviderDispatcher:
    """Routes completion requests to the provider named by the credential."""

    def __init__(self, providers: Iterable[CompletionProvider] = ()):
        self._providers: dict[str, CompletionProvider] = {}
        for provider in providers:
            self.register(provider)

    def register(self, provider: CompletionProvider) -> None:
        """Add or replace a provider variant."""
        self._providers[provider.name.lower()] = provider
        logger.debug(f"Registered provider: {provider.name}")

    def supported_providers(self) -> list[str]:
        return sorted(self._providers)

    def provider_info(self) -> list[ProviderInfo]:
        return [
            ProviderInfo(name=name, default_model=self._providers[name].default_model)
            for name in self.supported_providers()
        ]

    def validate(self, credential: Credential | CredentialPayload) -> CompletionProvider:
        """Check the credential and resolve its provider variant.

        Raises:
            ValidationError: Missing secret or provider.
            UnsupportedProviderError: No variant registered for the provider.
        """
        provider_name, secret = _credential_fields(credential)
        if not secret.strip():
            raise ValidationError("API key is required")
        if not provider_name:
            raise ValidationError("Provider is required")
        provider = self._providers.get(provider_name)
        if provider is None:
            raise UnsupportedProviderError(provider_name)
        return provider

    def stream_completion(
        self,
        history: Sequence[ChatTurn],
        credential: Credential | CredentialPayload,
        cancel_token: CancellationToken | None = None,
    ) -> AsyncIterator[StreamEvent]:
        """Stream a completion for ``history`` using ``credential``.

        Validation happens here, synchronously, so a bad credential or
        provider fails before any network activity. The returned iterator
        is lazy, finite and not restartable.

        Raises:
            ValidationError: Bad credential (raised immediately).
            UnsupportedProviderError: Unknown provider (raised immediately).
            UpstreamError: From the iterator, if the provider fails before
                the first fragment. Later failures end the stream with an
                ``error`` event instead.
        """
        provider = self.validate(credential)
        _, secret = _credential_fields(credential)
        return self._relay(provider, list(history), secret, cancel_token)

    async def _relay(
        self,
        provider: CompletionProvider,
        history: list[ChatTurn],
        secret: str,
        cancel_token: CancellationToken | None,
    ) -> AsyncIterator[StreamEvent]:
        upstream = provider.stream(history, secret)
        started = False
        fragments = 0
        try:
            async for fragment in upstream:
                if cancel_token is not None and cancel_token.cancelled:
                    logger.info(f"{provider.name} stream cancelled after {fragments} fragments")
                    return
                started = True
                fragments += 1
                yield StreamEvent.delta(fragment)

            if cancel_token is not None and cancel_token.cancelled:
                return
            logger.debug(f"{provider.name} stream finished ({fragments} fragments)")
            yield StreamEvent.done()
        except UpstreamError as e:
            logger.warning(f"{provider.name} upstream error: {e.message}")
            if not started:
                raise
            yield StreamEvent.failure(e.message)
        except Exception as e:
            logger.error(f"{provider.name} stream failed: {e}", exc_info=True)
            if not started:
                raise UpstreamError(describe_error(e), {"provider": provider.name}) from e
            yield StreamEvent.failure(describe_error(e))
        finally:
            await upstream.aclose()


_dispatcher: ProviderDispatcher | None = None


def create_dispatcher(settings: Settings) -> ProviderDispatcher:
    """Build a dispatcher with every built-in provider registered."""
    from .anthropic_provider import AnthropicProvider
    from .openai_provider import OpenAIProvider

    def provider_settings(model: str) -> ProviderSettings:
        return ProviderSettings(
            model=model,
            max_tokens=settings.max_tokens,
            timeout=settings.request_timeout,
            max_retries=settings.provider_max_retries,
        )

    return ProviderDispatcher(
        [
            OpenAIProvider(provider_settings(settings.openai_model)),
            AnthropicProvider(provider_settings(settings.anthropic_model)),
        ]
    )


def get_dispatcher() -> ProviderDispatcher:
    """Get the process-wide dispatcher."""
    global _dispatcher
    if _dispatcher is None:
        from chatstream.config import get_settings

        _dispatcher = create_dispatcher(get_settings())
    return _dispatcher


def reset_dispatcher() -> None:
    """Reset the process-wide dispatcher (for testing)."""
    global _dispatcher
    _dispatcher = None
