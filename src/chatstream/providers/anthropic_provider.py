"""Anthropic messages provider."""

from __future__ import annotations

import logging
from typing import Any, AsyncIterator, Sequence

import anthropic

from chatstream.chat.models import ChatTurn
from chatstream.errors import UpstreamError

from .base import CompletionProvider

logger = logging.getLogger(__name__)


class AnthropicProvider(CompletionProvider):
    """Streams text from Anthropic's ``messages.stream()``."""

    name = "anthropic"

    def _create_client(self, secret: str) -> Any:
        return anthropic.AsyncAnthropic(
            api_key=secret,
            timeout=self.settings.timeout,
            max_retries=self.settings.max_retries,
        )

    async def stream(
        self,
        turns: Sequence[ChatTurn],
        secret: str,
        model: str | None = None,
    ) -> AsyncIterator[str]:
        client = self._client_factory(secret)
        model = model or self.default_model
        logger.debug(f"Opening anthropic stream ({model}, {len(turns)} turns)")
        try:
            async with client.messages.stream(
                model=model,
                messages=self.to_api_messages(turns),
                max_tokens=self.settings.max_tokens,
            ) as stream:
                async for text in stream.text_stream:
                    if text:
                        yield text
        except anthropic.APIError as e:
            raise UpstreamError(str(e), {"provider": self.name}) from e
        finally:
            await client.close()
