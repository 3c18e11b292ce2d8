"""OpenAI chat completions provider."""

from __future__ import annotations

import logging
from typing import Any, AsyncIterator, Sequence

import openai

from chatstream.chat.models import ChatTurn
from chatstream.errors import UpstreamError

from .base import CompletionProvider

logger = logging.getLogger(__name__)


class OpenAIProvider(CompletionProvider):
    """Streams ``chat.completions`` deltas from OpenAI."""

    name = "openai"

    def _create_client(self, secret: str) -> Any:
        return openai.AsyncOpenAI(
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
        logger.debug(f"Opening openai stream ({model}, {len(turns)} turns)")
        try:
            try:
                stream = await client.chat.completions.create(
                    model=model,
                    messages=self.to_api_messages(turns),
                    max_tokens=self.settings.max_tokens,
                    stream=True,
                )
            except openai.APIError as e:
                raise UpstreamError(str(e), {"provider": self.name}) from e

            try:
                async for chunk in stream:
                    if chunk.choices and chunk.choices[0].delta.content:
                        yield chunk.choices[0].delta.content
            except openai.APIError as e:
                raise UpstreamError(str(e), {"provider": self.name}) from e
            finally:
                await stream.close()
        finally:
            await client.close()
