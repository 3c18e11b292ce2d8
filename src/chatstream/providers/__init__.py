"""Multi-provider streaming completions.

Provides a single dispatch entry point over several LLM providers (OpenAI,
Anthropic), each a variant behind the same streaming interface.
"""

from .base import CompletionDispatcher, CompletionProvider, ProviderSettings
from .openai_provider import OpenAIProvider
from .anthropic_provider import AnthropicProvider
from .dispatcher import (
    ProviderDispatcher,
    create_dispatcher,
    describe_error,
    get_dispatcher,
    reset_dispatcher,
)

__all__ = [
    # Base classes
    "CompletionDispatcher",
    "CompletionProvider",
    "ProviderSettings",
    # Implementations
    "OpenAIProvider",
    "AnthropicProvider",
    # Dispatcher
    "ProviderDispatcher",
    "create_dispatcher",
    "describe_error",
    "get_dispatcher",
    "reset_dispatcher",
]
