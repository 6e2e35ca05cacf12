"""Completion providers.

- Base interface (CompletionProvider)
- OpenAI-compatible HTTP provider (OpenAIProvider)
- Mock provider for development and tests (MockProvider)
"""

from chatgate.app.providers.base import CompletionProvider, Message
from chatgate.app.providers.factory import (
    create_provider,
    get_completion_provider,
    reset_completion_provider,
)
from chatgate.app.providers.mock import MockProvider
from chatgate.app.providers.openai import OpenAIProvider, parse_stream_line

__all__ = [
    "CompletionProvider",
    "Message",
    "OpenAIProvider",
    "MockProvider",
    "parse_stream_line",
    "create_provider",
    "get_completion_provider",
    "reset_completion_provider",
]
