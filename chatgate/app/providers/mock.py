"""Mock completion provider.

Simulates a token stream without external calls, for development and
tests where no API key is available.

Enable by setting environment variable:
    MOCK_PROVIDER=true
"""

import asyncio
from typing import AsyncIterator, List, Optional, Sequence

from chatgate.app.exceptions import UpstreamFailureError
from chatgate.app.providers.base import CompletionProvider, Message

DEFAULT_TOKENS = ("This ", "is ", "a ", "mock ", "response.")


class MockProvider(CompletionProvider):
    """Mock provider yielding a fixed token sequence.

    Args:
        tokens: Tokens to stream, in order
        delay: Seconds to sleep between tokens
        fail_after: Raise mid-stream after this many tokens (None = never)
        unavailable: Fail when opening the stream, as if unreachable
        summary: Text returned by ``complete``
    """

    def __init__(
        self,
        tokens: Sequence[str] = DEFAULT_TOKENS,
        delay: float = 0.0,
        fail_after: Optional[int] = None,
        unavailable: bool = False,
        summary: str = "The user and assistant exchanged greetings.",
    ):
        super().__init__("http://mock.provider", "mock-key")
        self.tokens = list(tokens)
        self.delay = delay
        self.fail_after = fail_after
        self.unavailable = unavailable
        self.summary = summary
        self.calls: List[List[Message]] = []

    async def open_stream(self, messages: List[Message]) -> AsyncIterator[str]:
        self.calls.append(list(messages))
        if self.unavailable:
            raise UpstreamFailureError("completion")
        return self._iter_tokens()

    async def _iter_tokens(self) -> AsyncIterator[str]:
        for index, token in enumerate(self.tokens):
            if self.fail_after is not None and index >= self.fail_after:
                raise RuntimeError("Simulated provider failure")
            if self.delay:
                await asyncio.sleep(self.delay)
            yield token

    async def complete(self, messages: List[Message], max_tokens: int) -> str:
        self.calls.append(list(messages))
        if self.unavailable:
            raise UpstreamFailureError("completion")
        return self.summary

    async def health_check(self, timeout: float = 2.0) -> bool:
        return not self.unavailable
