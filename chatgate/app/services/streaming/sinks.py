"""Output sinks for relayed events.

A sink has two ends. The relay writes with ``send`` and finishes with
``close``. The consumer (the HTTP response) calls ``disconnect`` when the
client goes away, which closes the sink and fires the ``on_close``
callbacks so the relay can stop.
"""

import asyncio
from abc import ABC, abstractmethod
from typing import AsyncIterator, Callable, List, Optional

from chatgate.app.exceptions import SinkClosedError


class EventSink(ABC):
    """Abstract event sink."""

    def __init__(self):
        self._closed = False
        self._disconnected = False
        self._close_callbacks: List[Callable[[], None]] = []

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def disconnected(self) -> bool:
        """True when the consumer side closed first."""
        return self._disconnected

    def on_close(self, callback: Callable[[], None]) -> None:
        """Register a callback fired when the consumer disconnects."""
        self._close_callbacks.append(callback)

    async def send(self, frame: str) -> None:
        """Write one framed event.

        Raises:
            SinkClosedError: If the sink is already closed
        """
        if self._closed:
            raise SinkClosedError()
        await self._write(frame)

    async def close(self) -> None:
        """Close from the producer side. Idempotent."""
        if self._closed:
            return
        self._closed = True
        await self._finish()

    def disconnect(self) -> None:
        """Close from the consumer side and notify listeners."""
        if self._closed:
            return
        self._closed = True
        self._disconnected = True
        for callback in self._close_callbacks:
            callback()

    @abstractmethod
    async def _write(self, frame: str) -> None:
        ...

    async def _finish(self) -> None:
        return None


class ChannelSink(EventSink):
    """Queue-backed sink drained by a streaming HTTP response.

    Usage:
        sink = ChannelSink()
        orchestrator.relay(tokens, sink, context)
        return StreamingResponse(sink.frames(), media_type="text/event-stream")
    """

    def __init__(self, maxsize: int = 0):
        super().__init__()
        self._queue: asyncio.Queue[Optional[str]] = asyncio.Queue(maxsize=maxsize)

    async def _write(self, frame: str) -> None:
        await self._queue.put(frame)

    async def _finish(self) -> None:
        await self._queue.put(None)

    async def frames(self) -> AsyncIterator[str]:
        """Yield frames until the producer closes the sink.

        If the consumer stops early (client disconnect cancels the response),
        the sink is disconnected.
        """
        try:
            while True:
                frame = await self._queue.get()
                if frame is None:
                    break
                yield frame
        finally:
            if not self._closed:
                self.disconnect()


class CollectingSink(EventSink):
    """In-memory sink keeping every frame, for tests and offline relays.

    Args:
        disconnect_after: Simulate a client disconnect once this many
            frames have been written
    """

    def __init__(self, disconnect_after: Optional[int] = None):
        super().__init__()
        self.frames: List[str] = []
        self.disconnect_after = disconnect_after
        self.close_calls = 0

    async def _write(self, frame: str) -> None:
        self.frames.append(frame)
        if self.disconnect_after is not None and len(self.frames) >= self.disconnect_after:
            self.disconnect()

    async def _finish(self) -> None:
        self.close_calls += 1
