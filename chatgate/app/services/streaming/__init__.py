"""Token streaming relay package."""

from chatgate.app.services.streaming.orchestrator import (
    StreamContext,
    StreamOrchestrator,
    StreamSession,
    StreamState,
    should_summarize,
)
from chatgate.app.services.streaming.sinks import ChannelSink, CollectingSink, EventSink
from chatgate.app.services.streaming.sse import (
    DONE_EVENT,
    format_error_event,
    format_event,
    format_token_event,
)

__all__ = [
    "StreamContext",
    "StreamOrchestrator",
    "StreamSession",
    "StreamState",
    "should_summarize",
    "EventSink",
    "ChannelSink",
    "CollectingSink",
    "DONE_EVENT",
    "format_event",
    "format_token_event",
    "format_error_event",
]
