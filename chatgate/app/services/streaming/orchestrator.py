"""Token relay with post-stream persistence and summarization trigger.

Each relay runs as its own task through ``INIT -> STREAMING -> COMPLETE``
or ``ERRORED``. Ordering on the success path is fixed: the exchange is
persisted, then the summarization trigger is evaluated, then ``[DONE]`` is
sent. On any failure before that, no turn is persisted.
"""

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import AsyncIterable, List, Optional

from chatgate.app.core.config import settings
from chatgate.app.core.logging import get_log_context, get_logger
from chatgate.app.exceptions import GatewayException, SinkClosedError
from chatgate.app.services.conversation_store import (
    ConversationState,
    ConversationStore,
    ConversationTurn,
)
from chatgate.app.services.streaming.sinks import EventSink
from chatgate.app.services.streaming.sse import (
    DONE_EVENT,
    format_error_event,
    format_token_event,
)
from chatgate.app.services.summarizer import SummarizationJob, SummarizationQueue

logger = get_logger(__name__)

STREAM_ERROR_MESSAGE = "Stream interrupted"


class StreamState(str, Enum):
    INIT = "init"
    STREAMING = "streaming"
    COMPLETE = "complete"
    ERRORED = "errored"


@dataclass
class StreamContext:
    """What the relay needs to know about the request it serves."""
    conversation_id: str
    user_message: str
    prior_state: ConversationState = field(default_factory=ConversationState)
    client_id: Optional[str] = None
    request_id: Optional[str] = None

    def log_context(self) -> dict:
        return get_log_context(
            request_id=self.request_id,
            client_id=self.client_id,
            conversation_id=self.conversation_id,
            category="stream",
        )


@dataclass
class StreamSession:
    """Live state of one relay."""
    context: StreamContext
    sink: EventSink
    state: StreamState = StreamState.INIT
    chunks: List[str] = field(default_factory=list)
    error: Optional[BaseException] = None
    persisted: bool = False
    summarization_submitted: bool = False
    finalizing: bool = False
    task: Optional[asyncio.Task] = None

    @property
    def text(self) -> str:
        """Concatenation of every token forwarded so far."""
        return "".join(self.chunks)

    @property
    def done(self) -> bool:
        return self.state in (StreamState.COMPLETE, StreamState.ERRORED)

    async def wait(self) -> StreamState:
        """Wait for the relay task to finish and return the final state."""
        if self.task is not None:
            await asyncio.wait({self.task})
        return self.state


def should_summarize(prior_turn_count: int, threshold: int) -> bool:
    """True when the exchange being persisted lands on a threshold multiple."""
    return (prior_turn_count + 2) % threshold == 0


def _safe_message(exc: BaseException) -> str:
    if isinstance(exc, GatewayException):
        return exc.message
    return STREAM_ERROR_MESSAGE


async def _aclose(source: AsyncIterable[str]) -> None:
    aclose = getattr(source, "aclose", None)
    if aclose is not None:
        await aclose()


class StreamOrchestrator:
    """Relays a token source to a sink and runs the post-stream side effects.

    Args:
        store: Conversation store receiving the completed exchange
        summarizer: Queue receiving summarization jobs
        summarize_threshold: Turn count multiple that triggers a summary
    """

    def __init__(
        self,
        store: ConversationStore,
        summarizer: SummarizationQueue,
        summarize_threshold: Optional[int] = None,
    ):
        self.store = store
        self.summarizer = summarizer
        self.summarize_threshold = summarize_threshold or settings.summarize_threshold

    def relay(
        self,
        token_source: AsyncIterable[str],
        sink: EventSink,
        context: StreamContext,
    ) -> StreamSession:
        """Start relaying in the background and return the session at once."""
        session = StreamSession(context=context, sink=sink)
        session.task = asyncio.create_task(self._run(session, token_source))
        sink.on_close(lambda: self._on_disconnect(session))
        return session

    def _on_disconnect(self, session: StreamSession) -> None:
        # Once the source is exhausted the exchange is committed regardless
        if session.finalizing or session.task is None or session.task.done():
            return
        session.task.cancel()

    async def _run(self, session: StreamSession, token_source: AsyncIterable[str]) -> None:
        context = session.context
        session.state = StreamState.STREAMING
        try:
            async for token in token_source:
                if not token:
                    continue
                await session.sink.send(format_token_event(token))
                session.chunks.append(token)

            if session.sink.disconnected:
                raise SinkClosedError()

            session.finalizing = True
            await asyncio.shield(self._finalize(session))
        except asyncio.CancelledError:
            if not session.finalizing:
                session.state = StreamState.ERRORED
                session.error = SinkClosedError()
                logger.info(
                    f"Client disconnected mid-stream; dropped {len(session.text)} characters",
                    extra=context.log_context(),
                )
                await session.sink.close()
            raise
        except Exception as e:
            session.state = StreamState.ERRORED
            session.error = e
            if isinstance(e, SinkClosedError):
                logger.info("Sink closed mid-stream; nothing persisted", extra=context.log_context())
            else:
                logger.error(
                    f"Stream failed: {type(e).__name__}: {e}",
                    extra=context.log_context(),
                )
            await self._fail(session, e)
        finally:
            await _aclose(token_source)

    async def _finalize(self, session: StreamSession) -> None:
        context = session.context
        prior = context.prior_state

        user_turn = ConversationTurn(role="user", content=context.user_message)
        assistant_turn = ConversationTurn(role="assistant", content=session.text)
        turn_count = await self.store.append_turns(
            context.conversation_id, [user_turn, assistant_turn]
        )
        session.persisted = True

        # Count after this append; prior_state may be stale under concurrent exchanges
        if should_summarize(turn_count - 2, self.summarize_threshold):
            job = SummarizationJob(
                conversation_id=context.conversation_id,
                messages=prior.messages() + [user_turn.to_message(), assistant_turn.to_message()],
            )
            try:
                self.summarizer.submit(job)
                session.summarization_submitted = True
            except Exception as e:
                logger.error(
                    f"Summarization submit failed: {type(e).__name__}: {e}",
                    extra=context.log_context(),
                )

        session.state = StreamState.COMPLETE
        try:
            await session.sink.send(DONE_EVENT)
        except SinkClosedError:
            logger.debug("Client left before [DONE]", extra=context.log_context())
        await session.sink.close()

    async def _fail(self, session: StreamSession, exc: BaseException) -> None:
        sink = session.sink
        if not sink.closed:
            try:
                await sink.send(format_error_event(_safe_message(exc)))
            except SinkClosedError:
                pass
        await sink.close()
