"""Tests for the token relay and its post-stream side effects."""

import asyncio
import json
from typing import List
from unittest.mock import AsyncMock

import pytest

from chatgate.app.exceptions import SinkClosedError
from chatgate.app.providers import MockProvider
from chatgate.app.services.conversation_store import (
    ConversationTurn,
    InMemoryConversationStore,
)
from chatgate.app.services.streaming import (
    DONE_EVENT,
    ChannelSink,
    CollectingSink,
    StreamContext,
    StreamOrchestrator,
    StreamState,
    format_error_event,
    format_token_event,
    should_summarize,
)
from chatgate.app.services.summarizer import SummarizationJob, SummarizationQueue


class RecordingQueue(SummarizationQueue):
    """Summarization queue that only remembers submissions."""

    def __init__(self):
        self.jobs: List[SummarizationJob] = []

    def submit(self, job: SummarizationJob) -> None:
        self.jobs.append(job)


class FailingQueue(SummarizationQueue):
    def submit(self, job: SummarizationJob) -> None:
        raise RuntimeError("queue full")


async def token_source(tokens, pause: bool = False):
    for token in tokens:
        if pause:
            await asyncio.sleep(0)
        yield token


async def seed(store, conversation_id: str, exchanges: int) -> None:
    for n in range(exchanges):
        await store.append_turns(conversation_id, [
            ConversationTurn(role="user", content=f"q{n}"),
            ConversationTurn(role="assistant", content=f"a{n}"),
        ])


@pytest.fixture
def store():
    return InMemoryConversationStore(max_turns=20)


@pytest.fixture
def queue():
    return RecordingQueue()


@pytest.fixture
def orchestrator(store, queue):
    return StreamOrchestrator(store=store, summarizer=queue, summarize_threshold=10)


class TestSseFraming:
    """Test event framing."""

    def test_token_event(self):
        assert format_token_event("Hel") == 'data: {"token": "Hel"}\n\n'

    def test_error_event(self):
        assert format_error_event("boom") == 'data: {"error": "boom"}\n\n'

    def test_non_ascii_is_kept(self):
        assert format_token_event("héllo") == 'data: {"token": "héllo"}\n\n'

    def test_done_sentinel(self):
        assert DONE_EVENT == "data: [DONE]\n\n"


class TestShouldSummarize:
    """Test the summarization trigger."""

    @pytest.mark.parametrize(
        ("prior", "threshold", "expected"),
        [(8, 10, True), (18, 10, True), (0, 10, False), (6, 10, False), (0, 2, True), (1, 2, False)],
    )
    def test_trigger(self, prior, threshold, expected):
        assert should_summarize(prior, threshold) is expected


class TestStreamOrchestrator:
    """Test the relay state machine."""

    @pytest.mark.asyncio
    async def test_relay_forwards_tokens_then_done(self, orchestrator, store):
        sink = CollectingSink()
        session = orchestrator.relay(
            token_source(["Hel", "lo", " world"]),
            sink,
            StreamContext(conversation_id="conv-1", user_message="hi"),
        )
        assert await session.wait() == StreamState.COMPLETE

        assert sink.frames == [
            format_token_event("Hel"),
            format_token_event("lo"),
            format_token_event(" world"),
            DONE_EVENT,
        ]
        assert sink.closed is True
        assert sink.close_calls == 1

        state = await store.get_state("conv-1")
        assert [(t.role, t.content) for t in state.turns] == [
            ("user", "hi"),
            ("assistant", "Hello world"),
        ]

    @pytest.mark.asyncio
    async def test_relay_returns_before_streaming(self, orchestrator):
        session = orchestrator.relay(
            token_source(["a"]), CollectingSink(), StreamContext("conv-1", "hi")
        )
        assert session.state == StreamState.INIT
        assert session.done is False
        await session.wait()

    @pytest.mark.asyncio
    async def test_accumulator_matches_forwarded_tokens(self, orchestrator):
        sink = CollectingSink()
        session = orchestrator.relay(
            token_source(["a", "", "b", "c"]), sink, StreamContext("conv-1", "hi")
        )
        await session.wait()

        forwarded = [json.loads(f[6:])["token"] for f in sink.frames if f != DONE_EVENT]
        assert forwarded == ["a", "b", "c"]
        assert session.text == "".join(forwarded)

    @pytest.mark.asyncio
    async def test_summarization_enqueued_on_threshold(self, orchestrator, store, queue):
        await seed(store, "conv-1", 4)
        prior = await store.get_state("conv-1")
        assert prior.turn_count == 8

        session = orchestrator.relay(
            token_source(["ok"]), CollectingSink(), StreamContext("conv-1", "next", prior)
        )
        await session.wait()

        assert len(queue.jobs) == 1
        job = queue.jobs[0]
        assert job.conversation_id == "conv-1"
        assert job.messages == prior.messages() + [
            {"role": "user", "content": "next"},
            {"role": "assistant", "content": "ok"},
        ]
        assert session.summarization_submitted is True

    @pytest.mark.asyncio
    async def test_no_summarization_off_threshold(self, orchestrator, store, queue):
        await seed(store, "conv-1", 3)
        prior = await store.get_state("conv-1")

        session = orchestrator.relay(
            token_source(["ok"]), CollectingSink(), StreamContext("conv-1", "next", prior)
        )
        await session.wait()

        assert queue.jobs == []
        assert (await store.get_state("conv-1")).turn_count == 8

    @pytest.mark.asyncio
    async def test_trigger_uses_stored_count_not_snapshot(self, orchestrator, store, queue):
        stale = await store.get_state("conv-1")
        await seed(store, "conv-1", 4)

        session = orchestrator.relay(
            token_source(["ok"]), CollectingSink(), StreamContext("conv-1", "next", stale)
        )
        await session.wait()

        assert (await store.get_state("conv-1")).turn_count == 10
        assert len(queue.jobs) == 1

    @pytest.mark.asyncio
    async def test_concurrent_exchanges_trigger_once(self, orchestrator, store, queue):
        await seed(store, "conv-1", 4)
        prior = await store.get_state("conv-1")

        sessions = [
            orchestrator.relay(
                token_source([f"answer {n}"], pause=True),
                CollectingSink(),
                StreamContext("conv-1", f"question {n}", prior),
            )
            for n in range(2)
        ]
        await asyncio.gather(*(s.wait() for s in sessions))

        assert (await store.get_state("conv-1")).turn_count == 12
        assert len(queue.jobs) == 1

    @pytest.mark.asyncio
    async def test_submit_failure_does_not_fail_stream(self, store):
        orchestrator = StreamOrchestrator(
            store=store, summarizer=FailingQueue(), summarize_threshold=2
        )

        sink = CollectingSink()
        session = orchestrator.relay(token_source(["ok"]), sink, StreamContext("conv-1", "hi"))

        assert await session.wait() == StreamState.COMPLETE
        assert sink.frames[-1] == DONE_EVENT

    @pytest.mark.asyncio
    async def test_client_disconnect_persists_nothing(self, orchestrator, store, queue):
        sink = CollectingSink(disconnect_after=2)
        session = orchestrator.relay(
            token_source(["a", "b", "c", "d", "e"], pause=True),
            sink,
            StreamContext("conv-1", "hi"),
        )

        assert await session.wait() == StreamState.ERRORED
        assert isinstance(session.error, SinkClosedError)
        assert session.persisted is False
        assert DONE_EVENT not in sink.frames
        assert len(sink.frames) == 2
        assert (await store.get_state("conv-1")).turn_count == 0
        assert queue.jobs == []

    @pytest.mark.asyncio
    async def test_source_failure_emits_error_event(self, orchestrator, store):
        provider = MockProvider(tokens=["a", "b", "c"], fail_after=2)
        sink = CollectingSink()
        session = orchestrator.relay(
            await provider.open_stream([]), sink, StreamContext("conv-1", "hi")
        )

        assert await session.wait() == StreamState.ERRORED
        assert sink.frames == [
            format_token_event("a"),
            format_token_event("b"),
            format_error_event("Stream interrupted"),
        ]
        assert sink.closed is True
        assert (await store.get_state("conv-1")).turns == []

    @pytest.mark.asyncio
    async def test_persistence_failure_emits_error_event(self, orchestrator, store, queue):
        store.append_turns = AsyncMock(side_effect=RuntimeError("disk full"))
        sink = CollectingSink()
        session = orchestrator.relay(
            token_source(["a"]), sink, StreamContext("conv-1", "hi")
        )

        assert await session.wait() == StreamState.ERRORED
        assert sink.frames[-1] == format_error_event("Stream interrupted")
        assert DONE_EVENT not in sink.frames
        assert queue.jobs == []

    @pytest.mark.asyncio
    async def test_disconnect_during_finalization_still_commits(self, orchestrator, store):
        entered = asyncio.Event()
        release = asyncio.Event()
        original = store.append_turns

        async def slow_append(conversation_id, turns):
            entered.set()
            await release.wait()
            return await original(conversation_id, turns)

        store.append_turns = slow_append
        sink = CollectingSink()
        session = orchestrator.relay(token_source(["a"]), sink, StreamContext("conv-1", "hi"))

        await entered.wait()
        sink.disconnect()
        release.set()

        assert await session.wait() == StreamState.COMPLETE
        assert session.persisted is True
        assert DONE_EVENT not in sink.frames
        assert (await store.get_state("conv-1")).turn_count == 2


class TestChannelSink:
    """Test the queue-backed sink used by HTTP responses."""

    @pytest.mark.asyncio
    async def test_frames_drain_until_close(self, orchestrator):
        sink = ChannelSink()
        orchestrator.relay(token_source(["x", "y"]), sink, StreamContext("conv-1", "hi"))

        frames = [frame async for frame in sink.frames()]
        assert frames == [format_token_event("x"), format_token_event("y"), DONE_EVENT]

    @pytest.mark.asyncio
    async def test_consumer_exit_disconnects(self):
        sink = ChannelSink()
        notified = []
        sink.on_close(lambda: notified.append(True))
        await sink.send("data: 1\n\n")

        frames = sink.frames()
        assert await frames.__anext__() == "data: 1\n\n"
        await frames.aclose()

        assert sink.closed is True
        assert sink.disconnected is True
        assert notified == [True]
        with pytest.raises(SinkClosedError):
            await sink.send("data: 2\n\n")

    @pytest.mark.asyncio
    async def test_producer_close_does_not_notify(self):
        sink = ChannelSink()
        notified = []
        sink.on_close(lambda: notified.append(True))
        await sink.close()
        await sink.close()

        assert [frame async for frame in sink.frames()] == []
        assert notified == []
        assert sink.disconnected is False
