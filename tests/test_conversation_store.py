"""Tests for the in-memory and SQL conversation stores."""

import asyncio

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from chatgate.app.db.async_session import init_async_db
from chatgate.app.services.conversation_store import (
    ConversationState,
    ConversationTurn,
    InMemoryConversationStore,
    SqlConversationStore,
)


def _exchange(n: int):
    return [
        ConversationTurn(role="user", content=f"question {n}", timestamp=n * 10),
        ConversationTurn(role="assistant", content=f"answer {n}", timestamp=n * 10 + 1),
    ]


def _sqlite_engine():
    return create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )


@pytest_asyncio.fixture
async def sql_store():
    engine = _sqlite_engine()
    await init_async_db(engine)
    yield SqlConversationStore(async_sessionmaker(engine, expire_on_commit=False), max_turns=4)
    await engine.dispose()


@pytest_asyncio.fixture(params=["memory", "sql"])
async def store(request):
    if request.param == "memory":
        yield InMemoryConversationStore(max_turns=4)
        return

    engine = _sqlite_engine()
    await init_async_db(engine)
    yield SqlConversationStore(async_sessionmaker(engine, expire_on_commit=False), max_turns=4)
    await engine.dispose()

class TestConversationState:
    """Test the state snapshot."""

    def test_to_dict_shape(self):
        state = ConversationState(turns=_exchange(1), summary="s", turn_count=2)
        assert state.to_dict() == {
            "turns": [
                {"role": "user", "content": "question 1", "timestamp": 10},
                {"role": "assistant", "content": "answer 1", "timestamp": 11},
            ],
            "summary": "s",
            "turnCount": 2,
        }

    def test_messages_drop_timestamps(self):
        state = ConversationState(turns=_exchange(1))
        assert state.messages() == [
            {"role": "user", "content": "question 1"},
            {"role": "assistant", "content": "answer 1"},
        ]


class TestConversationStore:
    """Behavior shared by every backend."""

    @pytest.mark.asyncio
    async def test_unknown_conversation_is_empty(self, store):
        state = await store.get_state("conv-1")
        assert state.turns == []
        assert state.summary == ""
        assert state.turn_count == 0

    @pytest.mark.asyncio
    async def test_append_keeps_order(self, store):
        await store.append_turns("conv-1", _exchange(1))
        await store.append_turn("conv-1", ConversationTurn(role="user", content="more", timestamp=99))

        state = await store.get_state("conv-1")
        assert [t.content for t in state.turns] == ["question 1", "answer 1", "more"]
        assert state.turn_count == 3

    @pytest.mark.asyncio
    async def test_history_window_keeps_latest_turns(self, store):
        for n in range(1, 4):
            await store.append_turns("conv-1", _exchange(n))

        state = await store.get_state("conv-1")
        assert state.turn_count == 6
        assert [t.content for t in state.turns] == [
            "question 2", "answer 2", "question 3", "answer 3",
        ]

    @pytest.mark.asyncio
    async def test_summary_round_trip(self, store):
        await store.append_turns("conv-1", _exchange(1))
        await store.set_summary("conv-1", "Greetings were exchanged.")

        state = await store.get_state("conv-1")
        assert state.summary == "Greetings were exchanged."
        assert state.turn_count == 2

    @pytest.mark.asyncio
    async def test_summary_before_any_turn(self, store):
        await store.set_summary("conv-1", "early")
        state = await store.get_state("conv-1")
        assert state.summary == "early"
        assert state.turns == []

    @pytest.mark.asyncio
    async def test_clear_removes_everything(self, store):
        await store.append_turns("conv-1", _exchange(1))
        await store.set_summary("conv-1", "summary")
        await store.clear("conv-1")

        state = await store.get_state("conv-1")
        assert state.turns == [] and state.summary == "" and state.turn_count == 0

    @pytest.mark.asyncio
    async def test_append_returns_total_count(self, store):
        assert await store.append_turns("conv-1", _exchange(1)) == 2
        assert await store.append_turns("conv-1", _exchange(2)) == 4
        assert await store.append_turn(
            "conv-1", ConversationTurn(role="user", content="more", timestamp=99)
        ) == 5

    @pytest.mark.asyncio
    async def test_update_summary_requires_turns(self, store):
        assert await store.update_summary("conv-1", "orphan") is False
        assert (await store.get_state("conv-1")).summary == ""

        await store.append_turns("conv-1", _exchange(1))
        assert await store.update_summary("conv-1", "fresh") is True
        assert (await store.get_state("conv-1")).summary == "fresh"

    @pytest.mark.asyncio
    async def test_update_summary_after_clear(self, store):
        await store.append_turns("conv-1", _exchange(1))
        await store.clear("conv-1")

        assert await store.update_summary("conv-1", "stale") is False
        state = await store.get_state("conv-1")
        assert state.summary == "" and state.turn_count == 0

    @pytest.mark.asyncio
    async def test_ownership_locks_are_released(self, store):
        await store.append_turns("conv-1", _exchange(1))
        await store.set_summary("conv-2", "s")
        assert len(store._locks) == 0

        await store.clear("conv-1")
        assert len(store._locks) == 0

    @pytest.mark.asyncio
    async def test_conversations_are_isolated(self, store):
        await store.append_turns("conv-1", _exchange(1))
        assert (await store.get_state("conv-2")).turn_count == 0

    @pytest.mark.asyncio
    async def test_concurrent_exchanges_do_not_interleave(self, store):
        await asyncio.gather(*(store.append_turns("conv-1", _exchange(n)) for n in range(2)))

        state = await store.get_state("conv-1")
        roles = [t.role for t in state.turns]
        assert roles == ["user", "assistant", "user", "assistant"]
        pairs = [
            (state.turns[i].content[-1], state.turns[i + 1].content[-1])
            for i in range(0, 4, 2)
        ]
        assert all(q == a for q, a in pairs)


class TestSqlConversationStore:
    """SQL-specific behavior."""

    @pytest.mark.asyncio
    async def test_old_rows_are_pruned(self, sql_store):
        for n in range(1, 6):
            await sql_store.append_turns("conv-1", _exchange(n))

        assert await sql_store.count_rows("conv-1") == 4
        assert (await sql_store.get_state("conv-1")).turn_count == 10

    @pytest.mark.asyncio
    async def test_timestamps_survive_storage(self, sql_store):
        await sql_store.append_turns("conv-1", _exchange(7))
        state = await sql_store.get_state("conv-1")
        assert [t.timestamp for t in state.turns] == [70, 71]
