"""Conversation history storage.

Append-only per-conversation turn history plus a rolling summary. Each
conversation is owned by a single writer at a time, so two requests for
the same conversation never interleave their turns.
"""

import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import AsyncContextManager, Dict, List, Literal, Optional, Sequence

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from chatgate.app.core.config import settings
from chatgate.app.core.locks import KeyedLock
from chatgate.app.core.logging import get_logger
from chatgate.app.db.models import ConversationRecord, ConversationTurnRecord

logger = get_logger(__name__)

Role = Literal["user", "assistant"]


def now_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class ConversationTurn:
    """One role-tagged message."""
    role: Role
    content: str
    timestamp: int = field(default_factory=now_ms)

    def to_message(self) -> Dict[str, str]:
        return {"role": self.role, "content": self.content}

    def to_dict(self) -> Dict[str, object]:
        return {"role": self.role, "content": self.content, "timestamp": self.timestamp}


@dataclass
class ConversationState:
    """Snapshot of a conversation.

    ``turn_count`` counts every turn ever appended; ``turns`` holds only the
    most recent history window.
    """
    turns: List[ConversationTurn] = field(default_factory=list)
    summary: str = ""
    turn_count: int = 0

    def messages(self) -> List[Dict[str, str]]:
        return [turn.to_message() for turn in self.turns]

    def to_dict(self) -> Dict[str, object]:
        return {
            "turns": [turn.to_dict() for turn in self.turns],
            "summary": self.summary,
            "turnCount": self.turn_count,
        }


class ConversationStore(ABC):
    """Abstract conversation store."""

    def __init__(self, max_turns: Optional[int] = None):
        self.max_turns = max_turns or settings.history_max_turns
        self._locks = KeyedLock()

    def _owner(self, conversation_id: str) -> AsyncContextManager[None]:
        return self._locks.hold(conversation_id)

    @abstractmethod
    async def get_state(self, conversation_id: str) -> ConversationState:
        """Return turns (latest window), summary and total turn count."""

    async def append_turn(self, conversation_id: str, turn: ConversationTurn) -> int:
        """Append one turn and return the new total turn count."""
        return await self.append_turns(conversation_id, [turn])

    @abstractmethod
    async def append_turns(
        self, conversation_id: str, turns: Sequence[ConversationTurn]
    ) -> int:
        """Append turns in order, all or nothing.

        Returns:
            Total turn count after the append
        """

    @abstractmethod
    async def set_summary(self, conversation_id: str, summary: str) -> None:
        """Replace the conversation summary, creating the conversation if needed."""

    @abstractmethod
    async def update_summary(self, conversation_id: str, summary: str) -> bool:
        """Replace the summary only if the conversation still has turns.

        Returns:
            False when the conversation was cleared or never existed
        """

    @abstractmethod
    async def clear(self, conversation_id: str) -> None:
        """Delete all turns and the summary."""

    async def close(self) -> None:
        """Release backend resources."""


@dataclass
class _MemoryConversation:
    turns: List[ConversationTurn] = field(default_factory=list)
    summary: str = ""
    turn_count: int = 0


class InMemoryConversationStore(ConversationStore):
    """Process-local store. Data is lost on restart."""

    def __init__(self, max_turns: Optional[int] = None):
        super().__init__(max_turns)
        self._conversations: Dict[str, _MemoryConversation] = {}

    async def get_state(self, conversation_id: str) -> ConversationState:
        conv = self._conversations.get(conversation_id)
        if conv is None:
            return ConversationState()
        return ConversationState(
            turns=list(conv.turns), summary=conv.summary, turn_count=conv.turn_count
        )

    async def append_turns(
        self, conversation_id: str, turns: Sequence[ConversationTurn]
    ) -> int:
        async with self._owner(conversation_id):
            conv = self._conversations.setdefault(conversation_id, _MemoryConversation())
            conv.turns.extend(turns)
            conv.turn_count += len(turns)
            if len(conv.turns) > self.max_turns:
                conv.turns = conv.turns[-self.max_turns:]
            return conv.turn_count

    async def set_summary(self, conversation_id: str, summary: str) -> None:
        async with self._owner(conversation_id):
            conv = self._conversations.setdefault(conversation_id, _MemoryConversation())
            conv.summary = summary

    async def update_summary(self, conversation_id: str, summary: str) -> bool:
        async with self._owner(conversation_id):
            conv = self._conversations.get(conversation_id)
            if conv is None or not conv.turn_count:
                return False
            conv.summary = summary
            return True

    async def clear(self, conversation_id: str) -> None:
        async with self._owner(conversation_id):
            self._conversations.pop(conversation_id, None)


class SqlConversationStore(ConversationStore):
    """SQLAlchemy-backed store.

    The (conversation_id, seq) unique constraint rejects a concurrent append
    from another instance instead of interleaving it.
    """

    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        max_turns: Optional[int] = None,
    ):
        super().__init__(max_turns)
        self._session_maker = session_maker

    async def get_state(self, conversation_id: str) -> ConversationState:
        async with self._session_maker() as session:
            record = await session.get(ConversationRecord, conversation_id)
            if record is None:
                return ConversationState()

            result = await session.execute(
                select(ConversationTurnRecord)
                .where(ConversationTurnRecord.conversation_id == conversation_id)
                .order_by(ConversationTurnRecord.seq.desc())
                .limit(self.max_turns)
            )
            rows = list(reversed(result.scalars().all()))
            return ConversationState(
                turns=[
                    ConversationTurn(role=row.role, content=row.content, timestamp=row.timestamp)
                    for row in rows
                ],
                summary=record.summary or "",
                turn_count=record.turn_count,
            )

    async def append_turns(
        self, conversation_id: str, turns: Sequence[ConversationTurn]
    ) -> int:
        async with self._owner(conversation_id):
            async with self._session_maker() as session:
                async with session.begin():
                    record = await session.get(ConversationRecord, conversation_id)
                    if record is None:
                        record = ConversationRecord(
                            conversation_id=conversation_id, summary="", turn_count=0
                        )
                        session.add(record)

                    seq = record.turn_count
                    for turn in turns:
                        seq += 1
                        session.add(ConversationTurnRecord(
                            conversation_id=conversation_id,
                            seq=seq,
                            role=turn.role,
                            content=turn.content,
                            timestamp=turn.timestamp,
                        ))
                    record.turn_count = seq
                    record.updated_at = datetime.now(timezone.utc)
                    await session.flush()

                    # Keep only the history window
                    await session.execute(
                        delete(ConversationTurnRecord).where(
                            ConversationTurnRecord.conversation_id == conversation_id,
                            ConversationTurnRecord.seq <= seq - self.max_turns,
                        )
                    )
                    return seq

    async def set_summary(self, conversation_id: str, summary: str) -> None:
        async with self._owner(conversation_id):
            async with self._session_maker() as session:
                async with session.begin():
                    record = await session.get(ConversationRecord, conversation_id)
                    if record is None:
                        record = ConversationRecord(
                            conversation_id=conversation_id, turn_count=0
                        )
                        session.add(record)
                    record.summary = summary
                    record.updated_at = datetime.now(timezone.utc)

    async def update_summary(self, conversation_id: str, summary: str) -> bool:
        async with self._owner(conversation_id):
            async with self._session_maker() as session:
                async with session.begin():
                    record = await session.get(ConversationRecord, conversation_id)
                    if record is None or not record.turn_count:
                        return False
                    record.summary = summary
                    record.updated_at = datetime.now(timezone.utc)
                    return True

    async def clear(self, conversation_id: str) -> None:
        async with self._owner(conversation_id):
            async with self._session_maker() as session:
                async with session.begin():
                    await session.execute(
                        delete(ConversationTurnRecord).where(
                            ConversationTurnRecord.conversation_id == conversation_id
                        )
                    )
                    await session.execute(
                        delete(ConversationRecord).where(
                            ConversationRecord.conversation_id == conversation_id
                        )
                    )

    async def count_rows(self, conversation_id: str) -> int:
        """Number of stored turn rows (the history window, not turn_count)."""
        async with self._session_maker() as session:
            result = await session.execute(
                select(func.count()).select_from(ConversationTurnRecord).where(
                    ConversationTurnRecord.conversation_id == conversation_id
                )
            )
            return int(result.scalar_one())


_conversation_store: ConversationStore | None = None


def get_conversation_store() -> ConversationStore:
    """Get or create the global store (SQL when DATABASE_URL is set)."""
    global _conversation_store
    if _conversation_store is None:
        if settings.database_url:
            from chatgate.app.db.async_session import get_async_session_maker
            _conversation_store = SqlConversationStore(get_async_session_maker())
            logger.info("Using SQL conversation store")
        else:
            _conversation_store = InMemoryConversationStore()
            logger.info("Using in-memory conversation store")
    return _conversation_store


def reset_conversation_store() -> None:
    """Reset the global instance (for testing)."""
    global _conversation_store
    _conversation_store = None
