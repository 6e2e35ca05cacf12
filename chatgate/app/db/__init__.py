"""Database package: ORM models and async session management."""

from chatgate.app.db.async_session import (
    close_async_engine,
    get_async_engine,
    get_async_session,
    get_async_session_maker,
    init_async_db,
)

from chatgate.app.db.models import Base, ConversationRecord, ConversationTurnRecord

__all__ = [
    "Base",
    "ConversationRecord",
    "ConversationTurnRecord",
    "close_async_engine",
    "get_async_engine",
    "get_async_session",
    "get_async_session_maker",
    "init_async_db",
]
