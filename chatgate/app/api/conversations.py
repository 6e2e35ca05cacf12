"""Conversation history endpoints."""

from typing import Any, Dict

from fastapi import APIRouter, Depends, Request

from chatgate.app.api.dependencies import get_store_dependency
from chatgate.app.core.logging import get_log_context, get_logger
from chatgate.app.exceptions import UpstreamFailureError
from chatgate.app.middleware.client_identity import get_client_identity
from chatgate.app.middleware.request_id import get_request_id
from chatgate.app.services.conversation_store import ConversationStore
from chatgate.app.services.threat_screen import screen_conversation_id

logger = get_logger(__name__)

router = APIRouter(prefix="/api/conversations", tags=["conversations"])


@router.get("/{conversation_id}")
async def get_conversation(
    conversation_id: str,
    request: Request,
    store: ConversationStore = Depends(get_store_dependency),
) -> Dict[str, Any]:
    """Return ``{turns, summary, turnCount}`` for a conversation."""
    conversation_id = screen_conversation_id(
        conversation_id, get_client_identity(request), get_request_id(request)
    )
    try:
        state = await store.get_state(conversation_id)
    except Exception as e:
        raise UpstreamFailureError("conversation_store", status_code=503) from e
    return state.to_dict()


@router.delete("/{conversation_id}")
async def delete_conversation(
    conversation_id: str,
    request: Request,
    store: ConversationStore = Depends(get_store_dependency),
) -> Dict[str, bool]:
    """Clear a conversation's turns and summary."""
    request_id = get_request_id(request)
    client_id = get_client_identity(request)
    conversation_id = screen_conversation_id(conversation_id, client_id, request_id)
    try:
        await store.clear(conversation_id)
    except Exception as e:
        raise UpstreamFailureError("conversation_store", status_code=503) from e

    logger.info(
        "Conversation cleared",
        extra=get_log_context(
            request_id=request_id, client_id=client_id, conversation_id=conversation_id
        ),
    )
    return {"success": True}
