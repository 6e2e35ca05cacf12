"""Chat API endpoint: admission, screening, then a streamed completion."""

from typing import Any, Dict, List

from fastapi import APIRouter, Depends, Request
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, ConfigDict, Field

from chatgate.app.api.dependencies import (
    get_orchestrator_dependency,
    get_provider_dependency,
    get_store_dependency,
    require_admission,
)
from chatgate.app.core.logging import get_log_context, get_logger
from chatgate.app.exceptions import GatewayException, UpstreamFailureError
from chatgate.app.middleware.client_identity import get_client_identity
from chatgate.app.middleware.request_id import get_request_id
from chatgate.app.providers.base import CompletionProvider
from chatgate.app.services.admission import AdmissionDecision
from chatgate.app.services.conversation_store import ConversationState, ConversationStore
from chatgate.app.services.prompts import get_assistant_prompt
from chatgate.app.services.streaming import ChannelSink, StreamContext, StreamOrchestrator
from chatgate.app.services.threat_screen import screen_conversation_id, screen_message

logger = get_logger(__name__)

router = APIRouter(prefix="/api", tags=["chat"])


class ChatRequest(BaseModel):
    """Chat request body.

    Fields are left untyped so the screening layer, not pydantic, decides
    what is acceptable and with which error.
    """
    model_config = ConfigDict(populate_by_name=True)

    message: Any = None
    conversation_id: Any = Field(default=None, alias="conversationId")


def build_completion_messages(state: ConversationState, user_message: str) -> List[Dict[str, str]]:
    """System prompt (with summary), prior turns, then the new user message."""
    return [
        {"role": "system", "content": get_assistant_prompt(state.summary)},
        *state.messages(),
        {"role": "user", "content": user_message},
    ]


@router.post("/chat")
async def chat(
    request: Request,
    body: ChatRequest,
    decision: AdmissionDecision = Depends(require_admission),
    store: ConversationStore = Depends(get_store_dependency),
    provider: CompletionProvider = Depends(get_provider_dependency),
    orchestrator: StreamOrchestrator = Depends(get_orchestrator_dependency),
) -> StreamingResponse:
    request_id = get_request_id(request)
    client_id = get_client_identity(request)

    conversation_id = screen_conversation_id(body.conversation_id, client_id, request_id)
    verdict = screen_message(body.message, client_id, request_id)
    user_message = verdict.sanitized or ""

    try:
        state = await store.get_state(conversation_id)
    except GatewayException:
        raise
    except Exception as e:
        logger.error(
            f"Conversation store read failed: {type(e).__name__}",
            extra=get_log_context(
                request_id=request_id,
                client_id=client_id,
                conversation_id=conversation_id,
                category="upstream",
            ),
        )
        raise UpstreamFailureError("conversation_store", status_code=503) from e

    token_source = await provider.open_stream(build_completion_messages(state, user_message))

    sink = ChannelSink()
    orchestrator.relay(
        token_source,
        sink,
        StreamContext(
            conversation_id=conversation_id,
            user_message=user_message,
            prior_state=state,
            client_id=client_id,
            request_id=request_id,
        ),
    )

    logger.info(
        "Chat stream started",
        extra=get_log_context(
            request_id=request_id,
            client_id=client_id,
            conversation_id=conversation_id,
            category="stream",
            prior_turns=state.turn_count,
            threat_score=verdict.score,
        ),
    )

    return StreamingResponse(
        sink.frames(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Request-ID": request_id,
        },
    )
