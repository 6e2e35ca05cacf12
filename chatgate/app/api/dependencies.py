"""Shared FastAPI dependencies."""

from fastapi import Depends, Request
from redis.exceptions import RedisError

from chatgate.app.core.logging import get_log_context, get_logger
from chatgate.app.exceptions import RateLimitExceededError
from chatgate.app.middleware.client_identity import get_client_identity
from chatgate.app.middleware.request_id import get_request_id
from chatgate.app.providers.base import CompletionProvider
from chatgate.app.providers.factory import get_completion_provider
from chatgate.app.services.admission import (
    AdmissionController,
    AdmissionDecision,
    RateStoreError,
    get_admission_controller,
)
from chatgate.app.services.conversation_store import (
    ConversationStore,
    get_conversation_store,
)
from chatgate.app.services.streaming import StreamOrchestrator
from chatgate.app.services.summarizer import SummarizationQueue, get_summarizer

logger = get_logger(__name__)

# Retry hint when the rate state itself is unavailable
FAIL_CLOSED_RETRY_AFTER = 60


def get_admission_dependency() -> AdmissionController:
    return get_admission_controller()


def get_store_dependency() -> ConversationStore:
    return get_conversation_store()


def get_provider_dependency() -> CompletionProvider:
    return get_completion_provider()


def get_summarizer_dependency() -> SummarizationQueue:
    return get_summarizer()


def get_orchestrator_dependency(
    store: ConversationStore = Depends(get_store_dependency),
    summarizer: SummarizationQueue = Depends(get_summarizer_dependency),
) -> StreamOrchestrator:
    return StreamOrchestrator(store=store, summarizer=summarizer)


async def require_admission(
    request: Request,
    controller: AdmissionController = Depends(get_admission_dependency),
) -> AdmissionDecision:
    """Admit the caller or raise RateLimitExceededError.

    Fails closed: if the rate state cannot be read or written the request
    is treated as rate limited.
    """
    identity = get_client_identity(request)
    try:
        decision = await controller.check(identity)
    except (RateStoreError, RedisError, OSError) as e:
        logger.error(
            f"Rate state unavailable, failing closed: {type(e).__name__}",
            extra=get_log_context(
                request_id=get_request_id(request),
                client_id=identity,
                category="rate_limit",
            ),
        )
        raise RateLimitExceededError(retry_after=FAIL_CLOSED_RETRY_AFTER) from e

    if not decision.allowed:
        raise RateLimitExceededError(
            retry_after=decision.retry_after or FAIL_CLOSED_RETRY_AFTER,
            window=decision.window,
        )
    return decision
