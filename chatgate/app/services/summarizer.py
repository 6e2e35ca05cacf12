"""Background conversation summarization.

Jobs are submitted by the streaming relay once an exchange is persisted and
processed by a single worker task started in the application lifespan. A
failed job is logged and dropped; it never affects the chat request that
triggered it.
"""

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

from chatgate.app.core.config import settings
from chatgate.app.core.logging import get_log_context, get_logger
from chatgate.app.providers.base import CompletionProvider
from chatgate.app.providers.factory import get_completion_provider
from chatgate.app.services.conversation_store import (
    ConversationStore,
    get_conversation_store,
)
from chatgate.app.services.prompts import SUMMARY_FALLBACK, get_summarizer_prompt

logger = get_logger(__name__)


@dataclass
class SummarizationJob:
    """Snapshot of a conversation to summarize."""
    conversation_id: str
    messages: List[Dict[str, str]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, object]:
        return {"conversationId": self.conversation_id, "messages": self.messages}


def format_transcript(messages: List[Dict[str, str]]) -> str:
    return "\n".join(f"{m['role']}: {m['content']}" for m in messages)


def build_summary_request(job: SummarizationJob) -> List[Dict[str, str]]:
    """Messages sent to the completion service for one job."""
    return [
        {"role": "system", "content": get_summarizer_prompt()},
        {
            "role": "user",
            "content": f"Summarize this conversation:\n\n{format_transcript(job.messages)}",
        },
    ]


class SummarizationQueue(ABC):
    """Destination for summarization jobs."""

    @abstractmethod
    def submit(self, job: SummarizationJob) -> None:
        """Enqueue a job without waiting for it to run."""


class BackgroundSummarizer(SummarizationQueue):
    """In-process summarizer backed by an asyncio.Queue.

    Example:
        summarizer = BackgroundSummarizer()
        summarizer.start()
        summarizer.submit(SummarizationJob("conv-1", messages))

        # On application shutdown:
        await summarizer.shutdown()
    """

    def __init__(
        self,
        store: Optional[ConversationStore] = None,
        provider: Optional[CompletionProvider] = None,
        max_tokens: Optional[int] = None,
        store_factory: Optional[Callable[[], ConversationStore]] = None,
        provider_factory: Optional[Callable[[], CompletionProvider]] = None,
    ):
        """Initialize the summarizer.

        Args:
            store: Store receiving summaries (resolved lazily if omitted)
            provider: Completion provider (resolved lazily if omitted)
            max_tokens: Token cap for the generated summary
            store_factory: Callable resolving the store when none is given
            provider_factory: Callable resolving the provider when none is given
        """
        self._store = store
        self._provider = provider
        self._store_factory = store_factory
        self._provider_factory = provider_factory
        self.max_tokens = max_tokens or settings.summary_max_tokens

        self._queue: asyncio.Queue[SummarizationJob] = asyncio.Queue()
        self._worker: Optional[asyncio.Task] = None
        self._started = False

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def _get_store(self) -> ConversationStore:
        if self._store is None:
            factory = self._store_factory or get_conversation_store
            self._store = factory()
        return self._store

    def _get_provider(self) -> CompletionProvider:
        if self._provider is None:
            factory = self._provider_factory or get_completion_provider
            self._provider = factory()
        return self._provider

    def start(self) -> None:
        """Start the worker task. Called during application startup."""
        if not self._started:
            self._worker = asyncio.create_task(self._run())
            self._started = True
            logger.debug("BackgroundSummarizer started")

    async def shutdown(self) -> None:
        """Drain pending jobs, then stop the worker."""
        logger.debug("BackgroundSummarizer shutting down...")
        if self._started and self._worker is not None:
            await self._queue.join()
            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                pass
        else:
            # Jobs submitted without a running worker still get processed
            while not self._queue.empty():
                await self.run_job(self._queue.get_nowait())
                self._queue.task_done()

        self._started = False
        self._worker = None
        logger.debug("BackgroundSummarizer shutdown complete")

    def submit(self, job: SummarizationJob) -> None:
        self._queue.put_nowait(job)
        logger.info(
            f"Summarization queued ({len(job.messages)} messages)",
            extra=get_log_context(conversation_id=job.conversation_id, category="summary"),
        )

    async def join(self) -> None:
        """Wait until every queued job has been processed."""
        await self._queue.join()

    async def _run(self) -> None:
        while True:
            job = await self._queue.get()
            try:
                await self.run_job(job)
            finally:
                self._queue.task_done()

    async def run_job(self, job: SummarizationJob) -> Optional[str]:
        """Generate and store the summary for one job.

        Returns:
            The stored summary, or None if the job failed or the
            conversation was cleared meanwhile
        """
        context = get_log_context(conversation_id=job.conversation_id, category="summary")
        try:
            text = await self._get_provider().complete(
                build_summary_request(job), max_tokens=self.max_tokens
            )
            summary = text.strip() or SUMMARY_FALLBACK
            stored = await self._get_store().update_summary(job.conversation_id, summary)
        except Exception as e:
            logger.error(f"Summarization failed: {type(e).__name__}: {e}", extra=context)
            return None

        if not stored:
            logger.info("Conversation cleared before its summary landed; discarded", extra=context)
            return None

        logger.info("Conversation summary updated", extra=context)
        return summary


_summarizer: Optional[BackgroundSummarizer] = None


def get_summarizer() -> BackgroundSummarizer:
    """Get or create the global summarizer instance."""
    global _summarizer
    if _summarizer is None:
        _summarizer = BackgroundSummarizer()
    return _summarizer


def reset_summarizer() -> None:
    """Reset the global instance (for testing)."""
    global _summarizer
    _summarizer = None
