"""Request-level screening policy built on the pure validator.

Thresholds come from settings: a score above ``threat_reject_score`` is a
hard reject, a score above ``threat_monitor_score`` is admitted but logged
for monitoring, and an encoding attack is rejected whatever the score.
Logs carry pattern identifiers and the score, never the message text.
"""

from typing import Any, Optional

from chatgate.app.core.config import settings
from chatgate.app.core.logging import get_log_context, get_logger
from chatgate.app.exceptions import SecurityRejectionError, ValidationError
from chatgate.app.services.threat_screen.models import ValidationVerdict
from chatgate.app.services.threat_screen.validator import (
    detect_encoding_attack,
    validate_conversation_id,
    validate_message,
)

logger = get_logger(__name__)


def screen_conversation_id(
    raw: Any,
    client_id: Optional[str] = None,
    request_id: Optional[str] = None,
) -> str:
    """Return the conversation id or raise ValidationError."""
    verdict = validate_conversation_id(raw)
    if not verdict.valid:
        logger.info(
            f"Conversation id rejected: {verdict.error}",
            extra=get_log_context(
                request_id=request_id, client_id=client_id, category="validation"
            ),
        )
        raise ValidationError(verdict.error or "Invalid conversationId")
    return raw


def screen_message(
    raw: Any,
    client_id: Optional[str] = None,
    request_id: Optional[str] = None,
) -> ValidationVerdict:
    """Validate a message and apply the rejection policy.

    Returns:
        The verdict for an admitted message (``sanitized`` is what to use)

    Raises:
        ValidationError: Bad type, empty or too long
        SecurityRejectionError: Encoding attack or score above the reject line
    """
    verdict = validate_message(raw, max_length=settings.max_message_length)
    context = get_log_context(request_id=request_id, client_id=client_id)

    if not verdict.valid:
        logger.info(
            f"Message rejected: {verdict.error}",
            extra={**context, "category": "validation"},
        )
        raise ValidationError(verdict.error or "Invalid message")

    if detect_encoding_attack(verdict.sanitized or ""):
        logger.error(
            "Encoding attack detected",
            extra={
                **context,
                "category": "security",
                "score": verdict.score,
                "patterns": verdict.patterns,
            },
        )
        raise SecurityRejectionError(
            reason="encoding_attack", score=verdict.score, patterns=verdict.patterns
        )

    if verdict.score > settings.threat_reject_score:
        logger.error(
            "High-risk prompt injection rejected",
            extra={
                **context,
                "category": "security",
                "score": verdict.score,
                "patterns": verdict.patterns,
            },
        )
        raise SecurityRejectionError(
            reason="threat_score", score=verdict.score, patterns=verdict.patterns
        )

    if verdict.score > settings.threat_monitor_score:
        logger.warning(
            "Suspicious prompt admitted for monitoring",
            extra={
                **context,
                "category": "security",
                "score": verdict.score,
                "patterns": verdict.patterns,
            },
        )

    return verdict
