"""Pure input validation and threat scoring.

Nothing in this module performs I/O or keeps state; every function maps
untyped input to a structured verdict.
"""

import re
from typing import Any, Iterable, Optional

from chatgate.app.services.threat_screen.models import (
    AudioVerdict,
    ConversationIdVerdict,
    InjectionScan,
    ValidationVerdict,
)
from chatgate.app.services.threat_screen.signatures import (
    DELIMITER_RUN,
    DELIMITER_RUN_THRESHOLD,
    DELIMITER_WEIGHT,
    HEX_ESCAPE_RUN,
    INJECTION_KEYWORDS,
    KEYWORD_WEIGHT,
    MAX_SCORE,
    ROLE_MARKER,
    ROLE_MARKER_WEIGHT,
    THREAT_SIGNATURES,
    UNICODE_ESCAPE_RUN,
    ThreatSignature,
)

MAX_MESSAGE_LENGTH = 4000  # ~1000 tokens
MAX_CONVERSATION_ID_LENGTH = 100
CONVERSATION_ID_PATTERN = re.compile(r"conv-[0-9]+")

SPECIAL_CHAR = re.compile(r"""[^a-zA-Z0-9\s.,!?;:()\-'"]""")
SPECIAL_CHAR_RATIO = 0.3

ALLOWED_AUDIO_TYPES = frozenset(("audio/webm", "audio/mp4", "audio/mpeg", "audio/wav"))


def detect_prompt_injection(
    text: str,
    signatures: Iterable[ThreatSignature] = THREAT_SIGNATURES,
) -> InjectionScan:
    """Match text against every signature independently."""
    matched = [sig.identifier for sig in signatures if sig.matches(text)]
    return InjectionScan(detected=bool(matched), patterns=matched)


def calculate_threat_score(
    text: str,
    signatures: Iterable[ThreatSignature] = THREAT_SIGNATURES,
) -> int:
    """Heuristic 0-100 score; 0 when no signature matches.

    Base is the summed weight of matched signatures. Secondary increments
    add keyword density, repeated delimiters and repeated role markers.
    """
    signatures = tuple(signatures)
    matched = [sig for sig in signatures if sig.matches(text)]
    if not matched:
        return 0
    return _score(text, matched)


def _score(text: str, matched: Iterable[ThreatSignature]) -> int:
    score = sum(sig.weight for sig in matched)

    lower = text.lower()
    score += KEYWORD_WEIGHT * sum(1 for kw in INJECTION_KEYWORDS if kw in lower)

    if len(DELIMITER_RUN.findall(text)) > DELIMITER_RUN_THRESHOLD:
        score += DELIMITER_WEIGHT

    score += ROLE_MARKER_WEIGHT * len(ROLE_MARKER.findall(text))

    return min(score, MAX_SCORE)


def validate_message(raw: Any, max_length: int = MAX_MESSAGE_LENGTH) -> ValidationVerdict:
    """Validate and screen a chat message.

    Order: type, emptiness, length (on the raw value), trim, signatures.

    Args:
        raw: Untyped message value from the request body
        max_length: Maximum characters allowed before trimming

    Returns:
        ValidationVerdict with the trimmed text, score and matched identifiers
    """
    if not isinstance(raw, str):
        return ValidationVerdict(valid=False, error="Invalid message type")

    if not raw:
        return ValidationVerdict(valid=False, error="Message cannot be empty")

    if len(raw) > max_length:
        return ValidationVerdict(
            valid=False,
            error=f"Message too long. Maximum {max_length} characters.",
        )

    trimmed = raw.strip()
    if not trimmed:
        return ValidationVerdict(valid=False, error="Message cannot be empty")

    matched = [sig for sig in THREAT_SIGNATURES if sig.matches(trimmed)]
    return ValidationVerdict(
        valid=True,
        sanitized=trimmed,
        suspicious=bool(matched),
        score=_score(trimmed, matched) if matched else 0,
        patterns=[sig.identifier for sig in matched],
    )


def validate_conversation_id(raw: Any) -> ConversationIdVerdict:
    """Accept only ``conv-<digits>`` identifiers of bounded length."""
    if not isinstance(raw, str) or not raw:
        return ConversationIdVerdict(valid=False, error="Invalid conversationId type")

    if len(raw) > MAX_CONVERSATION_ID_LENGTH:
        return ConversationIdVerdict(valid=False, error="Invalid conversationId length")

    if not CONVERSATION_ID_PATTERN.fullmatch(raw):
        return ConversationIdVerdict(valid=False, error="Invalid conversationId format")

    return ConversationIdVerdict(valid=True)


def detect_encoding_attack(text: str) -> bool:
    """Flag long runs of ``\\xHH`` or ``\\uHHHH`` escape sequences."""
    return bool(HEX_ESCAPE_RUN.search(text) or UNICODE_ESCAPE_RUN.search(text))


def has_excessive_special_chars(text: str) -> bool:
    """True when more than 30% of characters are outside ordinary prose."""
    if not text:
        return False
    return len(SPECIAL_CHAR.findall(text)) / len(text) > SPECIAL_CHAR_RATIO


def validate_audio_file(
    content_type: Optional[str],
    size_bytes: Optional[int],
    max_size_mb: int = 10,
) -> AudioVerdict:
    """Check an uploaded audio file's declared type and size."""
    if not content_type or size_bytes is None or size_bytes <= 0:
        return AudioVerdict(valid=False, error="No valid audio file provided")

    if size_bytes > max_size_mb * 1024 * 1024:
        return AudioVerdict(valid=False, error=f"Audio file too large. Maximum {max_size_mb}MB.")

    # Browsers append codec parameters, e.g. "audio/webm;codecs=opus"
    media_type = content_type.split(";", 1)[0].strip().lower()
    if media_type not in ALLOWED_AUDIO_TYPES:
        return AudioVerdict(valid=False, error="Invalid audio file type")

    return AudioVerdict(valid=True)
