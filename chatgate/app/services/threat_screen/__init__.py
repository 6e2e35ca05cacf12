"""Input validation and threat scoring package."""

from chatgate.app.services.threat_screen.models import (
    AudioVerdict,
    ConversationIdVerdict,
    InjectionScan,
    ValidationVerdict,
)
from chatgate.app.services.threat_screen.policy import (
    screen_conversation_id,
    screen_message,
)
from chatgate.app.services.threat_screen.signatures import (
    THREAT_SIGNATURES,
    ThreatSignature,
)
from chatgate.app.services.threat_screen.validator import (
    MAX_CONVERSATION_ID_LENGTH,
    MAX_MESSAGE_LENGTH,
    calculate_threat_score,
    detect_encoding_attack,
    detect_prompt_injection,
    has_excessive_special_chars,
    validate_audio_file,
    validate_conversation_id,
    validate_message,
)

__all__ = [
    # Models
    "ValidationVerdict",
    "ConversationIdVerdict",
    "InjectionScan",
    "AudioVerdict",
    # Signatures
    "ThreatSignature",
    "THREAT_SIGNATURES",
    # Validator
    "MAX_MESSAGE_LENGTH",
    "MAX_CONVERSATION_ID_LENGTH",
    "validate_message",
    "validate_conversation_id",
    "detect_prompt_injection",
    "calculate_threat_score",
    "detect_encoding_attack",
    "has_excessive_special_chars",
    "validate_audio_file",
    # Policy
    "screen_message",
    "screen_conversation_id",
]
