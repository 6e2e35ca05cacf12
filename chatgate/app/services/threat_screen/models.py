"""Threat screening result models."""

from dataclasses import dataclass, field
from typing import List, Optional


@dataclass
class ValidationVerdict:
    """Outcome of screening one chat message.

    ``valid`` is False only for shape problems (type, emptiness, length);
    threat scoring never flips it. Policy on the score belongs to callers.
    """
    valid: bool
    error: Optional[str] = None
    sanitized: Optional[str] = None
    suspicious: bool = False
    score: int = 0
    patterns: List[str] = field(default_factory=list)


@dataclass
class ConversationIdVerdict:
    """Outcome of checking a conversation identifier."""
    valid: bool
    error: Optional[str] = None


@dataclass
class InjectionScan:
    """Signatures matched in a text, in table order."""
    detected: bool
    patterns: List[str] = field(default_factory=list)


@dataclass
class AudioVerdict:
    """Outcome of checking an uploaded audio file."""
    valid: bool
    error: Optional[str] = None
