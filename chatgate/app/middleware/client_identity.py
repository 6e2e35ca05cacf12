"""Client identity derivation.

The identity is the partition key for rate state. Raw addresses are hashed
so they are never stored or logged.
"""

import hashlib
from typing import Optional

from fastapi import Request

from chatgate.app.core.config import settings

UNKNOWN_CLIENT = "unknown"


def _forwarded_ip(request: Request) -> Optional[str]:
    connecting = request.headers.get("CF-Connecting-IP", "").strip()
    if connecting:
        return connecting

    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first

    real_ip = request.headers.get("X-Real-IP", "").strip()
    return real_ip or None


def get_client_ip(request: Request) -> str:
    """Best-effort client address.

    With ``trust_forwarded_headers`` on, the order is CF-Connecting-IP, first
    X-Forwarded-For entry, X-Real-IP. The socket peer comes next (and is the
    only source when the flag is off), else ``unknown``.
    """
    if settings.trust_forwarded_headers:
        forwarded = _forwarded_ip(request)
        if forwarded:
            return forwarded

    if request.client and request.client.host:
        return request.client.host

    return UNKNOWN_CLIENT


def hash_identity(raw: str) -> str:
    # 32 hex chars (128 bits) for collision resistance
    key_hash = hashlib.sha256(raw.encode()).hexdigest()[:32]
    return f"ratelimit:ip:{key_hash}"


def get_client_identity(request: Request) -> str:
    """Rate limit key for the request, cached on ``request.state``."""
    identity: Optional[str] = getattr(request.state, "client_identity", None)
    if identity is None:
        identity = hash_identity(get_client_ip(request))
        request.state.client_identity = identity
    return identity
