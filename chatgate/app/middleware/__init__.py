from chatgate.app.middleware.client_identity import (
    get_client_identity,
    get_client_ip,
    hash_identity,
)
from chatgate.app.middleware.request_id import RequestIdMiddleware, get_request_id

__all__ = [
    "RequestIdMiddleware",
    "get_request_id",
    "get_client_identity",
    "get_client_ip",
    "hash_identity",
]
