"""Server-sent event framing for the chat relay."""

import json
from typing import Any, Dict

DONE_EVENT = "data: [DONE]\n\n"


def format_event(payload: Dict[str, Any]) -> str:
    return f"data: {json.dumps(payload, ensure_ascii=False)}\n\n"


def format_token_event(token: str) -> str:
    return format_event({"token": token})


def format_error_event(message: str) -> str:
    return format_event({"error": message})
