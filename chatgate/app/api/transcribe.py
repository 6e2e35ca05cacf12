"""Audio transcription pass-through.

The uploaded file is validated and forwarded to the configured
transcription service; the gateway only shapes the response.
"""

from typing import Optional

import httpx
from fastapi import APIRouter, Depends, File, Request, UploadFile

from chatgate.app.api.dependencies import require_admission
from chatgate.app.core.config import settings
from chatgate.app.core.http_client import get_http_client
from chatgate.app.core.logging import get_log_context, get_logger
from chatgate.app.exceptions import UpstreamFailureError, ValidationError
from chatgate.app.middleware.client_identity import get_client_identity
from chatgate.app.middleware.request_id import get_request_id
from chatgate.app.services.admission import AdmissionDecision
from chatgate.app.services.threat_screen import validate_audio_file

logger = get_logger(__name__)

router = APIRouter(prefix="/api", tags=["transcribe"])


def get_transcription_client() -> httpx.AsyncClient:
    return get_http_client()


@router.post("/transcribe")
async def transcribe(
    request: Request,
    audio: Optional[UploadFile] = File(default=None),
    decision: AdmissionDecision = Depends(require_admission),
    client: httpx.AsyncClient = Depends(get_transcription_client),
) -> dict:
    """Return ``{text, vtt}`` for an uploaded audio file."""
    context = get_log_context(
        request_id=get_request_id(request),
        client_id=get_client_identity(request),
        category="transcription",
    )

    content = await audio.read() if audio is not None else b""
    verdict = validate_audio_file(
        audio.content_type if audio is not None else None,
        len(content),
        max_size_mb=settings.max_audio_size_mb,
    )
    if not verdict.valid:
        logger.info(f"Audio rejected: {verdict.error}", extra=context)
        raise ValidationError(verdict.error or "No valid audio file provided")

    if not settings.transcription_url:
        raise UpstreamFailureError(
            "transcription", "Transcription service not configured", status_code=503
        )

    headers = {}
    if settings.transcription_api_key:
        headers["Authorization"] = f"Bearer {settings.transcription_api_key}"

    try:
        resp = await client.post(
            settings.transcription_url,
            headers=headers,
            files={"file": (audio.filename or "audio", content, audio.content_type)},
        )
        resp.raise_for_status()
        data = resp.json()
        if not isinstance(data, dict):
            raise ValueError("Unexpected transcription response")
    except (httpx.HTTPError, ValueError) as e:
        logger.error(f"Transcription failed: {type(e).__name__}", extra=context)
        raise UpstreamFailureError("transcription") from e

    return {"text": data.get("text") or "", "vtt": data.get("vtt") or ""}
