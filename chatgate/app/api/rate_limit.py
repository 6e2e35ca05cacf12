"""Rate limit introspection endpoint."""

from fastapi import APIRouter, Depends, Request

from chatgate.app.api.dependencies import get_admission_dependency
from chatgate.app.exceptions import UpstreamFailureError
from chatgate.app.middleware.client_identity import get_client_identity
from chatgate.app.services.admission import AdmissionController

router = APIRouter(prefix="/api/rate-limit", tags=["rate-limit"])


@router.get("/stats")
async def rate_limit_stats(
    request: Request,
    controller: AdmissionController = Depends(get_admission_dependency),
) -> dict:
    """Current window counts and limits for the caller. Does not consume quota."""
    try:
        stats = await controller.stats(get_client_identity(request))
    except Exception as e:
        raise UpstreamFailureError("rate_state", status_code=503) from e
    return stats.to_dict()
