"""
Digest API endpoints.

Provides endpoints for:
- Running the scheduler tick (normally called hourly by an external cron)
- Direct invocation for one community (send, test recipient, preview, debug)
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import HTMLResponse
from pydantic import BaseModel

from neighborly.contracts.models import DigestMode, DigestRequest
from neighborly.digest.errors import CommunityNotFoundError
from neighborly.digest.service import DigestComponents, build_default_components
from neighborly.observability.logging import get_logger

router = APIRouter(prefix="/api/digest", tags=["digest"])
logger = get_logger(__name__)

_components: DigestComponents | None = None


def get_components() -> DigestComponents:
    """Get or create the singleton digest components."""
    global _components
    if _components is None:
        _components = build_default_components()
    return _components


class TickRequest(BaseModel):
    """Optional explicit instant for the tick (defaults to now)."""

    now: datetime | None = None


@router.post("/tick")
def run_tick(
    request: TickRequest | None = None,
    components: DigestComponents = Depends(get_components),
) -> dict[str, Any]:
    """Evaluate every community and send the digests that are due."""
    report = components.scheduler.tick(request.now if request else None)
    return report.to_dict()


@router.post("/run", response_model=None)
def run_digest(
    request: DigestRequest,
    components: DigestComponents = Depends(get_components),
) -> dict[str, Any] | HTMLResponse:
    """
    Run the digest for one community.

    previewOnly returns the rendered HTML body as text/html; debug returns the
    aggregated and grouped data; otherwise returns send counts.
    """
    try:
        result = components.service.invoke(request)
    except CommunityNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e)) from None

    if not result.success:
        logger.error("Direct digest run failed for %s: %s", request.community_id, result.error)
        if request.mode is not DigestMode.NORMAL:
            raise HTTPException(status_code=500, detail=result.error or "Digest run failed")

    if request.mode is DigestMode.PREVIEW:
        return HTMLResponse(content=result.html or "")
    return result.to_dict()
