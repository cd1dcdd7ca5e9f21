"""Health check endpoint for the digest API."""

from __future__ import annotations

import os
from datetime import UTC, datetime
from typing import Any

from fastapi import APIRouter

from neighborly.config import APP_VERSION, ENV, SYNTHESIS_ENABLED
from neighborly.observability.telemetry import get_counters

router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check() -> dict[str, Any]:
    """Health check endpoint.

    Returns service status, version, credential readiness for Gemini and
    Resend (presence only, no API calls) and in-process digest counters.
    """
    has_api_key = bool(os.getenv("GOOGLE_API_KEY"))
    has_project = bool(os.getenv("GOOGLE_CLOUD_PROJECT"))

    return {
        "status": "healthy",
        "service": "Neighborly Digest API",
        "version": APP_VERSION,
        "environment": ENV,
        "timestamp": datetime.now(UTC).isoformat(),
        "llm": {
            "ready": has_api_key or has_project,
            "synthesis_enabled": SYNTHESIS_ENABLED,
        },
        "email": {"ready": bool(os.getenv("RESEND_API_KEY"))},
        "counters": {k: v for k, v in get_counters().items() if k.startswith("digest.")},
    }
