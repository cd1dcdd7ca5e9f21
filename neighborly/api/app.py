"""FastAPI server for the Neighborly weekly digest"""

from __future__ import annotations

from typing import Any

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from neighborly.api.routes.digest import router as digest_router
from neighborly.api.routes.health import router as health_router
from neighborly.config import API_HOST, API_PORT, APP_VERSION
from neighborly.observability.logging import get_logger
from neighborly.observability.telemetry import counter, log_event

app = FastAPI(title="Neighborly Digest API", version=APP_VERSION)

logger = get_logger(__name__)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """
    Validation error handler that reports field names without echoing input.
    """
    logger.warning("Validation error on %s: %s", request.url.path, exc.errors())
    counter("api.validation_errors")

    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "detail": "Invalid request format. Please check your request and try again.",
            "error_count": len(exc.errors()),
            "invalid_fields": [str(err["loc"][-1]) for err in exc.errors()],
        },
    )


app.include_router(health_router)
app.include_router(digest_router)

log_event("api.startup", service="neighborly-digest", version=APP_VERSION)


@app.get("/")
def root() -> dict[str, Any]:
    return {
        "service": "Neighborly Digest API",
        "version": APP_VERSION,
        "status": "running",
        "endpoints": {
            "health": "/health",
            "tick": "/api/digest/tick",
            "run": "/api/digest/run",
        },
    }


def main() -> None:
    """Run the API with uvicorn."""
    import uvicorn

    uvicorn.run("neighborly.api.app:app", host=API_HOST, port=API_PORT)


if __name__ == "__main__":
    main()
