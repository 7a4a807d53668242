"""LTCF Bridge - CIHI IRRS submission service."""

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.responses import JSONResponse
from httpx import HTTPError, HTTPStatusError
from pydantic import ValidationError

from ltcf_bridge.clients.identity import reset_identity_resolver
from ltcf_bridge.clients.irrs import close_irrs_service
from ltcf_bridge.exceptions import BridgeError, SubmissionError
from ltcf_bridge.exceptions import ValidationError as RecordValidationError
from ltcf_bridge.routers import health, submissions

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan management."""
    yield
    await close_irrs_service()
    reset_identity_resolver()


app = FastAPI(
    title="LTCF Bridge",
    description="Assembles LTCF assessments into CIHI IRRS submissions and reconciles the outcome",
    version="0.1.0",
    lifespan=lifespan,
)


@app.exception_handler(HTTPStatusError)
async def handle_httpx_status_error(
    request: Request, exc: HTTPStatusError
) -> HTTPException:
    """Handle HTTP status errors from httpx clients (e.g., the token endpoint)."""
    content = None
    if exc.response.content:
        try:
            content = exc.response.json()
        except (ValueError, UnicodeDecodeError):
            content = exc.response.text
    raise HTTPException(status_code=exc.response.status_code, detail=content)


@app.exception_handler(HTTPError)
async def handle_httpx_error(request: Request, exc: HTTPError) -> HTTPException:
    """Handle network/connection errors from httpx clients."""
    raise HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail="Service temporarily unavailable",
    )


@app.exception_handler(ValidationError)
async def handle_validation_error(
    request: Request, exc: ValidationError
) -> JSONResponse:
    """Handle Pydantic ValidationError and return 422."""
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={"detail": exc.errors()},
    )


@app.exception_handler(BridgeError)
async def handle_bridge_error(request: Request, exc: BridgeError) -> JSONResponse:
    """Map record validation to 422 and submission failures to 503."""
    if isinstance(exc, RecordValidationError):
        status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
    elif isinstance(exc, SubmissionError):
        status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    else:
        status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    return JSONResponse(status_code=status_code, content={"detail": str(exc)})


@app.exception_handler(Exception)
async def handle_unhandled_exceptions(request: Request, exc: Exception) -> JSONResponse:
    """Catch and log all unhandled exceptions."""
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "Internal server error"},
    )


# Register routers
app.include_router(health.router)
app.include_router(submissions.router)


@app.get("/")
def root() -> dict[str, str]:
    """Root endpoint."""
    return {"service": "ltcf-bridge", "version": "0.1.0"}
