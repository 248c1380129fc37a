"""FastAPI server for the Decluttr classification backend"""

from __future__ import annotations

from typing import Any

from dotenv import load_dotenv
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from decluttr.api.routes.classify import router as classify_router
from decluttr.api.routes.classify import set_orchestrator
from decluttr.api.routes.health import router as health_router
from decluttr.classification.exceptions import (
    AuthError,
    DecluttrError,
    RateLimited,
    ValidationError,
)
from decluttr.classification.orchestrator import ClassificationOrchestrator
from decluttr.config import APP_VERSION, EXTENSION_ORIGIN, is_development
from decluttr.llm.client import GeminiClassifierClient
from decluttr.observability.logging import get_logger
from decluttr.observability.telemetry import counter, log_event

# Load environment variables from .env file
load_dotenv()

app = FastAPI(title="Decluttr API", version=APP_VERSION)

logger = get_logger(__name__)


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Malformed bodies are a 400 like any other invalid input; field names only."""
    logger.warning("Validation error on %s: %d errors", request.url.path, len(exc.errors()))
    counter("api.validation_errors")
    fields = ", ".join(str(err["loc"][-1]) for err in exc.errors())
    return _error(status.HTTP_400_BAD_REQUEST, f"Invalid request body: {fields}")


@app.exception_handler(DecluttrError)
async def decluttr_exception_handler(request: Request, exc: DecluttrError) -> JSONResponse:
    if isinstance(exc, ValidationError):
        counter("api.validation_errors")
        return _error(status.HTTP_400_BAD_REQUEST, str(exc))
    if isinstance(exc, AuthError):
        counter("api.auth_errors")
        logger.error("Classifier credential rejected on %s", request.url.path)
        return _error(status.HTTP_401_UNAUTHORIZED, "Invalid API credential")
    if isinstance(exc, RateLimited):
        counter("api.rate_limited")
        return _error(
            status.HTTP_429_TOO_MANY_REQUESTS, "Rate limit exceeded. Please try again later."
        )

    counter("api.upstream_errors")
    log_event("api.classify.error", path=request.url.path, error=type(exc).__name__)
    return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, "Failed to process content")


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return _error(exc.status_code, str(exc.detail))


ALLOWED_ORIGINS = ["https://mail.google.com"]
if EXTENSION_ORIGIN:
    ALLOWED_ORIGINS.append(EXTENSION_ORIGIN)

# Allow localhost and unpacked extensions in development only
if is_development():
    ALLOWED_ORIGINS.extend(["http://localhost:3000", "http://127.0.0.1:3000"])

app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_origin_regex=r"chrome-extension://.*" if is_development() else None,
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization"],
)

# Gemini is initialized lazily on the first classify call
set_orchestrator(ClassificationOrchestrator(GeminiClassifierClient()))

app.include_router(health_router)
app.include_router(classify_router)

log_event("api.startup", service="decluttr", version=APP_VERSION)


@app.get("/")
def root() -> dict[str, Any]:
    return {
        "service": "Decluttr API",
        "version": APP_VERSION,
        "status": "running",
        "endpoints": {
            "health": "/health",
            "summarize": "/classify/summarize",
            "categorize": "/classify/categorize",
            "match_label": "/classify/match-label",
            "detect_unsubscribe": "/classify/detect-unsubscribe",
        },
    }
