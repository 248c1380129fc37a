"""Classification endpoints.

- POST /classify/summarize - summary, Job/Other category, funnel stage
- POST /classify/categorize - coarse inbox category with confidence
- POST /classify/match-label - does the message fit a user-defined label
- POST /classify/detect-unsubscribe - pattern-based, no model call

Errors raised here are Decluttr errors; decluttr.api.app maps them to
{"error": ...} responses.
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, HTTPException

from decluttr.api.models import ContentRequest, MatchLabelRequest
from decluttr.classification.orchestrator import ClassificationOrchestrator
from decluttr.classification.unsubscribe import detect_unsubscribe
from decluttr.observability.telemetry import log_event

router = APIRouter(prefix="/classify", tags=["classify"])

# Module-level storage for the dependency injected at startup
_orchestrator: ClassificationOrchestrator | None = None


def set_orchestrator(orchestrator: ClassificationOrchestrator | None) -> None:
    """Inject the orchestrator dependency.

    Side Effects:
        - Sets module-level _orchestrator variable
    """
    global _orchestrator
    _orchestrator = orchestrator


def get_orchestrator() -> ClassificationOrchestrator:
    if _orchestrator is None:
        raise HTTPException(status_code=500, detail="Classifier not initialized")
    return _orchestrator


@router.post("/summarize")
def summarize(request: ContentRequest) -> dict[str, Any]:
    result = get_orchestrator().summarize(request.content)
    log_event("api.summarize.success", category=result.category.value)
    return result.to_api_dict()


@router.post("/categorize")
def categorize(request: ContentRequest) -> dict[str, Any]:
    result = get_orchestrator().categorize(request.content)
    log_event("api.categorize.success", category=result.category)
    return {"category": result.category, "confidence": result.confidence}


@router.post("/match-label")
def match_label(request: MatchLabelRequest) -> dict[str, Any]:
    result = get_orchestrator().match_label(
        request.content, request.label_name, request.label_description
    )
    return {"match": result.match}


@router.post("/detect-unsubscribe")
def unsubscribe(request: ContentRequest) -> dict[str, Any]:
    """Unsubscribe link detection. Never calls the model."""
    info = detect_unsubscribe(request.content)
    return {"hasUnsubscribe": info.has_unsubscribe, "unsubscribeLink": info.link}
