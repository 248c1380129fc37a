"""
Domain models (Pydantic v2) for mailbox triage.

Items and classification results are frozen: a classification is replaced,
never edited in place, and the only post-hoc change a human can make (a stage
override) produces a new result via model_copy.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class Category(str, Enum):
    """Closed top-level category for the summarize mode."""

    JOB = "Job"
    OTHER = "Other"


class Stage(str, Enum):
    """Job-application funnel stage. Values are the user-facing labels."""

    APPLICATIONS_SENT = "Applications Sent"
    OA_SCREENING = "OA / Screening"
    INTERVIEW = "Interview"
    OFFER = "Offer"
    ACCEPTED = "Accepted"
    REJECTED = "Rejected"
    NO_RESPONSE = "No Response"
    DECLINED = "Declined"

    @property
    def slug(self) -> str:
        return STAGE_TO_SLUG[self]

    @classmethod
    def from_slug(cls, slug: str | None) -> Stage | None:
        if not slug:
            return None
        return SLUG_TO_STAGE.get(slug) or LEGACY_SLUGS.get(slug)


STAGE_TO_SLUG: dict[Stage, str] = {
    Stage.APPLICATIONS_SENT: "applications_sent",
    Stage.OA_SCREENING: "oa_screening",
    Stage.INTERVIEW: "interview",
    Stage.OFFER: "offer",
    Stage.ACCEPTED: "accepted",
    Stage.REJECTED: "rejected",
    Stage.NO_RESPONSE: "no_response",
    Stage.DECLINED: "declined",
}
SLUG_TO_STAGE: dict[str, Stage] = {slug: stage for stage, slug in STAGE_TO_SLUG.items()}

# Slugs written by older extension builds; still present in saved sessions.
LEGACY_SLUGS: dict[str, Stage] = {
    "application_confirmation": Stage.APPLICATIONS_SENT,
    "rejection": Stage.REJECTED,
}

_STAGE_LABELS = frozenset(stage.value for stage in Stage)

DEFAULT_START_STAGE = Stage.APPLICATIONS_SENT
NO_PROGRESS_SINK = Stage.NO_RESPONSE


class Mode(str, Enum):
    """Classifier call purpose; doubles as the memo-cache key prefix."""

    SUMMARIZE = "summarize"
    CATEGORIZE = "categorize"
    MATCH_LABEL = "matchLabel"


class Bucket(str, Enum):
    """Inbox partitions shown to the user."""

    PRIMARY = "primary"
    PROMOTIONS = "promotions"
    JOB = "job"


class Item(BaseModel):
    """A fetched mailbox message."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(min_length=1)
    content: str
    label_set: tuple[str, ...] = ()
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    subject: str = ""
    sender: str = ""
    snippet: str = ""
    list_unsubscribe_urls: tuple[str, ...] = ()
    list_unsubscribe_mailto: str | None = None

    def __repr__(self) -> str:
        # Content and subject are PII; keep them out of logs and tracebacks
        return f"Item(id={self.id!r}, labels={len(self.label_set)}, chars={len(self.content)})"


class ClassificationResult(BaseModel):
    """Normalized output of the summarize mode."""

    model_config = ConfigDict(frozen=True)

    category: Category
    has_unsubscribe: bool
    unsubscribe_link: str | None = None
    job_stage: Stage | None = None
    transition_from: Stage | None = None
    transition_to: Stage | None = None
    user_override_stage: Stage | None = None
    summary: str

    @field_validator(
        "job_stage", "transition_from", "transition_to", "user_override_stage", mode="before"
    )
    @classmethod
    def _accept_slugs(cls, value: Any) -> Any:
        # Saved sessions store slugs (including legacy ones) as well as labels
        if isinstance(value, str) and value not in _STAGE_LABELS:
            return Stage.from_slug(value.strip()) or value
        return value

    @property
    def effective_stage(self) -> Stage | None:
        """Stage shown to the user: a human override wins over the model."""
        return self.user_override_stage or self.transition_to or self.job_stage

    def with_override(self, stage: Stage | None) -> ClassificationResult:
        return self.model_copy(update={"user_override_stage": stage})

    def to_api_dict(self) -> dict[str, Any]:
        """camelCase wire format; jobStage is the machine-readable slug."""
        return {
            "summary": self.summary,
            "category": self.category.value,
            "hasUnsubscribe": self.has_unsubscribe,
            "unsubscribeLink": self.unsubscribe_link,
            "jobStage": self.job_stage.slug if self.job_stage else None,
            "transitionFrom": self.transition_from.value if self.transition_from else None,
            "transitionTo": self.transition_to.value if self.transition_to else None,
        }


class CategoryResult(BaseModel):
    """Output of the categorize mode."""

    model_config = ConfigDict(frozen=True)

    category: str
    confidence: float = Field(ge=0.0, le=1.0)


class LabelMatch(BaseModel):
    """Output of the matchLabel mode."""

    model_config = ConfigDict(frozen=True)

    match: bool


ClassifierOutput = ClassificationResult | CategoryResult | LabelMatch


class SyncCursor(BaseModel):
    """Pagination position in the mail source; None once exhausted."""

    next_page_token: str | None = None


@dataclass(frozen=True)
class StageFlowEdge:
    """Aggregated count of observed transitions between two stages."""

    from_stage: Stage
    to_stage: Stage
    count: int
