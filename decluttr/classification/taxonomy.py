"""
Taxonomy normalizer for raw classifier answers.

The model is asked for bare JSON but routinely wraps it in prose or markdown
fences, invents category names, and paraphrases stage labels. Everything here
maps that output onto the closed Category/Stage schema.

Every public normalizer returns either a typed result or a FormatError
*instance*; malformed input never raises. All functions are pure.
"""

from __future__ import annotations

import json
import re
from typing import Any

from decluttr.classification.exceptions import FormatError
from decluttr.classification.models import (
    Category,
    CategoryResult,
    ClassificationResult,
    LabelMatch,
    Stage,
)

CATEGORIZE_CATEGORIES = ("Personal", "Promotional", "Spam", "Newsletter", "Job", "Other")

_CATEGORY_ALIASES = {"job", "job application"}

_COMPACT_RE = re.compile(r"[\s_/\-]+")


def _compact(value: str) -> str:
    return _COMPACT_RE.sub("", value).lower()


# Labels and slugs share one lookup once spacing/punctuation is dropped:
# "OA / Screening", "oa_screening" and "OA/Screening" all become "oascreening".
_STAGE_LOOKUP: dict[str, Stage] = {}
for _stage in Stage:
    _STAGE_LOOKUP[_compact(_stage.value)] = _stage
    _STAGE_LOOKUP[_compact(_stage.slug)] = _stage
_STAGE_LOOKUP.update(
    {
        _compact("Application submitted"): Stage.APPLICATIONS_SENT,
        _compact("Job application"): Stage.APPLICATIONS_SENT,
        _compact("application_confirmation"): Stage.APPLICATIONS_SENT,
    }
)


def normalize_stage(value: Any) -> Stage | None:
    """Map a free-form stage string onto the closed stage set, or None."""
    if isinstance(value, Stage):
        return value
    if not isinstance(value, str) or not value.strip():
        return None
    return _STAGE_LOOKUP.get(_compact(value))


def normalize_category(value: Any) -> Category:
    """Coerce a raw category to Job/Other; unknown values become Other."""
    if isinstance(value, str) and value.strip().lower() in _CATEGORY_ALIASES:
        return Category.JOB
    return Category.OTHER


def extract_json_object(text: str) -> str | None:
    """
    Return the first balanced {...} span in text, or None.

    Braces inside JSON string literals are ignored so a summary containing
    "{" does not end the scan early.
    """
    start = text.find("{")
    if start == -1:
        return None

    depth = 0
    in_string = False
    escaped = False
    for idx in range(start, len(text)):
        char = text[idx]
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue
        if char == '"':
            in_string = True
        elif char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
            if depth == 0:
                return text[start : idx + 1]
    return None


def _load_object(raw_text: str) -> dict[str, Any] | FormatError:
    if not isinstance(raw_text, str):
        return FormatError("Classifier response is not text", raw_text=repr(raw_text))

    candidate = extract_json_object(raw_text)
    if candidate is None:
        return FormatError("No JSON object found in classifier response", raw_text=raw_text)

    try:
        parsed = json.loads(candidate)
    except json.JSONDecodeError as exc:
        return FormatError(f"Failed to parse classifier JSON: {exc.msg}", raw_text=raw_text)

    if not isinstance(parsed, dict):
        return FormatError("Classifier JSON is not an object", raw_text=raw_text)
    return parsed


def normalize_summary(raw_text: str) -> ClassificationResult | FormatError:
    """
    Validate and normalize a summarize-mode answer.

    Steps: extract JSON → parse → require summary/category/hasUnsubscribe →
    alias category → validate transitionTo (Job only) → accept transitionFrom
    only alongside a valid transitionTo → derive job_stage from transitionTo.
    """
    parsed = _load_object(raw_text)
    if isinstance(parsed, FormatError):
        return parsed

    summary = parsed.get("summary")
    category_raw = parsed.get("category")
    has_unsubscribe = parsed.get("hasUnsubscribe")

    if not isinstance(summary, str) or not summary.strip():
        return FormatError("Missing or empty 'summary'", raw_text=raw_text)
    if not isinstance(category_raw, str) or not category_raw.strip():
        return FormatError("Missing or empty 'category'", raw_text=raw_text)
    if not isinstance(has_unsubscribe, bool):
        return FormatError("'hasUnsubscribe' must be a boolean", raw_text=raw_text)

    category = normalize_category(category_raw)

    transition_to: Stage | None = None
    transition_from: Stage | None = None
    if category is Category.JOB:
        transition_to = normalize_stage(parsed.get("transitionTo"))
        if transition_to is not None:
            transition_from = normalize_stage(parsed.get("transitionFrom"))

    return ClassificationResult(
        summary=summary.strip(),
        category=category,
        has_unsubscribe=has_unsubscribe,
        job_stage=transition_to,
        transition_from=transition_from,
        transition_to=transition_to,
    )


def normalize_category_answer(raw_text: str) -> CategoryResult | FormatError:
    """Validate a categorize-mode answer; unknown categories become Other."""
    parsed = _load_object(raw_text)
    if isinstance(parsed, FormatError):
        return parsed

    category = parsed.get("category")
    confidence = parsed.get("confidence")
    if not isinstance(category, str) or not category.strip():
        return FormatError("Missing or empty 'category'", raw_text=raw_text)
    if isinstance(confidence, bool) or not isinstance(confidence, (int, float)):
        return FormatError("'confidence' must be a number", raw_text=raw_text)

    category = category.strip()
    if category not in CATEGORIZE_CATEGORIES:
        category = "Other"

    return CategoryResult(category=category, confidence=max(0.0, min(1.0, float(confidence))))


def normalize_label_match(raw_text: str) -> LabelMatch | FormatError:
    """Validate a matchLabel answer. Anything but a JSON true is no match."""
    parsed = _load_object(raw_text)
    if isinstance(parsed, FormatError):
        return parsed
    return LabelMatch(match=parsed.get("match") is True)
