"""
Classification orchestrator - one logical classifier call.

    fingerprint → memo cache → model call (retry on transient) → normalize → cache write

Only the tail of the content is sent to the model (and hashed), so the cache
key and the prompt always agree on what was classified. A FormatError from the
normalizer is surfaced immediately: re-asking does not fix a structurally
wrong answer, and failures are never cached.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable, Mapping
from typing import Any

from tenacity import RetryCallState, Retrying, retry_if_exception_type, stop_after_attempt, wait_incrementing

from decluttr.classification.exceptions import (
    CancelledError,
    FormatError,
    TransientUpstreamError,
    ValidationError,
)
from decluttr.classification.models import (
    CategoryResult,
    ClassificationResult,
    ClassifierOutput,
    Item,
    LabelMatch,
    Mode,
)
from decluttr.classification.taxonomy import (
    normalize_category_answer,
    normalize_label_match,
    normalize_summary,
)
from decluttr.classification.unsubscribe import detect_unsubscribe
from decluttr.config import (
    CONTENT_TAIL_CHARS,
    LABEL_TAIL_CHARS,
    LLM_MAX_RETRIES,
    LLM_RETRY_BASE_DELAY,
)
from decluttr.llm.client import ClassifierClient
from decluttr.observability.logging import get_logger
from decluttr.observability.telemetry import counter, log_event, time_block
from decluttr.storage.cache import MemoCache, fingerprint

logger = get_logger(__name__)

_NORMALIZERS: dict[Mode, Callable[[str], Any]] = {
    Mode.SUMMARIZE: normalize_summary,
    Mode.CATEGORIZE: normalize_category_answer,
    Mode.MATCH_LABEL: normalize_label_match,
}


def truncate_tail(content: str, max_chars: int) -> str:
    """Keep the last max_chars characters."""
    if len(content) <= max_chars:
        return content
    return content[-max_chars:]


class ClassificationOrchestrator:
    """Cached, retrying front door to the classifier collaborator."""

    def __init__(
        self,
        client: ClassifierClient,
        cache: MemoCache[ClassifierOutput] | None = None,
        max_retries: int = LLM_MAX_RETRIES,
        retry_base_delay: float = LLM_RETRY_BASE_DELAY,
        content_tail_chars: int = CONTENT_TAIL_CHARS,
        label_tail_chars: int = LABEL_TAIL_CHARS,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Args:
            client: Raw classifier (Gemini in production, fakes in tests)
            cache: Memo cache shared across calls (a private one if None)
            max_retries: Extra attempts after an empty/cut-off/rate-limited answer
            retry_base_delay: Backoff grows linearly: base, 2*base, ...
            content_tail_chars: Tail kept for summarize/categorize
            label_tail_chars: Tail kept for matchLabel (its prompt is longer)
            sleep: Backoff sleeper when no cancellation event is given
        """
        self.client = client
        self.cache: MemoCache[ClassifierOutput] = cache if cache is not None else MemoCache()
        self.max_retries = max_retries
        self.retry_base_delay = retry_base_delay
        self.content_tail_chars = content_tail_chars
        self.label_tail_chars = label_tail_chars
        self._sleep = sleep

    def classify(
        self,
        item: Item,
        mode: Mode = Mode.SUMMARIZE,
        params: Mapping[str, Any] | None = None,
        cancel_event: threading.Event | None = None,
    ) -> ClassifierOutput:
        """Classify a repository item. See classify_content."""
        return self.classify_content(item.content, mode, params, cancel_event=cancel_event)

    def classify_content(
        self,
        content: str,
        mode: Mode = Mode.SUMMARIZE,
        params: Mapping[str, Any] | None = None,
        cancel_event: threading.Event | None = None,
    ) -> ClassifierOutput:
        """
        Run one logical classification.

        Raises:
            ValidationError: blank content or missing label params
            TransientUpstreamError: still empty/cut-off/rate-limited after retries
            FormatError: the model answered outside the schema (not retried)
            AuthError: credential rejected (not retried)
            NetworkError: transport failure or timeout (not retried here)
            CancelledError: cancel_event set while waiting to retry

        Side Effects:
            - Reads/writes the memo cache (one write per success, none on failure)
            - Unsubscribe detection runs on the full content on every call, cached or not
            - Calls the classifier collaborator on a cache miss
            - Increments telemetry counters (classify.<mode>.*)
        """
        mode = Mode(mode)
        params = self._validate(content, mode, params)

        tail_chars = self.label_tail_chars if mode is Mode.MATCH_LABEL else self.content_tail_chars
        truncated = truncate_tail(content, tail_chars)
        key = fingerprint(mode.value, truncated, params)

        outcome = self.cache.get(key)
        if outcome is not None:
            counter(f"classify.{mode.value}.cache_hit")
        else:
            with time_block(f"classify.{mode.value}.latency"):
                raw_text = self._call_with_retry(truncated, mode, params, cancel_event)

            outcome = _NORMALIZERS[mode](raw_text)
            if isinstance(outcome, FormatError):
                counter(f"classify.{mode.value}.format_error")
                log_event("classify.format_error", mode=mode.value, error=str(outcome), raw_chars=len(raw_text))
                raise outcome

            # Cached as the model answered; the key only covers the tail
            self.cache.set(key, outcome)
            counter(f"classify.{mode.value}.success")

        if isinstance(outcome, ClassificationResult):
            outcome = self._apply_unsubscribe_detection(outcome, content)
        return outcome

    def summarize(self, content: str, cancel_event: threading.Event | None = None) -> ClassificationResult:
        return self.classify_content(content, Mode.SUMMARIZE, cancel_event=cancel_event)  # type: ignore[return-value]

    def categorize(self, content: str) -> CategoryResult:
        return self.classify_content(content, Mode.CATEGORIZE)  # type: ignore[return-value]

    def match_label(self, content: str, label_name: str, label_description: str) -> LabelMatch:
        return self.classify_content(  # type: ignore[return-value]
            content,
            Mode.MATCH_LABEL,
            {"labelName": label_name, "labelDescription": label_description},
        )

    def _validate(
        self, content: str, mode: Mode, params: Mapping[str, Any] | None
    ) -> dict[str, Any]:
        if not isinstance(content, str) or not content.strip():
            raise ValidationError("Content is required and must be a non-empty string")

        params = dict(params or {})
        if mode is Mode.MATCH_LABEL:
            for name in ("labelName", "labelDescription"):
                value = params.get(name)
                if not isinstance(value, str) or not value.strip():
                    raise ValidationError(f"{name} is required and must be a non-empty string")
                params[name] = value.strip()
        return params

    def _call_with_retry(
        self,
        content: str,
        mode: Mode,
        params: Mapping[str, Any],
        cancel_event: threading.Event | None,
    ) -> str:
        retryer = Retrying(
            stop=stop_after_attempt(self.max_retries + 1),
            wait=wait_incrementing(start=self.retry_base_delay, increment=self.retry_base_delay),
            retry=retry_if_exception_type(TransientUpstreamError),
            sleep=self._sleeper(cancel_event),
            before_sleep=self._log_retry,
            reraise=True,
        )
        try:
            return retryer(self.client.classify, content, mode.value, params or None)
        except TransientUpstreamError as e:
            counter(f"classify.{mode.value}.retries_exhausted")
            logger.warning(
                "Classifier still failing after %d attempts (mode=%s): %s",
                self.max_retries + 1,
                mode.value,
                e,
            )
            raise

    def _sleeper(self, cancel_event: threading.Event | None) -> Callable[[float], None]:
        if cancel_event is None:
            return self._sleep

        def _wait(seconds: float) -> None:
            if cancel_event.wait(seconds):
                raise CancelledError("Classification cancelled during retry backoff")

        return _wait

    @staticmethod
    def _log_retry(retry_state: RetryCallState) -> None:
        error = retry_state.outcome.exception() if retry_state.outcome else None
        counter("classify.retry")
        log_event(
            "classify.retry_scheduled",
            attempt=retry_state.attempt_number,
            delay=retry_state.next_action.sleep if retry_state.next_action else None,
            error=type(error).__name__ if error else None,
        )

    @staticmethod
    def _apply_unsubscribe_detection(
        result: ClassificationResult, content: str
    ) -> ClassificationResult:
        # Detection runs on the full content: footers live past the truncated tail's start
        info = detect_unsubscribe(content)
        return result.model_copy(
            update={"has_unsubscribe": info.has_unsubscribe, "unsubscribe_link": info.link}
        )
