"""
Classifier collaborator: one raw model call per invocation.

The orchestrator owns caching, retries and normalization; this layer only
renders the prompt, calls Gemini with a deadline, and converts provider
failures into the Decluttr error taxonomy.
"""

from __future__ import annotations

import concurrent.futures
import threading
from collections.abc import Mapping
from typing import Any, Protocol

from google.api_core import exceptions as google_exceptions

from decluttr.classification.exceptions import (
    EmptyResponse,
    InvalidCredential,
    NetworkError,
    RateLimited,
    Truncated,
)
from decluttr.config import BATCH_CONCURRENCY, LLM_TIMEOUT_SECONDS
from decluttr.infrastructure.settings import GEMINI_MAX_TOKENS, GEMINI_TEMPERATURE
from decluttr.llm.gemini import get_gemini_model_with_options
from decluttr.llm.prompts import SYSTEM_INSTRUCTION, build_prompt
from decluttr.observability.logging import get_logger
from decluttr.observability.telemetry import counter

logger = get_logger(__name__)


class ClassifierClient(Protocol):
    """Anything that turns message content into raw model text."""

    def classify(
        self, content: str, mode: str, params: Mapping[str, Any] | None = None
    ) -> str: ...


def _finish_reason(response: Any) -> str | None:
    candidates = getattr(response, "candidates", None) or []
    if not candidates:
        return None
    reason = getattr(candidates[0], "finish_reason", None)
    if reason is None:
        return None
    return getattr(reason, "name", str(reason)).upper()


def _response_text(response: Any) -> str:
    # .text raises ValueError when the candidate has no parts (blocked answers)
    try:
        return (response.text or "").strip()
    except ValueError:
        return ""


class GeminiClassifierClient:
    """Gemini-backed ClassifierClient."""

    def __init__(
        self,
        model: Any | None = None,
        timeout_seconds: float = LLM_TIMEOUT_SECONDS,
        max_workers: int = BATCH_CONCURRENCY,
    ):
        """
        Args:
            model: Preconfigured GenerativeModel (default: shared instance, lazy)
            timeout_seconds: Deadline for one generate_content call
            max_workers: Calls that may be in flight at once
        """
        self._model = model
        self.timeout_seconds = timeout_seconds
        self.max_workers = max_workers
        # Calls run on a private pool so a stuck request can be abandoned at the
        # deadline instead of pinning the caller's thread.
        self._executor_lock = threading.Lock()
        self._executor = self._new_executor()

    def _new_executor(self) -> concurrent.futures.ThreadPoolExecutor:
        return concurrent.futures.ThreadPoolExecutor(
            max_workers=self.max_workers, thread_name_prefix="gemini"
        )

    def _abandon(self, executor: concurrent.futures.ThreadPoolExecutor) -> None:
        """Swap in a fresh pool; the old one keeps its hung worker until the SDK returns."""
        with self._executor_lock:
            if self._executor is executor:
                self._executor = self._new_executor()
        executor.shutdown(wait=False)
        counter("llm.pool_replaced")

    @property
    def model(self) -> Any:
        if self._model is None:
            self._model = get_gemini_model_with_options(system_instruction=SYSTEM_INSTRUCTION)
        return self._model

    def classify(self, content: str, mode: str, params: Mapping[str, Any] | None = None) -> str:
        """
        Send one prompt to Gemini and return the raw answer text.

        Raises:
            RateLimited: quota/rate limit (429)
            InvalidCredential: credential rejected (401/403)
            Truncated: answer stopped at the output-token limit
            EmptyResponse: no text, including safety-blocked answers
            NetworkError: transport failure, server error or timeout

        Side Effects:
            - Calls the Gemini API
            - Increments telemetry counters (llm.<mode>.*)
        """
        prompt = build_prompt(mode, content, params)
        generation_config = {
            "temperature": GEMINI_TEMPERATURE,
            "max_output_tokens": GEMINI_MAX_TOKENS.get(mode, 600),
        }

        model = self.model
        with self._executor_lock:
            executor = self._executor
            future = executor.submit(
                model.generate_content, prompt, generation_config=generation_config
            )
        try:
            response = future.result(timeout=self.timeout_seconds)
        except concurrent.futures.TimeoutError as e:
            if not future.cancel() and not future.done():
                # Already running: its worker is stuck, later calls must not queue behind it
                self._abandon(executor)
            counter(f"llm.{mode}.timeout")
            logger.warning("Gemini call timed out after %.0fs (mode=%s)", self.timeout_seconds, mode)
            raise NetworkError(f"Classifier call timed out after {self.timeout_seconds}s") from e
        except (google_exceptions.ResourceExhausted, google_exceptions.TooManyRequests) as e:
            counter(f"llm.{mode}.rate_limited")
            raise RateLimited(f"Classifier rate limit exceeded: {e}") from e
        except (google_exceptions.Unauthenticated, google_exceptions.PermissionDenied) as e:
            counter(f"llm.{mode}.auth_error")
            raise InvalidCredential(f"Invalid classifier credential: {e}") from e
        except google_exceptions.GoogleAPICallError as e:
            counter(f"llm.{mode}.upstream_error")
            logger.warning("Gemini call failed (mode=%s): %s", mode, e)
            raise NetworkError(f"Classifier API error: {e}") from e
        except (ConnectionError, OSError) as e:
            counter(f"llm.{mode}.network_error")
            raise NetworkError(f"Failed to reach classifier: {e}") from e

        text = _response_text(response)
        reason = _finish_reason(response)

        if reason == "MAX_TOKENS":
            counter(f"llm.{mode}.truncated")
            raise Truncated("Classifier response was cut off")
        if not text:
            counter(f"llm.{mode}.empty")
            if reason == "SAFETY":
                raise EmptyResponse(
                    "Classifier returned no content (safety filter)", finish_reason=reason
                )
            raise EmptyResponse(finish_reason=reason)

        counter(f"llm.{mode}.ok")
        return text

    def close(self) -> None:
        with self._executor_lock:
            executor = self._executor
        executor.shutdown(wait=False, cancel_futures=True)
