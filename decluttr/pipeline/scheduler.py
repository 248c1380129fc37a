"""
Batch scheduler - classify many items against a rate-limited classifier.

Items are processed in consecutive chunks of `concurrency`. Each chunk runs on
a thread pool and is fully awaited before the next one starts, so at most
`concurrency` classifier calls are ever outstanding. Between chunks the
scheduler attaches results, persists the repository and pauses.

Per-item failures are reported, not raised. AuthError is the exception: a
rejected credential will fail every remaining item, so the run stops after
the chunk that hit it.
"""

from __future__ import annotations

import concurrent.futures
import threading
from collections.abc import Callable, Iterable, Iterator
from dataclasses import dataclass, field

from decluttr.classification.exceptions import AuthError
from decluttr.classification.models import ClassificationResult, Item, Mode
from decluttr.classification.orchestrator import ClassificationOrchestrator
from decluttr.config import BATCH_CONCURRENCY, BATCH_DELAY_MS
from decluttr.observability.logging import get_logger
from decluttr.observability.telemetry import counter, log_event, time_block
from decluttr.storage.repository import MailboxRepository

logger = get_logger(__name__)

ProgressCallback = Callable[[int, int], None]


@dataclass(frozen=True)
class BatchOutcome:
    """Result of one item in a batch run."""

    item: Item
    result: ClassificationResult | None = None
    error: Exception | None = None
    cached: bool = False  # already classified in the repository; no call made

    @property
    def ok(self) -> bool:
        return self.error is None and self.result is not None


@dataclass
class BatchReport:
    """Summary of a drained batch run."""

    total: int
    processed: int = 0
    succeeded: int = 0
    cached: int = 0
    failures: dict[str, str] = field(default_factory=dict)
    cancelled: bool = False

    @property
    def failed(self) -> int:
        return len(self.failures)


class BatchScheduler:
    """Chunked, bounded-concurrency classification of repository items."""

    def __init__(
        self,
        orchestrator: ClassificationOrchestrator,
        repository: MailboxRepository,
        concurrency: int = BATCH_CONCURRENCY,
        inter_batch_delay_ms: int = BATCH_DELAY_MS,
        cancel_event: threading.Event | None = None,
    ):
        """
        Args:
            orchestrator: Classifies one item (cache, retries, normalization)
            repository: Receives results; persisted after every chunk
            concurrency: Chunk size and worker count
            inter_batch_delay_ms: Pause between chunks
            cancel_event: Set to stop launching further chunks
        """
        if concurrency < 1:
            raise ValueError("concurrency must be >= 1")
        self.orchestrator = orchestrator
        self.repository = repository
        self.concurrency = concurrency
        self.inter_batch_delay_ms = inter_batch_delay_ms
        self.cancel_event = cancel_event if cancel_event is not None else threading.Event()

    def cancel(self) -> None:
        self.cancel_event.set()

    def iter_classify(
        self,
        items: Iterable[Item] | None = None,
        progress: ProgressCallback | None = None,
    ) -> Iterator[BatchOutcome]:
        """
        Classify items chunk by chunk, yielding one outcome per item.

        Args:
            items: Items to classify (default: everything in the repository)
            progress: Called with (processed, total) after each chunk

        Raises:
            AuthError: after the chunk that hit it has been attached,
                persisted and yielded

        Side Effects:
            - Calls the orchestrator from worker threads
            - Attaches results to the repository (this thread only)
            - Saves the repository after each chunk
        """
        items = _unique(self.repository.items if items is None else items)
        total = len(items)
        processed = 0

        pending: list[Item] = []
        for item in items:
            existing = self.repository.get_classification(item.id)
            if existing is None:
                pending.append(item)
                continue
            processed += 1
            yield BatchOutcome(item=item, result=existing, cached=True)

        log_event(
            "scheduler.run_started",
            total=total,
            pending=len(pending),
            concurrency=self.concurrency,
        )
        if processed and progress:
            progress(processed, total)

        delay_seconds = self.inter_batch_delay_ms / 1000
        with concurrent.futures.ThreadPoolExecutor(
            max_workers=self.concurrency, thread_name_prefix="classify"
        ) as executor:
            for start in range(0, len(pending), self.concurrency):
                if self.cancel_event.is_set():
                    log_event("scheduler.cancelled", processed=processed, total=total)
                    return

                chunk = pending[start : start + self.concurrency]
                with time_block("scheduler.chunk"):
                    outcomes = self._run_chunk(executor, chunk)

                auth_error = self._attach(outcomes)
                self.repository.save()
                processed += len(outcomes)
                if progress:
                    progress(processed, total)
                yield from outcomes

                if auth_error is not None:
                    logger.error("Stopping batch run: %s", auth_error)
                    raise auth_error

                is_last = start + self.concurrency >= len(pending)
                if not is_last and delay_seconds > 0 and self.cancel_event.wait(delay_seconds):
                    log_event("scheduler.cancelled", processed=processed, total=total)
                    return

        log_event("scheduler.run_finished", processed=processed, total=total)

    def classify_all(
        self,
        items: Iterable[Item] | None = None,
        progress: ProgressCallback | None = None,
    ) -> BatchReport:
        """Drain iter_classify into a BatchReport. AuthError still propagates."""
        items = _unique(self.repository.items if items is None else items)
        report = BatchReport(total=len(items))
        for outcome in self.iter_classify(items, progress=progress):
            report.processed += 1
            if outcome.cached:
                report.cached += 1
            elif outcome.ok:
                report.succeeded += 1
            else:
                report.failures[outcome.item.id] = str(outcome.error)
        report.cancelled = report.processed < report.total and self.cancel_event.is_set()
        return report

    def _run_chunk(
        self, executor: concurrent.futures.ThreadPoolExecutor, chunk: list[Item]
    ) -> list[BatchOutcome]:
        futures = [executor.submit(self._classify_one, item) for item in chunk]
        concurrent.futures.wait(futures)
        # Input order, not completion order
        return [future.result() for future in futures]

    def _classify_one(self, item: Item) -> BatchOutcome:
        try:
            result = self.orchestrator.classify(
                item, Mode.SUMMARIZE, cancel_event=self.cancel_event
            )
        except Exception as exc:
            counter("scheduler.item_failed")
            log_event("scheduler.item_failed", item_id=item.id, error=type(exc).__name__)
            return BatchOutcome(item=item, error=exc)
        counter("scheduler.item_classified")
        return BatchOutcome(item=item, result=result)  # type: ignore[arg-type]

    def _attach(self, outcomes: list[BatchOutcome]) -> AuthError | None:
        auth_error: AuthError | None = None
        for outcome in outcomes:
            if outcome.ok and outcome.item.id in self.repository:
                self.repository.attach_classification(outcome.item.id, outcome.result)  # type: ignore[arg-type]
            elif isinstance(outcome.error, AuthError) and auth_error is None:
                auth_error = outcome.error
        return auth_error


def _unique(items: Iterable[Item]) -> list[Item]:
    seen: set[str] = set()
    unique: list[Item] = []
    for item in items:
        if item.id not in seen:
            seen.add(item.id)
            unique.append(item)
    return unique
