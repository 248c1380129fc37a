"""
Tests for BatchScheduler.

Validates:
1. No more than `concurrency` classifier calls are outstanding at once
2. One failing item does not stop the rest; processed == total
3. Already-classified items are skipped without a call
4. AuthError ends the run after its chunk is attached and persisted
5. Cancellation stops further chunks
"""

from __future__ import annotations

import threading

import pytest

from decluttr.classification.exceptions import InvalidCredential, NetworkError
from decluttr.classification.models import Category, ClassificationResult
from decluttr.classification.orchestrator import ClassificationOrchestrator
from decluttr.pipeline.scheduler import BatchScheduler
from decluttr.storage.cache import MemoCache
from decluttr.storage.repository import InMemoryStateStore, MailboxRepository


@pytest.fixture
def store() -> InMemoryStateStore:
    return InMemoryStateStore()


@pytest.fixture
def repo(store, make_item) -> MailboxRepository:
    repository = MailboxRepository(store)
    ids = [f"m{i}" for i in range(7)]
    repository.merge(ids, {i: make_item(i, content=f"content {i}") for i in ids})
    return repository


def _scheduler(client, repo, clock, **kwargs) -> BatchScheduler:
    orchestrator = ClassificationOrchestrator(
        client, cache=MemoCache(timer=clock), sleep=lambda _seconds: None
    )
    kwargs.setdefault("inter_batch_delay_ms", 0)
    return BatchScheduler(orchestrator, repo, **kwargs)


class TestBoundedConcurrency:
    def test_never_more_than_c_outstanding(self, make_client, repo, clock):
        client = make_client(delay=0.02)
        scheduler = _scheduler(client, repo, clock, concurrency=2)

        report = scheduler.classify_all()

        assert client.max_in_flight <= 2
        assert client.call_count == 7
        assert report.processed == report.total == 7
        assert report.succeeded == 7

    def test_one_failure_does_not_block_the_rest(self, make_client, repo, clock):
        client = make_client(by_content={"content m3": NetworkError("connection reset")})
        scheduler = _scheduler(client, repo, clock, concurrency=2)

        report = scheduler.classify_all()

        assert report.processed == 7
        assert report.failed == 1
        assert "m3" in report.failures
        assert report.succeeded == 6
        assert repo.get_classification("m3") is None
        assert all(repo.get_classification(f"m{i}") for i in range(7) if i != 3)

    def test_outcomes_follow_input_order(self, make_client, repo, clock):
        scheduler = _scheduler(make_client(), repo, clock, concurrency=3)

        outcomes = list(scheduler.iter_classify())

        assert [o.item.id for o in outcomes] == [f"m{i}" for i in range(7)]


class TestProgressAndPersistence:
    def test_progress_reported_after_each_chunk(self, make_client, repo, clock):
        progress: list[tuple[int, int]] = []
        scheduler = _scheduler(make_client(), repo, clock, concurrency=3)

        scheduler.classify_all(progress=lambda done, total: progress.append((done, total)))

        assert progress == [(3, 7), (6, 7), (7, 7)]

    def test_repository_saved_after_each_chunk(self, make_client, repo, store, clock):
        scheduler = _scheduler(make_client(), repo, clock, concurrency=3)

        scheduler.classify_all()

        assert store.save_count == 3
        assert len(store.data["classifications"]) == 7

    def test_already_classified_items_skip_the_call(self, make_client, repo, clock):
        existing = ClassificationResult(category=Category.OTHER, has_unsubscribe=False, summary="x")
        repo.attach_classification("m0", existing)
        repo.attach_classification("m1", existing)
        client = make_client()
        progress: list[tuple[int, int]] = []

        report = _scheduler(client, repo, clock, concurrency=2).classify_all(
            progress=lambda done, total: progress.append((done, total))
        )

        assert client.call_count == 5
        assert report.cached == 2
        assert report.processed == 7
        assert progress[0] == (2, 7)
        assert progress[-1] == (7, 7)

    def test_explicit_item_subset(self, make_client, repo, clock):
        client = make_client()
        items = repo.items[:2]

        report = _scheduler(client, repo, clock, concurrency=2).classify_all(items)

        assert report.total == 2
        assert client.call_count == 2


class TestAuthErrorIsFatal:
    def test_run_stops_after_chunk_with_auth_error(self, make_client, repo, store, clock):
        client = make_client(by_content={"content m2": InvalidCredential("key revoked")})
        scheduler = _scheduler(client, repo, clock, concurrency=2)
        seen: list[str] = []

        with pytest.raises(InvalidCredential):
            for outcome in scheduler.iter_classify():
                seen.append(outcome.item.id)

        # Chunks [m0, m1] and [m2, m3] ran; nothing after
        assert seen == ["m0", "m1", "m2", "m3"]
        assert client.call_count == 4
        assert repo.get_classification("m3") is not None
        assert store.save_count == 2


class TestCancellation:
    def test_cancel_before_start(self, make_client, repo, clock):
        client = make_client()
        cancel = threading.Event()
        cancel.set()
        scheduler = _scheduler(client, repo, clock, concurrency=2, cancel_event=cancel)

        report = scheduler.classify_all()

        assert client.call_count == 0
        assert report.cancelled is True
        assert report.processed == 0

    def test_cancel_between_chunks(self, make_client, repo, clock):
        client = make_client()
        scheduler = _scheduler(client, repo, clock, concurrency=2, inter_batch_delay_ms=10_000)

        def _progress(done: int, total: int) -> None:
            if done >= 2:
                scheduler.cancel()

        report = scheduler.classify_all(progress=_progress)

        assert report.processed == 2
        assert report.cancelled is True
        assert client.call_count == 2

    def test_invalid_concurrency(self, make_client, repo, clock):
        with pytest.raises(ValueError):
            _scheduler(make_client(), repo, clock, concurrency=0)
