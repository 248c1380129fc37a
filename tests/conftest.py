"""
Pytest configuration for Decluttr tests

Provides fake collaborators (classifier, clock) and item factories shared
across unit and integration tests. Nothing here touches the network.
"""

from __future__ import annotations

import json
import threading
import time
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

import pytest

from decluttr.classification.models import Item
from decluttr.observability.telemetry import reset_counters, reset_latencies


def summary_json(
    category: str = "Other",
    transition_to: str | None = None,
    transition_from: str | None = None,
    has_unsubscribe: bool = False,
    summary: str = "A short summary.",
) -> str:
    """Raw summarize-mode answer as the model would send it."""
    return json.dumps(
        {
            "summary": summary,
            "category": category,
            "hasUnsubscribe": has_unsubscribe,
            "transitionFrom": transition_from,
            "transitionTo": transition_to,
        }
    )


class FakeClassifierClient:
    """
    Scripted ClassifierClient.

    `responses` is consumed one entry per call: a str is returned, an
    exception instance is raised. When the script runs out, `default` is
    used. `by_content` overrides the script for specific content. Tracks
    the peak number of concurrent calls.
    """

    def __init__(
        self,
        responses: list[str | Exception] | None = None,
        default: str | Exception | None = None,
        by_content: dict[str, str | Exception] | None = None,
        delay: float = 0.0,
    ):
        self.responses = list(responses or [])
        self.default = default if default is not None else summary_json()
        self.by_content = by_content or {}
        self.delay = delay
        self.calls: list[tuple[str, str, dict[str, Any] | None]] = []
        self.in_flight = 0
        self.max_in_flight = 0
        self._lock = threading.Lock()

    def classify(self, content: str, mode: str, params: dict[str, Any] | None = None) -> str:
        with self._lock:
            self.calls.append((content, mode, dict(params) if params else None))
            self.in_flight += 1
            self.max_in_flight = max(self.max_in_flight, self.in_flight)
            if content in self.by_content:
                outcome = self.by_content[content]
            elif self.responses:
                outcome = self.responses.pop(0)
            else:
                outcome = self.default
        try:
            if self.delay:
                time.sleep(self.delay)
            if isinstance(outcome, Exception):
                raise outcome
            return outcome
        finally:
            with self._lock:
                self.in_flight -= 1

    @property
    def call_count(self) -> int:
        return len(self.calls)


class FakeClock:
    """Monotonic clock that only moves when told to."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture(autouse=True)
def _reset_telemetry():
    reset_counters()
    reset_latencies()
    yield


@pytest.fixture
def make_item() -> Callable[..., Item]:
    def _make(item_id: str, content: str | None = None, labels: tuple[str, ...] = ()) -> Item:
        return Item(
            id=item_id,
            content=content if content is not None else f"Subject: message {item_id}\n\nBody {item_id}",
            label_set=labels,
            created_at=datetime(2025, 1, 15, 12, 0, tzinfo=UTC),
        )

    return _make


@pytest.fixture
def fake_client() -> FakeClassifierClient:
    return FakeClassifierClient()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def sleeps() -> list[float]:
    """Records backoff sleeps instead of sleeping. Pass `sleeps.append`."""
    return []


@pytest.fixture
def make_client() -> type[FakeClassifierClient]:
    return FakeClassifierClient


@pytest.fixture(name="summary_json")
def summary_json_fixture() -> Callable[..., str]:
    return summary_json
