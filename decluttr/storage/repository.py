"""
Mailbox repository - ordered items plus an id-keyed classification map.

The item list has two regions:

    [ head window (last refresh_head, provider order) | load-more pages ]

A head refresh rebuilds the head window from the provider's current first
page, keeping every item (and classification) the repository already holds.
Pages appended by "load more" survive head refreshes. Classifications live
in their own map so re-fetching an item never loses its result.

Single owner: mutations are serialized by an RLock, and during a batch run
only the scheduler's coordinating thread writes.
"""

from __future__ import annotations

import json
import os
import threading
from pathlib import Path
from typing import Any, Protocol

from pydantic import BaseModel, Field

from decluttr.classification.models import (
    Bucket,
    Category,
    ClassificationResult,
    Item,
    Stage,
    SyncCursor,
)
from decluttr.classification.taxonomy import normalize_stage
from decluttr.config import STATE_PATH
from decluttr.observability.logging import get_logger
from decluttr.observability.telemetry import counter, log_event

logger = get_logger(__name__)


class RepositoryState(BaseModel):
    """Persisted layout of the repository."""

    items: list[Item] = Field(default_factory=list)
    classifications: dict[str, ClassificationResult] = Field(default_factory=dict)
    cursor: SyncCursor = Field(default_factory=SyncCursor)
    selected_bucket: Bucket = Bucket.PRIMARY
    job_label_id: str | None = None
    # Leading items that came from the last head refresh; the rest are load-more pages
    head_size: int = 0
    # Load-more pages fetched since the last dispose; the cursor belongs to them once nonzero
    pages_loaded: int = 0


class StateStore(Protocol):
    """Where repository state is kept between sessions."""

    def load(self) -> dict[str, Any] | None: ...

    def save(self, data: dict[str, Any]) -> None: ...


class InMemoryStateStore:
    """StateStore kept in process memory (tests, ephemeral sessions)."""

    def __init__(self, data: dict[str, Any] | None = None):
        self.data = data
        self.save_count = 0

    def load(self) -> dict[str, Any] | None:
        return self.data

    def save(self, data: dict[str, Any]) -> None:
        self.data = data
        self.save_count += 1


class JsonFileStateStore:
    """StateStore backed by a single JSON file, replaced atomically on save."""

    def __init__(self, path: str | Path):
        self.path = Path(path)

    def load(self) -> dict[str, Any] | None:
        if not self.path.exists():
            return None
        with open(self.path, encoding="utf-8") as f:
            return json.load(f)

    def save(self, data: dict[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(data, f)
        os.replace(tmp_path, self.path)


def is_job(
    result: ClassificationResult | None, item: Item | None, job_label_id: str | None
) -> bool:
    """Job-bucket membership: any one signal is enough."""
    if item is not None and job_label_id and job_label_id in item.label_set:
        return True
    if result is None:
        return False
    if result.category is Category.JOB:
        return True
    return any(
        stage is not None
        for stage in (result.job_stage, result.transition_to, result.user_override_stage)
    )


def bucket_for(
    result: ClassificationResult | None, item: Item | None = None, job_label_id: str | None = None
) -> Bucket:
    """Inbox bucket for an item. Unclassified items land in primary."""
    if is_job(result, item, job_label_id):
        return Bucket.JOB
    if result is not None and result.has_unsubscribe:
        return Bucket.PROMOTIONS
    return Bucket.PRIMARY


class MailboxRepository:
    """In-memory mailbox state with best-effort persistence."""

    def __init__(self, store: StateStore | None = None):
        self.store: StateStore = store if store is not None else InMemoryStateStore()
        self._lock = threading.RLock()
        self._items: dict[str, Item] = {}
        self._head_ids: list[str] = []
        self._tail_ids: list[str] = []
        self._classifications: dict[str, ClassificationResult] = {}
        self._cursor = SyncCursor()
        self._selected_bucket = Bucket.PRIMARY
        self._job_label_id: str | None = None
        self._pages_loaded = 0

    @classmethod
    def from_path(cls, path: str | Path = STATE_PATH) -> MailboxRepository:
        """Repository persisted to a JSON file (DECLUTTR_STATE_PATH by default), loaded."""
        repository = cls(JsonFileStateStore(path))
        repository.load()
        return repository

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def load(self) -> bool:
        """
        Restore state from the store.

        Returns:
            True if saved state was found and applied. A missing or unreadable
            blob leaves the repository empty.
        """
        try:
            data = self.store.load()
        except (OSError, ValueError) as e:
            logger.warning("Failed to read saved state, starting empty: %s", e)
            return False
        if not data:
            return False

        try:
            state = RepositoryState.model_validate(data)
        except ValueError as e:
            logger.warning("Saved state is invalid, starting empty: %s", e)
            return False

        with self._lock:
            self._restore(state)
        log_event(
            "repository.loaded",
            items=len(state.items),
            classifications=len(state.classifications),
        )
        return True

    def save(self) -> bool:
        """
        Persist a snapshot. Best-effort: failures are logged, never raised.

        Returns:
            True if the store accepted the snapshot.
        """
        data = self.snapshot().model_dump(mode="json")
        try:
            self.store.save(data)
        except Exception as e:
            counter("repository.save_failed")
            logger.warning("Failed to persist repository state: %s", e)
            return False
        counter("repository.saved")
        return True

    def dispose(self) -> None:
        """Save, then drop all in-memory state."""
        self.save()
        with self._lock:
            self._restore(RepositoryState())

    def snapshot(self) -> RepositoryState:
        """Point-in-time copy for readers outside the owning thread."""
        with self._lock:
            return RepositoryState(
                items=[self._items[item_id] for item_id in self._ordered_ids()],
                classifications=dict(self._classifications),
                cursor=self._cursor.model_copy(),
                selected_bucket=self._selected_bucket,
                job_label_id=self._job_label_id,
                head_size=len(self._head_ids),
                pages_loaded=self._pages_loaded,
            )

    def _restore(self, state: RepositoryState) -> None:
        self._items = {item.id: item for item in state.items}
        ordered = list(self._items)
        head_size = min(state.head_size, len(ordered))
        self._head_ids = ordered[:head_size]
        self._tail_ids = ordered[head_size:]
        self._classifications = dict(state.classifications)
        self._cursor = state.cursor
        self._selected_bucket = state.selected_bucket
        self._job_label_id = state.job_label_id
        self._pages_loaded = state.pages_loaded

    # ------------------------------------------------------------------
    # Items
    # ------------------------------------------------------------------

    def merge(self, fresh_ids: list[str], fresh_items_by_id: dict[str, Item]) -> list[Item]:
        """
        Rebuild the head window from a fresh first page.

        Held items win over fresh copies. Held head items missing from
        fresh_ids are dropped, but their classifications stay keyed by id so
        a message that comes back via load-more keeps its result and any user
        override. Load-more items are kept after the new head.

        Returns:
            The new head window, in fresh_ids order.
        """
        with self._lock:
            new_head: list[str] = []
            seen: set[str] = set()
            skipped = 0
            for item_id in fresh_ids:
                if item_id in seen:
                    continue
                if item_id not in self._items:
                    fresh = fresh_items_by_id.get(item_id)
                    if fresh is None:
                        skipped += 1
                        logger.warning("Skipping message %s: not held and not fetched", item_id)
                        continue
                    self._items[item_id] = fresh
                seen.add(item_id)
                new_head.append(item_id)

            dropped = [item_id for item_id in self._head_ids if item_id not in seen]
            # A load-more item that reappears on the first page moves into the head
            self._tail_ids = [item_id for item_id in self._tail_ids if item_id not in seen]
            for item_id in dropped:
                self._items.pop(item_id, None)
            self._head_ids = new_head

            log_event(
                "repository.merged",
                head=len(new_head),
                dropped=len(dropped),
                skipped=skipped,
                total=len(self._items),
            )
            return [self._items[item_id] for item_id in new_head]

    def append_page(self, items: list[Item], next_page_token: str | None) -> list[Item]:
        """Append unseen items after everything held and advance the cursor.

        Returns:
            The items that were actually added.
        """
        with self._lock:
            added: list[Item] = []
            for item in items:
                if item.id in self._items:
                    continue
                self._items[item.id] = item
                self._tail_ids.append(item.id)
                added.append(item)
            self._cursor = SyncCursor(next_page_token=next_page_token)
            self._pages_loaded += 1
            log_event("repository.page_appended", added=len(added), has_more=bool(next_page_token))
            return added

    def add_label(self, item_ids: list[str], label_id: str) -> None:
        """Record a label the mail source has applied to held items."""
        with self._lock:
            for item_id in item_ids:
                item = self._items.get(item_id)
                if item is None or label_id in item.label_set:
                    continue
                self._items[item_id] = item.model_copy(
                    update={"label_set": (*item.label_set, label_id)}
                )

    def get_item(self, item_id: str) -> Item | None:
        with self._lock:
            return self._items.get(item_id)

    @property
    def items(self) -> list[Item]:
        with self._lock:
            return [self._items[item_id] for item_id in self._ordered_ids()]

    def ids(self) -> list[str]:
        with self._lock:
            return self._ordered_ids()

    def _ordered_ids(self) -> list[str]:
        return self._head_ids + self._tail_ids

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)

    def __contains__(self, item_id: object) -> bool:
        with self._lock:
            return item_id in self._items

    # ------------------------------------------------------------------
    # Classifications
    # ------------------------------------------------------------------

    def attach_classification(self, item_id: str, result: ClassificationResult) -> None:
        """Store a result for a held item. Re-attaching the same result is a no-op.

        A user override already on record is carried onto the new result.

        Raises:
            KeyError: item_id is not held
        """
        with self._lock:
            if item_id not in self._items:
                raise KeyError(item_id)
            existing = self._classifications.get(item_id)
            if existing is not None and existing.user_override_stage and not result.user_override_stage:
                result = result.with_override(existing.user_override_stage)
            self._classifications[item_id] = result

    def apply_user_override(self, item_id: str, stage: Stage | str | None) -> ClassificationResult:
        """
        Set (or clear, with None) the human-chosen stage for a classified item.

        Raises:
            KeyError: item_id has no classification
            ValueError: stage is not a known stage label or slug
        """
        if stage is not None and not isinstance(stage, Stage):
            parsed = normalize_stage(stage)
            if parsed is None:
                raise ValueError(f"Unknown stage: {stage!r}")
            stage = parsed

        with self._lock:
            current = self._classifications.get(item_id)
            if current is None:
                raise KeyError(item_id)
            updated = current.with_override(stage)
            self._classifications[item_id] = updated
        log_event("repository.override_applied", item_id=item_id, stage=stage.slug if stage else None)
        return updated

    def get_classification(self, item_id: str) -> ClassificationResult | None:
        with self._lock:
            return self._classifications.get(item_id)

    def has_classification(self, item_id: str) -> bool:
        with self._lock:
            return item_id in self._classifications

    @property
    def classifications(self) -> dict[str, ClassificationResult]:
        with self._lock:
            return dict(self._classifications)

    # ------------------------------------------------------------------
    # Buckets, cursor, settings
    # ------------------------------------------------------------------

    def bucket_of(self, item_id: str) -> Bucket:
        with self._lock:
            return bucket_for(
                self._classifications.get(item_id), self._items.get(item_id), self._job_label_id
            )

    def get_filtered(self, bucket: Bucket | str | None = None) -> list[Item]:
        """Items in a bucket, in repository order (default: the selected bucket)."""
        bucket = Bucket(bucket) if bucket is not None else self.selected_bucket
        with self._lock:
            return [
                self._items[item_id]
                for item_id in self._ordered_ids()
                if bucket_for(
                    self._classifications.get(item_id), self._items[item_id], self._job_label_id
                )
                is bucket
            ]

    @property
    def cursor(self) -> SyncCursor:
        with self._lock:
            return self._cursor

    def set_head_cursor(self, next_page_token: str | None) -> bool:
        """Take the cursor from a head refresh unless load-more already moved past it.

        Returns:
            True if the cursor was updated.
        """
        with self._lock:
            if self._pages_loaded:
                return False
            self._cursor = SyncCursor(next_page_token=next_page_token)
            return True

    @property
    def selected_bucket(self) -> Bucket:
        with self._lock:
            return self._selected_bucket

    @selected_bucket.setter
    def selected_bucket(self, bucket: Bucket | str) -> None:
        with self._lock:
            self._selected_bucket = Bucket(bucket)

    @property
    def job_label_id(self) -> str | None:
        with self._lock:
            return self._job_label_id

    @job_label_id.setter
    def job_label_id(self, label_id: str | None) -> None:
        with self._lock:
            self._job_label_id = label_id
