"""Incremental mailbox sync: mail source → repository."""

from __future__ import annotations

from decluttr.classification.models import Bucket, Item
from decluttr.config import JOB_LABEL_NAME
from decluttr.gmail.client import LabelResult, MailSource
from decluttr.observability.logging import get_logger
from decluttr.observability.telemetry import counter, log_event, time_block
from decluttr.storage.repository import MailboxRepository

logger = get_logger(__name__)


class MailboxSync:
    """Keeps a MailboxRepository in step with a MailSource.

    Only ids the repository does not hold are fetched in full, so a refresh
    costs one list call plus one get per new message.
    """

    def __init__(
        self,
        source: MailSource,
        repository: MailboxRepository,
        job_label_name: str = JOB_LABEL_NAME,
    ):
        self.source = source
        self.repository = repository
        self.job_label_name = job_label_name

    def refresh_head(self) -> list[Item]:
        """Re-read the first page and merge it into the repository.

        Returns:
            Items newly fetched by this refresh.
        """
        with time_block("sync.refresh_head"):
            page = self.source.fetch_ids()
            missing = [item_id for item_id in page.ids if item_id not in self.repository]
            fresh = self.source.fetch_by_ids(missing) if missing else []
            self.repository.merge(page.ids, {item.id: item for item in fresh})
            self.repository.set_head_cursor(page.next_page_token)

        counter("sync.fetched", len(fresh))
        log_event("sync.head_refreshed", listed=len(page.ids), fetched=len(fresh))
        return fresh

    def load_more(self) -> list[Item]:
        """Append the next page. No-op once the cursor is exhausted."""
        token = self.repository.cursor.next_page_token
        if not token:
            return []

        with time_block("sync.load_more"):
            page = self.source.fetch_ids(token)
            missing = [item_id for item_id in page.ids if item_id not in self.repository]
            fresh = self.source.fetch_by_ids(missing) if missing else []
            added = self.repository.append_page(fresh, page.next_page_token)

        log_event("sync.page_loaded", listed=len(page.ids), added=len(added))
        return added

    def ensure_job_label(self) -> str:
        label_id = self.repository.job_label_id
        if label_id is None:
            label_id = self.source.get_or_create_label(self.job_label_name)
            self.repository.job_label_id = label_id
        return label_id

    def label_job_items(self) -> LabelResult:
        """Apply the job label to job-bucket items that do not carry it yet."""
        label_id = self.ensure_job_label()
        ids = [
            item.id for item in self.repository.get_filtered(Bucket.JOB) if label_id not in item.label_set
        ]
        if not ids:
            return LabelResult()

        result = self.source.add_label(ids, label_id)
        self.repository.add_label(result.success, label_id)
        if result.failed:
            logger.warning("Failed to label %d of %d job messages", len(result.failed), len(ids))
        log_event("sync.job_labelled", labelled=len(result.success), failed=len(result.failed))
        return result
