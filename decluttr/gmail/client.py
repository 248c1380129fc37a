"""
Gmail mail source - the mailbox collaborator behind MailboxSync.

Wraps a googleapiclient Gmail service. Every request goes through one
execute loop that handles credential expiry: a 401 calls the refresh hook,
rebuilds the service and tries again, up to max_auth_attempts in total.
Running out of attempts raises AuthError; any other HTTP failure is a
NetworkError.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, Protocol

from googleapiclient.errors import HttpError

from decluttr.classification.exceptions import AuthError, NetworkError
from decluttr.classification.models import Item
from decluttr.config import GMAIL_MAX_AUTH_ATTEMPTS, LABEL_BATCH_SIZE, PAGE_SIZE
from decluttr.gmail.parser import GmailParsingError, parse_message
from decluttr.observability.logging import get_logger
from decluttr.observability.telemetry import counter, log_event

logger = get_logger(__name__)

INBOX_QUERY = "in:inbox"


@dataclass(frozen=True)
class MessagePage:
    ids: list[str]
    next_page_token: str | None = None


@dataclass
class LabelResult:
    """Per-id outcome of a bulk mailbox change."""

    success: list[str] = field(default_factory=list)
    failed: list[dict[str, str]] = field(default_factory=list)  # [{"id": ..., "error": ...}]


class MailSource(Protocol):
    """Paginated mailbox access used by the sync layer."""

    def fetch_ids(self, page_token: str | None = None) -> MessagePage: ...

    def fetch_by_ids(self, ids: list[str]) -> list[Item]: ...

    def get_or_create_label(self, name: str) -> str: ...

    def add_label(self, ids: list[str], label_id: str) -> LabelResult: ...


class GmailMailSource:
    """MailSource backed by the Gmail REST API."""

    def __init__(
        self,
        service: Any | None = None,
        service_factory: Callable[[], Any] | None = None,
        refresh_credentials: Callable[[], None] | None = None,
        max_auth_attempts: int = GMAIL_MAX_AUTH_ATTEMPTS,
        page_size: int = PAGE_SIZE,
        label_batch_size: int = LABEL_BATCH_SIZE,
        user_id: str = "me",
    ):
        """
        Args:
            service: Built Gmail service (googleapiclient.discovery.build)
            service_factory: Builds a fresh service; used initially when service
                is None and again after every credential refresh
            refresh_credentials: Hook that renews the OAuth token after a 401
            max_auth_attempts: Total tries per request when the token is rejected
            page_size: Message ids per list page
            label_batch_size: Ids per batchModify call
            user_id: Gmail user ("me" = the authenticated account)
        """
        if service is None and service_factory is None:
            raise ValueError("GmailMailSource needs a service or a service_factory")
        if max_auth_attempts < 1:
            raise ValueError("max_auth_attempts must be >= 1")
        self._service = service
        self.service_factory = service_factory
        self.refresh_credentials = refresh_credentials
        self.max_auth_attempts = max_auth_attempts
        self.page_size = page_size
        self.label_batch_size = label_batch_size
        self.user_id = user_id

    @property
    def service(self) -> Any:
        if self._service is None:
            self._service = self.service_factory()  # type: ignore[misc]
        return self._service

    def _execute(self, build_request: Callable[[Any], Any], operation: str) -> dict[str, Any]:
        """
        Execute one API request with bounded re-authentication.

        Raises:
            AuthError: still 401 after max_auth_attempts
            NetworkError: any other HTTP or transport failure
        """
        for attempt in range(1, self.max_auth_attempts + 1):
            try:
                return build_request(self.service).execute() or {}
            except HttpError as e:
                status = e.resp.status
                if status != 401:
                    counter(f"gmail.{operation}.http_error")
                    log_event(f"gmail.{operation}.error", status=status)
                    raise NetworkError(f"Gmail {operation} failed with HTTP {status}") from e

                counter("gmail.auth_rejected")
                if attempt >= self.max_auth_attempts:
                    logger.error("Gmail rejected credentials after %d attempts", attempt)
                    raise AuthError("Gmail authentication failed; sign in again") from e

                logger.info("Gmail token rejected (attempt %d), refreshing", attempt)
                if self.refresh_credentials is not None:
                    self.refresh_credentials()
                if self.service_factory is not None:
                    self._service = None
            except (ConnectionError, TimeoutError, OSError) as e:
                counter(f"gmail.{operation}.network_error")
                raise NetworkError(f"Gmail {operation} failed: {e}") from e

        raise AuthError("Gmail authentication failed")

    def fetch_ids(self, page_token: str | None = None) -> MessagePage:
        """One page of inbox message ids, newest first."""

        def _list(service: Any) -> Any:
            kwargs: dict[str, Any] = {
                "userId": self.user_id,
                "q": INBOX_QUERY,
                "maxResults": self.page_size,
            }
            if page_token:
                kwargs["pageToken"] = page_token
            return service.users().messages().list(**kwargs)

        response = self._execute(_list, "list")
        ids = [message["id"] for message in response.get("messages", [])]
        counter("gmail.list.ids", len(ids))
        return MessagePage(ids=ids, next_page_token=response.get("nextPageToken"))

    def fetch_by_ids(self, ids: list[str]) -> list[Item]:
        """
        Fetch and parse full messages.

        Messages that fail to fetch (deleted since listing, transient errors)
        or fail to parse are skipped. AuthError propagates.
        """
        items: list[Item] = []
        for message_id in ids:
            try:
                message = self._execute(
                    lambda service, mid=message_id: service.users()
                    .messages()
                    .get(userId=self.user_id, id=mid, format="full"),
                    "get",
                )
                items.append(parse_message(message))
            except NetworkError as e:
                logger.warning("Skipping message %s: %s", message_id, e)
            except GmailParsingError as e:
                counter("gmail.parse.skipped")
                logger.warning("Skipping unparseable message %s: %s", message_id, e)

        log_event("gmail.fetch_by_ids", requested=len(ids), fetched=len(items))
        return items

    def get_or_create_label(self, name: str) -> str:
        """Id of the user label called name, creating it if absent."""
        response = self._execute(
            lambda service: service.users().labels().list(userId=self.user_id), "labels_list"
        )
        for label in response.get("labels", []):
            if label.get("name") == name:
                return label["id"]

        body = {"name": name, "labelListVisibility": "labelShow", "messageListVisibility": "show"}
        created = self._execute(
            lambda service: service.users().labels().create(userId=self.user_id, body=body),
            "labels_create",
        )
        logger.info("Created Gmail label %s (%s)", name, created.get("id"))
        return created["id"]

    def add_label(self, ids: list[str], label_id: str) -> LabelResult:
        """Apply label_id to messages in batches; failed batches are reported per id."""
        return self._batch_modify(ids, {"addLabelIds": [label_id]}, "add_label")

    def trash(self, ids: list[str]) -> LabelResult:
        """Move messages to the trash (recoverable for 30 days)."""
        return self._batch_modify(
            ids, {"addLabelIds": ["TRASH"], "removeLabelIds": ["INBOX"]}, "trash"
        )

    def _batch_modify(self, ids: list[str], change: dict[str, list[str]], operation: str) -> LabelResult:
        result = LabelResult()
        for start in range(0, len(ids), self.label_batch_size):
            batch = ids[start : start + self.label_batch_size]
            body = {"ids": batch, **change}
            try:
                self._execute(
                    lambda service, body=body: service.users()
                    .messages()
                    .batchModify(userId=self.user_id, body=body),
                    operation,
                )
            except NetworkError as e:
                result.failed.extend({"id": message_id, "error": str(e)} for message_id in batch)
                continue
            result.success.extend(batch)

        log_event(
            f"gmail.{operation}",
            succeeded=len(result.success),
            failed=len(result.failed),
        )
        return result
