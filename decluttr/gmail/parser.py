"""
Gmail adapter utilities for converting API payloads into Items.

Deterministic and side-effect free apart from telemetry. Parse failures are
reported by message id only; bodies and subjects never reach the logs.
"""

from __future__ import annotations

import base64
import binascii
import re
from collections.abc import Iterable
from datetime import UTC, datetime
from typing import Any

from bs4 import BeautifulSoup
from pydantic import ValidationError

from decluttr.classification.models import Item
from decluttr.observability.telemetry import counter, log_event

_TEXT_PLAIN = "text/plain"
_TEXT_HTML = "text/html"

_ZERO_WIDTH_RE = re.compile("[\u200b\u200c\u200d\ufeff]")
_ENTITY_RE = re.compile(r"&(zwnj|zwj|#8203);", re.IGNORECASE)
# Tracking ids and hashes that some senders print on their own line
_HASH_LINE_RE = re.compile(r"^[0-9a-f]{20,}\s*$", re.IGNORECASE | re.MULTILINE)
_BLANK_LINES_RE = re.compile(r"\n\s*\n")
_SPACES_RE = re.compile(r"[ \t]+")


class GmailParsingError(ValueError):
    """Raised when a Gmail payload cannot be converted into an Item."""


def _header_lookup(headers: Iterable[dict[str, str]], name: str) -> str | None:
    name_lower = name.lower()
    for header in headers:
        if header.get("name", "").lower() == name_lower:
            return header.get("value")
    return None


def _decode_base64(data: str) -> str:
    """Decode Gmail's URL-safe base64 payloads."""
    padding = "=" * (-len(data) % 4)
    try:
        decoded = base64.urlsafe_b64decode((data + padding).encode("utf-8"))
        return decoded.decode("utf-8", errors="replace")
    except (binascii.Error, UnicodeDecodeError) as exc:
        raise GmailParsingError("failed to decode message body") from exc


def html_to_text(html: str) -> str:
    """Readable text from an HTML body (scripts, styles and head dropped)."""
    if not html:
        return ""
    soup = BeautifulSoup(html, "html.parser")
    for tag in soup(["script", "style", "head"]):
        tag.decompose()
    return soup.get_text(separator="\n")


def _find_part(payload: dict[str, Any], mime_type: str) -> str | None:
    """Depth-first search for the first non-empty part of a MIME type."""
    data = payload.get("body", {}).get("data")
    if data and payload.get("mimeType", "") == mime_type:
        return _decode_base64(data)
    for part in payload.get("parts") or []:
        found = _find_part(part, mime_type)
        if found:
            return found
    return None


def extract_body(payload: dict[str, Any]) -> str:
    """Plain-text body, preferring text/plain over stripped text/html."""
    text = _find_part(payload, _TEXT_PLAIN)
    if text is None:
        html = _find_part(payload, _TEXT_HTML)
        text = html_to_text(html) if html else ""
    return clean_body(text)


def clean_body(text: str) -> str:
    text = _ENTITY_RE.sub("", text)
    text = text.replace("&nbsp;", " ")
    text = _ZERO_WIDTH_RE.sub("", text)
    text = _HASH_LINE_RE.sub("", text)
    text = _BLANK_LINES_RE.sub("\n", text)
    text = _SPACES_RE.sub(" ", text)
    return text.strip()


def parse_list_unsubscribe(header_value: str | None) -> tuple[tuple[str, ...], str | None]:
    """
    Parse a List-Unsubscribe header (RFC 2369).

    Returns:
        (http urls, mailto) - e.g. "<https://x/u>, <mailto:u@x>" gives
        (("https://x/u",), "mailto:u@x")
    """
    if not header_value:
        return (), None

    urls: list[str] = []
    mailto: str | None = None
    for part in (p.strip() for p in header_value.split(",")):
        if part.startswith("<") and part.endswith(">"):
            part = part[1:-1].strip()
        if part.lower().startswith("mailto:"):
            mailto = part
        elif part.startswith(("http://", "https://")):
            urls.append(part)
    return tuple(urls), mailto


def _parse_internal_date(value: Any) -> datetime:
    # internalDate is epoch milliseconds as a string
    try:
        return datetime.fromtimestamp(int(value) / 1000, tz=UTC)
    except (TypeError, ValueError, OverflowError):
        return datetime.now(UTC)


def parse_message(message: dict[str, Any]) -> Item:
    """
    Convert a Gmail API message (format=full) into an Item.

    Content is "Subject: ...\\n\\nFrom: ...\\n\\n<body>", the text the
    classifier sees.

    Raises:
        GmailParsingError: payload missing or not convertible
    """
    if not isinstance(message, dict):
        raise GmailParsingError("message must be a dict")

    try:
        message_id = message["id"]
        payload = message["payload"]
    except KeyError as exc:
        raise GmailParsingError(f"missing field: {exc}") from exc

    headers = payload.get("headers") or []
    subject = _header_lookup(headers, "Subject") or "(No Subject)"
    sender = _header_lookup(headers, "From") or ""
    urls, mailto = parse_list_unsubscribe(_header_lookup(headers, "List-Unsubscribe"))

    body = extract_body(payload)
    snippet = message.get("snippet") or body[:100]

    try:
        item = Item(
            id=message_id,
            content=f"Subject: {subject}\n\nFrom: {sender}\n\n{body}",
            label_set=tuple(message.get("labelIds") or ()),
            created_at=_parse_internal_date(message.get("internalDate")),
            subject=subject,
            sender=sender,
            snippet=snippet,
            list_unsubscribe_urls=urls,
            list_unsubscribe_mailto=mailto,
        )
    except ValidationError as exc:
        counter("gmail.parse.validation_failed")
        log_event("gmail.parse.validation_failed", message_id=message_id, errors=len(exc.errors()))
        raise GmailParsingError("item validation failed") from exc

    counter("gmail.parse.ok")
    return item
