"""Tests for Gmail payload → Item conversion."""

from __future__ import annotations

import base64
from datetime import UTC, datetime

import pytest

from decluttr.gmail.parser import (
    GmailParsingError,
    extract_body,
    parse_list_unsubscribe,
    parse_message,
)


def _b64(text: str) -> str:
    return base64.urlsafe_b64encode(text.encode("utf-8")).decode("ascii").rstrip("=")


def _message(payload: dict, **extra) -> dict:
    message = {
        "id": "18c2f",
        "threadId": "18c2f",
        "labelIds": ["INBOX", "CATEGORY_UPDATES"],
        "snippet": "Thanks for applying",
        "internalDate": "1736942400000",
        "payload": payload,
    }
    message.update(extra)
    return message


HEADERS = [
    {"name": "Subject", "value": "Your application to Acme"},
    {"name": "From", "value": "Acme Careers <jobs@acme.example>"},
    {"name": "To", "value": "me@example.com"},
]


class TestParseMessage:
    def test_plain_text_message(self):
        message = _message(
            {
                "mimeType": "text/plain",
                "headers": HEADERS,
                "body": {"data": _b64("Thanks for applying to Acme.")},
            }
        )

        item = parse_message(message)

        assert item.id == "18c2f"
        assert item.subject == "Your application to Acme"
        assert item.sender == "Acme Careers <jobs@acme.example>"
        assert item.content == (
            "Subject: Your application to Acme\n\n"
            "From: Acme Careers <jobs@acme.example>\n\n"
            "Thanks for applying to Acme."
        )
        assert item.label_set == ("INBOX", "CATEGORY_UPDATES")
        assert item.created_at == datetime(2025, 1, 15, 12, 0, tzinfo=UTC)

    def test_multipart_prefers_plain_text(self):
        payload = {
            "mimeType": "multipart/alternative",
            "headers": HEADERS,
            "parts": [
                {"mimeType": "text/html", "body": {"data": _b64("<p>HTML version</p>")}},
                {"mimeType": "text/plain", "body": {"data": _b64("Plain version")}},
            ],
        }

        assert extract_body(payload) == "Plain version"

    def test_nested_html_only_is_stripped(self):
        html = (
            "<html><head><style>p {color: red}</style></head>"
            "<body><p>Interview&nbsp;invite</p><script>track()</script></body></html>"
        )
        payload = {
            "mimeType": "multipart/mixed",
            "parts": [
                {
                    "mimeType": "multipart/alternative",
                    "parts": [{"mimeType": "text/html", "body": {"data": _b64(html)}}],
                }
            ],
        }

        body = extract_body(payload)

        assert "Interview" in body
        assert "invite" in body
        assert "track()" not in body
        assert "color" not in body

    def test_list_unsubscribe_header(self):
        headers = HEADERS + [
            {
                "name": "List-Unsubscribe",
                "value": "<mailto:leave@news.example>, <https://news.example/u?id=1>",
            }
        ]
        message = _message({"mimeType": "text/plain", "headers": headers, "body": {"data": _b64("x")}})

        item = parse_message(message)

        assert item.list_unsubscribe_urls == ("https://news.example/u?id=1",)
        assert item.list_unsubscribe_mailto == "mailto:leave@news.example"

    def test_missing_subject_and_body(self):
        item = parse_message(_message({"mimeType": "text/plain", "headers": []}))

        assert item.subject == "(No Subject)"
        assert item.content.startswith("Subject: (No Subject)")
        assert item.snippet == "Thanks for applying"

    def test_zero_width_characters_removed(self):
        body = "Hello\u200b\u200c there\n\n\n\nBye"
        message = _message(
            {"mimeType": "text/plain", "headers": HEADERS, "body": {"data": _b64(body)}}
        )

        assert parse_message(message).content.endswith("Hello there\nBye")

    @pytest.mark.parametrize("message", [None, {"id": "1"}, {"payload": {}}])
    def test_invalid_payloads(self, message):
        with pytest.raises(GmailParsingError):
            parse_message(message)  # type: ignore[arg-type]


class TestParseListUnsubscribe:
    def test_plain_url_without_brackets(self):
        assert parse_list_unsubscribe("https://x.example/u") == (("https://x.example/u",), None)

    def test_empty(self):
        assert parse_list_unsubscribe(None) == ((), None)
