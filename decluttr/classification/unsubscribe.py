"""
Pattern-based unsubscribe detection.

Runs without a model call. Its answer replaces the model's hasUnsubscribe
flag on summarize results, since the model misses footer links on long
messages that were tail-truncated before the call.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass

from decluttr.classification.models import ClassificationResult, Item

UNSUBSCRIBE_PATTERNS = (
    re.compile(r"unsubscribe", re.IGNORECASE),
    re.compile(r"opt.?out", re.IGNORECASE),
    re.compile(r"remove.*subscription", re.IGNORECASE),
    re.compile(r"manage.*preferences", re.IGNORECASE),
    re.compile(r"email.*preferences", re.IGNORECASE),
)

URL_RE = re.compile(r"https?://[^\s<>\"{}|\\^`\[\]]+", re.IGNORECASE)

# How far either side of a keyword to look for the link it labels
NEARBY_WINDOW = 100


@dataclass(frozen=True)
class UnsubscribeInfo:
    has_unsubscribe: bool
    link: str | None = None
    method: str = "none"  # "url" | "mailto" | "none"


def detect_unsubscribe(content: str) -> UnsubscribeInfo:
    """Find an unsubscribe option in message text.

    A URL that itself matches a pattern wins; otherwise the first URL near a
    pattern match. A bare keyword with no link still counts as an option.
    """
    if not content:
        return UnsubscribeInfo(has_unsubscribe=False)

    for url in URL_RE.findall(content):
        if any(pattern.search(url) for pattern in UNSUBSCRIBE_PATTERNS):
            return UnsubscribeInfo(has_unsubscribe=True, link=url, method="url")

    keyword_found = False
    for pattern in UNSUBSCRIBE_PATTERNS:
        match = pattern.search(content)
        if not match:
            continue
        keyword_found = True
        window = content[max(0, match.start() - NEARBY_WINDOW) : match.start() + NEARBY_WINDOW]
        nearby = URL_RE.search(window)
        if nearby:
            return UnsubscribeInfo(has_unsubscribe=True, link=nearby.group(0), method="url")

    return UnsubscribeInfo(has_unsubscribe=keyword_found)


def sender_unsubscribe_info(
    items: Iterable[Item],
    classifications: Mapping[str, ClassificationResult],
) -> UnsubscribeInfo:
    """Best unsubscribe route for a group of messages from one sender.

    List-Unsubscribe headers (RFC 2369) are preferred over links found in the
    body, since the provider guarantees their purpose.
    """
    items = list(items)
    for item in items:
        if item.list_unsubscribe_urls:
            return UnsubscribeInfo(True, item.list_unsubscribe_urls[0], "url")
        if item.list_unsubscribe_mailto:
            return UnsubscribeInfo(True, item.list_unsubscribe_mailto, "mailto")

    for item in items:
        result = classifications.get(item.id)
        if result is not None and result.has_unsubscribe and result.unsubscribe_link:
            return UnsubscribeInfo(True, result.unsubscribe_link, "url")

    return UnsubscribeInfo(has_unsubscribe=False)
