"""Centralized configuration for the Decluttr backend.

Re-exports everything from decluttr.infrastructure.settings so callers have a
single import, then adds typed constants for the memo cache, the classifier
orchestrator, the batch scheduler, and mailbox sync. Environment variable
overrides use safe defaults so the app starts without extra env configuration.
"""

from __future__ import annotations

import os

from decluttr.infrastructure.settings import *  # noqa: F401, F403 - re-export

# --- App ---
APP_VERSION: str = "0.1.0"

# --- Memo cache ---
CACHE_MAX_ENTRIES: int = int(os.getenv("DECLUTTR_CACHE_MAX_ENTRIES", "400"))
CACHE_TTL_SECONDS: float = float(os.getenv("DECLUTTR_CACHE_TTL_SECONDS", "3600"))

# --- Classification ---
# Only the tail of a message is sent to the model; replies and status updates
# put the actionable text at the end of a thread.
CONTENT_TAIL_CHARS: int = int(os.getenv("DECLUTTR_CONTENT_TAIL_CHARS", "8000"))
LABEL_TAIL_CHARS: int = int(os.getenv("DECLUTTR_LABEL_TAIL_CHARS", "6000"))
LLM_MAX_RETRIES: int = int(os.getenv("DECLUTTR_LLM_MAX_RETRIES", "2"))
LLM_RETRY_BASE_DELAY: float = float(os.getenv("DECLUTTR_LLM_RETRY_BASE_DELAY", "1.0"))
LLM_TIMEOUT_SECONDS: float = float(os.getenv("DECLUTTR_LLM_TIMEOUT", "30"))

# --- Batch scheduler ---
BATCH_CONCURRENCY: int = int(os.getenv("DECLUTTR_BATCH_CONCURRENCY", "3"))
BATCH_DELAY_MS: int = int(os.getenv("DECLUTTR_BATCH_DELAY_MS", "500"))

# --- Mailbox sync ---
PAGE_SIZE: int = int(os.getenv("DECLUTTR_PAGE_SIZE", "50"))
JOB_LABEL_NAME: str = os.getenv("DECLUTTR_JOB_LABEL_NAME", "Decluttr/Job")
LABEL_BATCH_SIZE: int = 50
GMAIL_MAX_AUTH_ATTEMPTS: int = 2

# --- API ---
MAX_CONTENT_LENGTH: int = 200_000
EXTENSION_ORIGIN: str = os.getenv("DECLUTTR_EXTENSION_ORIGIN", "")
