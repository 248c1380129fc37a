"""
Application-wide settings and environment configuration
"""

from __future__ import annotations

import os
from pathlib import Path

# Project paths
DECLUTTR_ROOT = Path(__file__).parent.parent

# Environment
ENV = os.getenv("DECLUTTR_ENV", "development")

# API Configuration
API_HOST = os.getenv("API_HOST", "0.0.0.0")
API_PORT = int(os.getenv("API_PORT", "8000"))
LOG_LEVEL = os.getenv("DECLUTTR_LOG_LEVEL", "INFO")

# Google Cloud / Gemini
GOOGLE_CLOUD_PROJECT = os.getenv("GOOGLE_CLOUD_PROJECT")
GOOGLE_API_KEY = os.getenv("GOOGLE_API_KEY")
GEMINI_MODEL = os.getenv("GEMINI_MODEL", "gemini-2.0-flash-001")
GEMINI_LOCATION = os.getenv("GEMINI_LOCATION", "us-central1")
GEMINI_TEMPERATURE = float(os.getenv("GEMINI_TEMPERATURE", "0.3"))

# Per-mode output budgets (summaries need room, yes/no answers do not)
GEMINI_MAX_TOKENS = {
    "summarize": int(os.getenv("GEMINI_MAX_TOKENS", "600")),
    "categorize": 100,
    "matchLabel": 50,
}

# Local state (session persistence for the repository)
STATE_PATH = Path(os.getenv("DECLUTTR_STATE_PATH", str(DECLUTTR_ROOT / "data" / "state.json")))


def is_development() -> bool:
    """Check if running in development"""
    return ENV == "development"
