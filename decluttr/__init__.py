"""Decluttr - mailbox triage and job-application funnel tracking."""

from __future__ import annotations

__version__ = "0.1.0"
