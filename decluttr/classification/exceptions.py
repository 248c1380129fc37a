"""
Error taxonomy for classification and sync.

Orchestrator and scheduler code branch on these types, so each carries the
policy it implies: transient errors are retried, format and validation errors
are not, auth errors end a whole run, network errors fail a single item.
"""

from __future__ import annotations


class DecluttrError(Exception):
    """Base class for all Decluttr errors."""


class ValidationError(DecluttrError, ValueError):
    """Malformed caller input. Never retried; maps to HTTP 400."""


class TransientUpstreamError(DecluttrError):
    """Rate limiting or an empty/cut-off model answer. Retried, then surfaced."""


class RateLimited(TransientUpstreamError):
    """The model provider rejected the call with a quota/rate-limit error."""


class EmptyResponse(TransientUpstreamError):
    """The model returned no text (including safety-filtered answers)."""

    def __init__(self, message: str = "Empty response from classifier", finish_reason: str | None = None):
        super().__init__(message)
        self.finish_reason = finish_reason


class Truncated(TransientUpstreamError):
    """The model stopped at its output-token limit."""


class FormatError(DecluttrError):
    """The model answered, but not in the expected schema.

    Carries the raw text for diagnostics. Never retried, never cached.
    """

    def __init__(self, message: str, raw_text: str = ""):
        super().__init__(message)
        self.raw_text = raw_text


class AuthError(DecluttrError):
    """Credential rejected by a collaborator. Fatal for the whole batch run."""


class InvalidCredential(AuthError):
    """The model provider rejected the configured API credential."""


class NetworkError(DecluttrError):
    """Transport failure or timeout reaching an external service."""


class CancelledError(DecluttrError):
    """Work abandoned because the run's cancellation event was set."""
