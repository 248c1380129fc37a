"""HTTP surface for the Decluttr classifier."""

from __future__ import annotations


def main() -> None:
    """Run the API with uvicorn (console script: decluttr-api)."""
    import uvicorn

    from decluttr.config import API_HOST, API_PORT, LOG_LEVEL

    uvicorn.run("decluttr.api.app:app", host=API_HOST, port=API_PORT, log_level=LOG_LEVEL.lower())
