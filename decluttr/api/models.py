"""Pydantic request models for the Decluttr classification API."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

from decluttr.config import MAX_CONTENT_LENGTH


class ContentRequest(BaseModel):
    """Body for summarize, categorize and detect-unsubscribe."""

    content: str = Field(max_length=MAX_CONTENT_LENGTH)


class MatchLabelRequest(ContentRequest):
    """Body for match-label. Field names follow the extension's camelCase."""

    model_config = ConfigDict(populate_by_name=True)

    label_name: str = Field(alias="labelName", max_length=200)
    label_description: str = Field(alias="labelDescription", max_length=2000)
