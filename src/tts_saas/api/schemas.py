"""
API Response Schemas.

Request bodies for the generation endpoints are validated by
services.requests (a tagged union on ``type``); this module holds the
response models. Field names are snake_case in Python and camelCase on
the wire.

Example Response (POST /v1/generate):
    {
        "id": "1712345678901-ab12cd3",
        "url": "/v1/audio/1712345678901-ab12cd3.wav",
        "duration": 3.4,
        "type": "tts",
        "textLength": 51,
        "credits": {"purchased": 10000, "used": 51, "remaining": 9949}
    }
"""
from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class CreditsInfo(_CamelModel):
    purchased: int
    used: int
    remaining: int


class GenerateResponse(_CamelModel):
    """Result of a buffered generation."""
    id: str
    url: str
    duration: float
    type: str
    text_length: int = Field(alias="textLength")
    credits: CreditsInfo


class GenerationItem(_CamelModel):
    id: str
    text: str
    text_length: int = Field(alias="textLength")
    audio_url: str = Field(alias="audioUrl")
    duration: float
    status: str
    type: str
    source_language: str | None = Field(default=None, alias="sourceLanguage")
    target_language: str | None = Field(default=None, alias="targetLanguage")
    created_at: datetime = Field(alias="createdAt")
    completed_at: datetime | None = Field(default=None, alias="completedAt")


class GenerationsPage(_CamelModel):
    generations: list[GenerationItem]
    total: int
    limit: int
    offset: int
