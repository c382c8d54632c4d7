"""
Ledger Tables.

Subscriptions hold the prepaid character balance; generation records are
one row per synthesis attempt; voice clones map a user's stored voice to
an upstream speaker handle.

Timestamps are naive UTC in plain SQLAlchemy DateTime columns (SQLite
drops tzinfo on read, so every comparison stays naive).
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import DateTime
from sqlmodel import Column, Field, SQLModel, Text


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _timestamp(nullable: bool = False, index: bool = False) -> Column:
    return Column(DateTime(timezone=False), nullable=nullable, index=index)


class SubscriptionStatus:
    ACTIVE = "active"
    EXPIRED = "expired"


class GenerationStatus:
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    # Audio reached the client but was not durably saved
    COMPLETED_UNSAVED = "completed_unsaved"

    TERMINAL = frozenset({COMPLETED, FAILED, COMPLETED_UNSAVED})


class Subscription(SQLModel, table=True):
    """
    A user's prepaid balance of character credits.

    ``credits_used`` only grows while the subscription is active, except
    for the exact reversal of a failed generation's deduction. Rows are
    never deleted; expiry flips ``status`` and sets ``end_date``.
    """

    __tablename__ = "subscriptions"

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: str = Field(index=True, max_length=128)
    plan_name: str = Field(default="default", max_length=64)
    status: str = Field(default=SubscriptionStatus.ACTIVE, index=True, max_length=16)
    credits_purchased: int = Field(default=0, ge=0)
    credits_used: int = Field(default=0, ge=0)
    start_date: datetime = Field(default_factory=utcnow, sa_column=_timestamp())
    expires_at: datetime = Field(sa_column=_timestamp(index=True))
    purchased_at: datetime = Field(default_factory=utcnow, sa_column=_timestamp())
    end_date: Optional[datetime] = Field(default=None, sa_column=_timestamp(nullable=True))

    @property
    def credits_remaining(self) -> int:
        return self.credits_purchased - self.credits_used


class GenerationRecord(SQLModel, table=True):
    """One synthesis attempt and where its audio lives."""

    __tablename__ = "generations"

    id: str = Field(primary_key=True, max_length=64)
    user_id: str = Field(index=True, max_length=128)
    text: str = Field(sa_column=Column(Text, nullable=False))
    text_length: int
    audio_url: str = Field(max_length=255)
    duration: float = Field(default=1.0)
    status: str = Field(default=GenerationStatus.PROCESSING, index=True, max_length=24)
    type: str = Field(default="tts", max_length=16)
    source_language: Optional[str] = Field(default=None, nullable=True, max_length=16)
    target_language: Optional[str] = Field(default=None, nullable=True, max_length=16)
    created_at: datetime = Field(default_factory=utcnow, sa_column=_timestamp(index=True))
    completed_at: Optional[datetime] = Field(default=None, sa_column=_timestamp(nullable=True))


class VoiceClone(SQLModel, table=True):
    __tablename__ = "voice_clones"

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: str = Field(index=True, max_length=128)
    voice_id: str = Field(index=True, max_length=100)
    name: str = Field(max_length=255)
    active: bool = Field(default=True, index=True)
    created_at: datetime = Field(default_factory=utcnow, sa_column=_timestamp())
