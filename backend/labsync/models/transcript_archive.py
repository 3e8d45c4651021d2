from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlmodel import SQLModel, Field

from labsync.models.base import UTCDateTime, utcnow


class TranscriptArchive(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    # One archive entry per standup; the unique index is what makes concurrent saves race-safe.
    standup_id: int = Field(index=True, unique=True, foreign_key="standup.id")
    lab_id: str = Field(index=True)
    text: str
    # casefold() of text; SQLite lower() only folds ASCII
    text_folded: str = ""
    word_count: int = 0
    language: str = Field(default="en")
    duration_seconds: Optional[float] = None
    created_at: datetime = Field(default_factory=utcnow, sa_type=UTCDateTime, index=True)
    expires_at: datetime = Field(sa_type=UTCDateTime, index=True)
