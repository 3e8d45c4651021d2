from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import List, Optional
import json

from sqlmodel import SQLModel, Field

from labsync.models.base import UTCDateTime, utcnow


class StandupStatus(str, Enum):
    SCHEDULED = "scheduled"
    IN_PROGRESS = "in_progress"
    PROCESSING = "processing"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (StandupStatus.COMPLETED, StandupStatus.CANCELLED)


class Standup(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    lab_id: str = Field(index=True)
    date: datetime = Field(default_factory=utcnow, sa_type=UTCDateTime, index=True)
    participants_json: str = Field(default="[]")  # JSON list of participant identifiers
    audio_ref: Optional[str] = None
    transcript_ref: Optional[int] = None  # TranscriptArchive.id
    analysis_json: Optional[str] = None  # AnalysisResult as JSON
    status: StandupStatus = Field(default=StandupStatus.SCHEDULED, index=True)
    is_active: bool = Field(default=True, index=True)
    created_at: datetime = Field(default_factory=utcnow, sa_type=UTCDateTime)
    updated_at: datetime = Field(default_factory=utcnow, sa_type=UTCDateTime)

    @property
    def participants(self) -> List[str]:
        try:
            value = json.loads(self.participants_json or "[]")
        except ValueError:
            return []
        return [str(p) for p in value] if isinstance(value, list) else []
