from __future__ import annotations

from datetime import datetime
from typing import List, Optional
import json

from sqlmodel import SQLModel, Field

from labsync.models.base import UTCDateTime, utcnow


class EmailLog(SQLModel, table=True):
    """Append-only record of one successful standup email dispatch."""

    id: Optional[int] = Field(default=None, primary_key=True)
    standup_id: int = Field(index=True, foreign_key="standup.id")
    recipients_json: str = Field(default="[]")
    subject: str
    sender_name: str
    sender_email: str
    provider_message_id: str
    status: str = Field(default="sent")
    sent_at: datetime = Field(default_factory=utcnow, sa_type=UTCDateTime, index=True)

    @property
    def recipients(self) -> List[str]:
        try:
            value = json.loads(self.recipients_json or "[]")
        except ValueError:
            return []
        return [str(r) for r in value] if isinstance(value, list) else []
