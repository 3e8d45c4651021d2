from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from labsync.models.analysis import AnalysisResult
from labsync.models.email_log import EmailLog
from labsync.models.standup import Standup, StandupStatus
from labsync.models.transcript_archive import TranscriptArchive
from labsync.services.notification_service import EmailRecipient
from labsync.services.standup_service import analysis_of


class StandupOut(BaseModel):
    id: int
    lab_id: str
    date: datetime
    participants: List[str]
    audio_ref: Optional[str] = None
    transcript_ref: Optional[int] = None
    analysis: Optional[AnalysisResult] = None
    status: StandupStatus
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_model(cls, standup: Standup) -> "StandupOut":
        return cls(
            id=standup.id,  # type: ignore[arg-type]
            lab_id=standup.lab_id,
            date=standup.date,
            participants=standup.participants,
            audio_ref=standup.audio_ref,
            transcript_ref=standup.transcript_ref,
            analysis=analysis_of(standup),
            status=standup.status,
            created_at=standup.created_at,
            updated_at=standup.updated_at,
        )


class TranscriptOut(BaseModel):
    standup_id: int
    lab_id: str
    text: str
    word_count: int
    language: str
    duration_seconds: Optional[float] = None
    created_at: datetime
    expires_at: datetime

    @classmethod
    def from_model(cls, entry: TranscriptArchive) -> "TranscriptOut":
        return cls(
            standup_id=entry.standup_id,
            lab_id=entry.lab_id,
            text=entry.text,
            word_count=entry.word_count,
            language=entry.language,
            duration_seconds=entry.duration_seconds,
            created_at=entry.created_at,
            expires_at=entry.expires_at,
        )


class EmailLogOut(BaseModel):
    id: int
    standup_id: int
    recipients: List[str]
    subject: str
    sender_name: str
    sender_email: str
    provider_message_id: str
    sent_at: datetime

    @classmethod
    def from_model(cls, log: EmailLog) -> "EmailLogOut":
        return cls(
            id=log.id,  # type: ignore[arg-type]
            standup_id=log.standup_id,
            recipients=log.recipients,
            subject=log.subject,
            sender_name=log.sender_name,
            sender_email=log.sender_email,
            provider_message_id=log.provider_message_id,
            sent_at=log.sent_at,
        )


class CreateStandupRequest(BaseModel):
    lab_id: str
    date: Optional[datetime] = None
    participants: List[str] = Field(default_factory=list)


class AttachTranscriptRequest(BaseModel):
    transcript: str
    audio_ref: Optional[str] = None
    language: Optional[str] = None
    duration_seconds: Optional[float] = None


class AnalyzeRequest(BaseModel):
    transcript: str


class SaveTranscriptRequest(BaseModel):
    standup_id: int
    lab_id: str
    text: str
    retention_days: Optional[int] = None
    language: Optional[str] = None


class ExtendRetentionRequest(BaseModel):
    days: int = 30


class SendEmailRequest(BaseModel):
    recipients: List[EmailRecipient] = Field(min_length=1)
    subject: Optional[str] = None
    sender_name: str = Field(min_length=1)
    sender_email: str
