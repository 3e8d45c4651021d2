from __future__ import annotations

from datetime import datetime, timedelta
from typing import Dict, List, Optional
import logging

from pydantic import BaseModel, Field
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session

from labsync.config import Settings
from labsync.errors import AlreadyExists, InvalidRequest, NotFound
from labsync.models.base import Clock, utcnow
from labsync.models.transcript_archive import TranscriptArchive
from labsync.repositories.labs import LabsRepository
from labsync.repositories.standups import StandupsRepository
from labsync.repositories.transcripts import TranscriptArchiveRepository
from labsync.services.locks import standup_lock


logger = logging.getLogger("labsync.archive")

MIN_EXTENSION_DAYS = 1
MAX_EXTENSION_DAYS = 365
MAX_SEARCH_LIMIT = 100


class CleanupResult(BaseModel):
    deleted_count: int = 0
    errors: List[str] = Field(default_factory=list)


class ArchiveStats(BaseModel):
    total_transcripts: int = 0
    total_words: int = 0
    average_word_count: int = 0
    total_characters: int = 0
    total_duration_seconds: float = 0.0
    expiring_within_threshold: int = 0
    expired_count: int = 0
    language_breakdown: Dict[str, int] = Field(default_factory=dict)


class TranscriptExport(BaseModel):
    standup_id: int
    filename: str
    content: str
    lab_name: str
    standup_date: datetime
    word_count: int
    created_at: datetime
    expires_at: datetime


def count_words(text: str) -> int:
    return len(text.split())


class TranscriptArchiveService:
    """Retention-bounded store of standup transcripts."""

    def __init__(self, session: Session, settings: Optional[Settings] = None, clock: Clock = utcnow) -> None:
        self.session = session
        self._settings = settings or Settings()
        self._clock = clock
        self._repo = TranscriptArchiveRepository(session)

    def stage_entry(
        self,
        standup_id: int,
        lab_id: str,
        text: str,
        retention_days: Optional[int] = None,
        language: Optional[str] = None,
        duration_seconds: Optional[float] = None,
    ) -> TranscriptArchive:
        """Add an entry to the current transaction without committing it.

        Raises IntegrityError on flush if the standup already owns an entry.
        """
        days = self._settings.transcript_retention_days if retention_days is None else retention_days
        if not isinstance(days, int) or days < 1:
            raise InvalidRequest("Retention must be at least one day")
        now = self._clock()
        entry = TranscriptArchive(
            standup_id=standup_id,
            lab_id=lab_id,
            text=text,
            text_folded=text.casefold(),
            word_count=count_words(text),
            language=language or "en",
            duration_seconds=duration_seconds,
            created_at=now,
            expires_at=now + timedelta(days=days),
        )
        return self._repo.add(entry)

    def save(
        self,
        standup_id: int,
        lab_id: str,
        text: str,
        retention_days: Optional[int] = None,
        language: Optional[str] = None,
        duration_seconds: Optional[float] = None,
    ) -> TranscriptArchive:
        """Archive a transcript for an existing standup and link the standup to it.

        The entry and the standup's transcript_ref are committed together.
        Lifecycle status is left alone; use StandupService.attach_transcript to
        move a standup into Processing.
        """
        duplicate = f"Transcript already archived for standup {standup_id}"
        standups = StandupsRepository(self.session)
        with standup_lock(standup_id):
            standup = standups.get_active(standup_id)
            if standup is None:
                raise NotFound("Standup not found")
            if lab_id != standup.lab_id:
                raise InvalidRequest("lab_id does not match the standup")
            if standup.transcript_ref is not None or self._repo.get_by_standup(standup_id) is not None:
                raise AlreadyExists(duplicate)
            try:
                entry = self.stage_entry(standup_id, lab_id, text, retention_days, language, duration_seconds)
                linked = standups.link_transcript(standup_id, entry.id, self._clock())  # type: ignore[arg-type]
            except IntegrityError as exc:
                self.session.rollback()
                raise AlreadyExists(duplicate) from exc
            if not linked:
                self.session.rollback()
                raise AlreadyExists(duplicate)
            self.session.commit()
        self.session.refresh(entry)
        logger.info("Transcript archived", extra={"standup_id": standup_id, "words": entry.word_count})
        return entry

    def get_by_standup_id(self, standup_id: int) -> TranscriptArchive:
        entry = self._repo.get_by_standup(standup_id)
        if entry is None:
            raise NotFound("Transcript not found")
        return entry

    def extend_retention(self, standup_id: int, days: int) -> TranscriptArchive:
        if isinstance(days, bool) or not isinstance(days, int) or not (MIN_EXTENSION_DAYS <= days <= MAX_EXTENSION_DAYS):
            raise InvalidRequest(
                f"Extension must be between {MIN_EXTENSION_DAYS} and {MAX_EXTENSION_DAYS} days"
            )
        # Additive on the current expiry; retry if a concurrent extension moved it under us.
        while True:
            entry = self.get_by_standup_id(standup_id)
            current = entry.expires_at
            new_expiry = current + timedelta(days=days)
            if self._repo.set_expiry_if_unchanged(entry.id, current, new_expiry):  # type: ignore[arg-type]
                break
            self.session.expire_all()
        self.session.expire_all()
        entry = self.get_by_standup_id(standup_id)
        logger.info(
            "Transcript retention extended",
            extra={"standup_id": standup_id, "days": days, "expires_at": entry.expires_at.isoformat()},
        )
        return entry

    def search(
        self,
        term: str,
        lab_id: Optional[str] = None,
        limit: int = 20,
        offset: int = 0,
        include_expired: bool = False,
    ) -> List[TranscriptArchive]:
        term = (term or "").strip()
        if not term:
            raise InvalidRequest("Search term is required")
        if not (1 <= limit <= MAX_SEARCH_LIMIT):
            raise InvalidRequest(f"limit must be between 1 and {MAX_SEARCH_LIMIT}")
        if offset < 0:
            raise InvalidRequest("offset must not be negative")
        return self._repo.search(
            term,
            now=self._clock(),
            lab_id=lab_id,
            limit=limit,
            offset=offset,
            include_expired=include_expired,
        )

    def expiring_soon(self, lab_id: Optional[str] = None, days_threshold: Optional[int] = None) -> List[TranscriptArchive]:
        days = self._settings.expiring_soon_days if days_threshold is None else days_threshold
        if days < 0:
            raise InvalidRequest("days_threshold must not be negative")
        now = self._clock()
        return self._repo.list_expiring_between(now, now + timedelta(days=days), lab_id=lab_id)

    def stats(self, lab_id: Optional[str] = None, days_threshold: Optional[int] = None) -> ArchiveStats:
        days = self._settings.expiring_soon_days if days_threshold is None else days_threshold
        now = self._clock()
        soon = now + timedelta(days=days)
        entries = self._repo.list_for_lab(lab_id)
        stats = ArchiveStats()
        for e in entries:
            stats.total_transcripts += 1
            stats.total_words += e.word_count
            stats.total_characters += len(e.text)
            stats.total_duration_seconds += e.duration_seconds or 0.0
            if e.expires_at <= now:
                stats.expired_count += 1
            elif e.expires_at <= soon:
                stats.expiring_within_threshold += 1
            lang = e.language or "unknown"
            stats.language_breakdown[lang] = stats.language_breakdown.get(lang, 0) + 1
        if stats.total_transcripts:
            stats.average_word_count = round(stats.total_words / stats.total_transcripts)
        return stats

    def export(self, standup_id: int) -> TranscriptExport:
        entry = self.get_by_standup_id(standup_id)
        standup = StandupsRepository(self.session).get(standup_id)
        lab_name = LabsRepository(self.session).name_for(entry.lab_id)
        standup_date = standup.date if standup is not None else entry.created_at
        lines = [
            "Standup Transcript",
            "==================",
            f"Lab: {lab_name}",
            f"Date: {standup_date:%B %d, %Y}",
            f"Word count: {entry.word_count}",
            f"Created: {entry.created_at:%Y-%m-%d %H:%M} UTC",
            f"Expires: {entry.expires_at:%Y-%m-%d %H:%M} UTC",
            "",
            entry.text,
            "",
        ]
        return TranscriptExport(
            standup_id=standup_id,
            filename=f"transcript-{standup_id}-{standup_date:%Y-%m-%d}.txt",
            content="\n".join(lines),
            lab_name=lab_name,
            standup_date=standup_date,
            word_count=entry.word_count,
            created_at=entry.created_at,
            expires_at=entry.expires_at,
        )

    def delete(self, standup_id: int) -> bool:
        entry = self._repo.get_by_standup(standup_id)
        if entry is None:
            return False
        self._repo.delete(entry)
        logger.info("Transcript deleted", extra={"standup_id": standup_id})
        return True

    def cleanup_expired(self) -> CleanupResult:
        """One cleanup pass: delete every entry with expires_at <= now.

        Per-entry failures are collected; the pass itself never raises for them.
        """
        result = CleanupResult()
        now = self._clock()
        expired = self._repo.list_expired(now)
        for entry in expired:
            entry_id = entry.id
            try:
                self._repo.delete(entry)
                result.deleted_count += 1
            except Exception as exc:
                self.session.rollback()
                result.errors.append(f"Failed to delete transcript {entry_id}: {exc}")
        return result
