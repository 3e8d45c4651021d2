from __future__ import annotations

from datetime import datetime
from typing import Optional
from sqlalchemy import update
from sqlmodel import Session, select

from labsync.models.transcript_archive import TranscriptArchive


class TranscriptArchiveRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def add(self, entry: TranscriptArchive) -> TranscriptArchive:
        """Stage an entry and flush it so the id is assigned; caller commits."""
        self.session.add(entry)
        self.session.flush()
        return entry

    def get(self, entry_id: int) -> Optional[TranscriptArchive]:
        return self.session.get(TranscriptArchive, entry_id)

    def get_by_standup(self, standup_id: int) -> Optional[TranscriptArchive]:
        statement = select(TranscriptArchive).where(TranscriptArchive.standup_id == standup_id)
        return self.session.exec(statement).first()

    def set_expiry_if_unchanged(self, entry_id: int, expected: datetime, new_expiry: datetime) -> bool:
        statement = (
            update(TranscriptArchive)
            .where(TranscriptArchive.id == entry_id, TranscriptArchive.expires_at == expected)
            .values(expires_at=new_expiry)
            .execution_options(synchronize_session=False)
        )
        result = self.session.execute(statement)
        self.session.commit()
        return result.rowcount == 1

    def search(
        self,
        term: str,
        now: datetime,
        lab_id: Optional[str] = None,
        limit: int = 20,
        offset: int = 0,
        include_expired: bool = False,
    ) -> list[TranscriptArchive]:
        statement = select(TranscriptArchive).where(
            TranscriptArchive.text_folded.contains(term.casefold(), autoescape=True)
        )
        if not include_expired:
            statement = statement.where(TranscriptArchive.expires_at > now)
        if lab_id:
            statement = statement.where(TranscriptArchive.lab_id == lab_id)
        statement = (
            statement.order_by(TranscriptArchive.created_at.desc(), TranscriptArchive.id.desc())
            .limit(limit)
            .offset(offset)
        )
        return list(self.session.exec(statement))

    def list_expiring_between(
        self, start: datetime, end: datetime, lab_id: Optional[str] = None
    ) -> list[TranscriptArchive]:
        statement = select(TranscriptArchive).where(
            TranscriptArchive.expires_at >= start, TranscriptArchive.expires_at <= end
        )
        if lab_id:
            statement = statement.where(TranscriptArchive.lab_id == lab_id)
        statement = statement.order_by(TranscriptArchive.expires_at.asc())
        return list(self.session.exec(statement))

    def list_expired(self, now: datetime) -> list[TranscriptArchive]:
        statement = (
            select(TranscriptArchive)
            .where(TranscriptArchive.expires_at <= now)
            .order_by(TranscriptArchive.expires_at.asc())
        )
        return list(self.session.exec(statement))

    def list_for_lab(self, lab_id: Optional[str] = None) -> list[TranscriptArchive]:
        statement = select(TranscriptArchive)
        if lab_id:
            statement = statement.where(TranscriptArchive.lab_id == lab_id)
        return list(self.session.exec(statement))

    def delete(self, entry: TranscriptArchive) -> None:
        self.session.delete(entry)
        self.session.commit()
