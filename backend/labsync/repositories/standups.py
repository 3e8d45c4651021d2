from __future__ import annotations

from datetime import datetime
from typing import Any, Iterable, Optional
from sqlalchemy import update
from sqlmodel import Session, select

from labsync.models.standup import Standup, StandupStatus


class StandupsRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def create(self, standup: Standup) -> Standup:
        self.session.add(standup)
        self.session.commit()
        self.session.refresh(standup)
        return standup

    def get(self, standup_id: int) -> Optional[Standup]:
        return self.session.get(Standup, standup_id)

    def get_active(self, standup_id: int) -> Optional[Standup]:
        standup = self.get(standup_id)
        if standup is None or not standup.is_active:
            return None
        return standup

    def list_by_lab(self, lab_id: str, limit: int = 20, offset: int = 0) -> list[Standup]:
        statement = (
            select(Standup)
            .where(Standup.lab_id == lab_id, Standup.is_active == True)  # noqa: E712
            .order_by(Standup.date.desc(), Standup.id.desc())
            .limit(limit)
            .offset(offset)
        )
        return list(self.session.exec(statement))

    def update(self, standup: Standup) -> Standup:
        self.session.add(standup)
        self.session.commit()
        self.session.refresh(standup)
        return standup

    def compare_and_set(
        self,
        standup_id: int,
        expected_statuses: Iterable[StandupStatus],
        values: dict[str, Any],
        require_transcript: Optional[bool] = None,
    ) -> bool:
        """Conditionally update one standup row without committing.

        The update only applies while the row is active and still in one of
        ``expected_statuses``; returns whether a row changed. The caller owns
        the transaction.
        """
        statement = update(Standup).where(
            Standup.id == standup_id,
            Standup.is_active == True,  # noqa: E712
            Standup.status.in_(list(expected_statuses)),
        )
        if require_transcript is True:
            statement = statement.where(Standup.transcript_ref.is_not(None))
        elif require_transcript is False:
            statement = statement.where(Standup.transcript_ref.is_(None))
        result = self.session.execute(statement.values(**values).execution_options(synchronize_session=False))
        return result.rowcount == 1

    def link_transcript(self, standup_id: int, transcript_ref: int, updated_at: datetime) -> bool:
        """Point an active standup at its archive entry, once. Does not commit."""
        statement = (
            update(Standup)
            .where(
                Standup.id == standup_id,
                Standup.is_active == True,  # noqa: E712
                Standup.transcript_ref.is_(None),
            )
            .values(transcript_ref=transcript_ref, updated_at=updated_at)
            .execution_options(synchronize_session=False)
        )
        return self.session.execute(statement).rowcount == 1
