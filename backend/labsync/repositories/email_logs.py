from __future__ import annotations

from datetime import datetime
from typing import Optional
from sqlmodel import Session, select

from labsync.models.email_log import EmailLog
from labsync.models.standup import Standup


class EmailLogsRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def create(self, entry: EmailLog) -> EmailLog:
        self.session.add(entry)
        self.session.commit()
        self.session.refresh(entry)
        return entry

    def list_by_standup(self, standup_id: int) -> list[EmailLog]:
        statement = (
            select(EmailLog)
            .where(EmailLog.standup_id == standup_id)
            .order_by(EmailLog.sent_at.desc(), EmailLog.id.desc())
        )
        return list(self.session.exec(statement))

    def latest_since(self, standup_id: int, since: datetime) -> Optional[EmailLog]:
        statement = (
            select(EmailLog)
            .where(
                EmailLog.standup_id == standup_id,
                EmailLog.status == "sent",
                EmailLog.sent_at >= since,
            )
            .order_by(EmailLog.sent_at.desc())
        )
        return self.session.exec(statement).first()

    def list_by_lab(self, lab_id: str) -> list[EmailLog]:
        statement = (
            select(EmailLog)
            .join(Standup, Standup.id == EmailLog.standup_id)
            .where(Standup.lab_id == lab_id)
            .order_by(EmailLog.sent_at.desc(), EmailLog.id.desc())
        )
        return list(self.session.exec(statement))
