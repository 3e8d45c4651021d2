from __future__ import annotations

from typing import Optional
from sqlmodel import Session

from labsync.models.lab import Lab


class LabsRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def get(self, lab_id: str) -> Optional[Lab]:
        return self.session.get(Lab, lab_id)

    def name_for(self, lab_id: str) -> str:
        lab = self.get(lab_id)
        return lab.name if lab is not None else lab_id
