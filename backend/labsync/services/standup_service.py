from __future__ import annotations

import json
from datetime import datetime
from pathlib import Path
from typing import List, Optional
import logging

from pydantic import BaseModel
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session

from labsync.config import Settings
from labsync.errors import AlreadyProcessed, Conflict, InvalidRequest, InvalidState, NotFound
from labsync.models.analysis import AnalysisResult
from labsync.models.base import Clock, as_utc, utcnow
from labsync.models.standup import Standup, StandupStatus
from labsync.repositories.standups import StandupsRepository
from labsync.services.analysis_service import AnalysisEngine
from labsync.services.archive_service import TranscriptArchiveService
from labsync.services.locks import standup_lock
from labsync.services.transcription_service import AudioUpload, TranscriptionGateway


logger = logging.getLogger("labsync.standups")

_TRANSCRIPT_READY = (StandupStatus.SCHEDULED, StandupStatus.IN_PROGRESS)


class StandupUpdate(BaseModel):
    date: Optional[datetime] = None
    participants: Optional[List[str]] = None
    audio_ref: Optional[str] = None
    status: Optional[StandupStatus] = None


def analysis_of(standup: Standup) -> Optional[AnalysisResult]:
    if not standup.analysis_json:
        return None
    return AnalysisResult.model_validate_json(standup.analysis_json)


class StandupService:
    """Lifecycle of one standup: Scheduled -> InProgress -> Processing -> Completed.

    Cancelled is reachable from any non-terminal state. Deletion is a soft
    delete and is refused while a standup is Processing.
    """

    def __init__(self, session: Session, settings: Optional[Settings] = None, clock: Clock = utcnow) -> None:
        self.session = session
        self._settings = settings or Settings()
        self._clock = clock
        self._repo = StandupsRepository(session)

    def create(self, lab_id: str, date: Optional[datetime] = None, participants: Optional[List[str]] = None) -> Standup:
        if not lab_id or not lab_id.strip():
            raise InvalidRequest("lab_id is required")
        now = self._clock()
        standup = Standup(
            lab_id=lab_id,
            date=as_utc(date) if date is not None else now,
            participants_json=json.dumps(list(participants or []), ensure_ascii=False),
            status=StandupStatus.SCHEDULED,
            created_at=now,
            updated_at=now,
        )
        standup = self._repo.create(standup)
        logger.info("Standup created", extra={"standup_id": standup.id, "lab_id": lab_id})
        return standup

    def get(self, standup_id: int) -> Standup:
        standup = self._repo.get_active(standup_id)
        if standup is None:
            raise NotFound("Standup not found")
        return standup

    def list_by_lab(self, lab_id: str, limit: int = 20, offset: int = 0) -> List[Standup]:
        if not (1 <= limit <= 100) or offset < 0:
            raise InvalidRequest("limit must be between 1 and 100 and offset must not be negative")
        return self._repo.list_by_lab(lab_id, limit=limit, offset=offset)

    def _transition(self, standup_id: int, expected: tuple, target: StandupStatus) -> Standup:
        with standup_lock(standup_id):
            standup = self.get(standup_id)
            if standup.status not in expected:
                raise InvalidState(f"Cannot move standup from {standup.status.value} to {target.value}")
            ok = self._repo.compare_and_set(
                standup_id, expected, {"status": target, "updated_at": self._clock()}
            )
            if not ok:
                self.session.rollback()
                raise InvalidState(f"Cannot move standup to {target.value}")
            self.session.commit()
            self.session.refresh(standup)
            return standup

    def start(self, standup_id: int) -> Standup:
        return self._transition(standup_id, (StandupStatus.SCHEDULED,), StandupStatus.IN_PROGRESS)

    def cancel(self, standup_id: int) -> Standup:
        non_terminal = tuple(s for s in StandupStatus if not s.is_terminal)
        return self._transition(standup_id, non_terminal, StandupStatus.CANCELLED)

    def attach_transcript(
        self,
        standup_id: int,
        transcript: str,
        audio_ref: Optional[str] = None,
        retention_days: Optional[int] = None,
        language: Optional[str] = None,
        duration_seconds: Optional[float] = None,
    ) -> Standup:
        if not transcript or not transcript.strip():
            raise InvalidRequest("Transcript text is required")
        with standup_lock(standup_id):
            standup = self.get(standup_id)
            if standup.transcript_ref is not None:
                raise AlreadyProcessed("Standup already has a transcript")
            if standup.status not in _TRANSCRIPT_READY:
                raise InvalidState(f"Cannot attach a transcript to a {standup.status.value} standup")

            archive = TranscriptArchiveService(self.session, self._settings, self._clock)
            try:
                entry = archive.stage_entry(
                    standup_id,
                    standup.lab_id,
                    transcript,
                    retention_days=retention_days,
                    language=language,
                    duration_seconds=duration_seconds,
                )
            except IntegrityError as exc:
                self.session.rollback()
                raise AlreadyProcessed("Standup already has a transcript") from exc

            values = {
                "status": StandupStatus.PROCESSING,
                "transcript_ref": entry.id,
                "updated_at": self._clock(),
            }
            if audio_ref is not None:
                values["audio_ref"] = audio_ref
            ok = self._repo.compare_and_set(standup_id, _TRANSCRIPT_READY, values, require_transcript=False)
            if not ok:
                self.session.rollback()
                self.session.expire_all()
                current = self._repo.get(standup_id)
                if current is not None and current.transcript_ref is not None:
                    raise AlreadyProcessed("Standup already has a transcript")
                raise InvalidState("Standup can no longer accept a transcript")
            # Archive entry and standup transition land together or not at all.
            self.session.commit()
            self.session.refresh(standup)
            logger.info("Transcript attached", extra={"standup_id": standup_id, "words": entry.word_count})
            return standup

    def attach_analysis(self, standup_id: int, result: AnalysisResult) -> Standup:
        with standup_lock(standup_id):
            standup = self.get(standup_id)
            if standup.status is not StandupStatus.PROCESSING or standup.transcript_ref is None:
                raise InvalidState(f"Cannot attach analysis to a {standup.status.value} standup")
            ok = self._repo.compare_and_set(
                standup_id,
                (StandupStatus.PROCESSING,),
                {
                    "status": StandupStatus.COMPLETED,
                    "analysis_json": result.model_dump_json(),
                    "updated_at": self._clock(),
                },
                require_transcript=True,
            )
            if not ok:
                self.session.rollback()
                raise InvalidState("Standup is no longer awaiting analysis")
            self.session.commit()
            self.session.refresh(standup)
            logger.info("Analysis attached", extra={"standup_id": standup_id})
            return standup

    def update(self, standup_id: int, changes: StandupUpdate) -> Standup:
        with standup_lock(standup_id):
            standup = self.get(standup_id)
            if changes.status is not None and changes.status is not standup.status:
                self._check_manual_status(standup.status, changes.status)
                standup.status = changes.status
            if changes.date is not None:
                standup.date = as_utc(changes.date)
            if changes.participants is not None:
                standup.participants_json = json.dumps(list(changes.participants), ensure_ascii=False)
            if changes.audio_ref is not None:
                standup.audio_ref = changes.audio_ref
            standup.updated_at = self._clock()
            return self._repo.update(standup)

    @staticmethod
    def _check_manual_status(current: StandupStatus, target: StandupStatus) -> None:
        if target is StandupStatus.CANCELLED and not current.is_terminal:
            return
        if target is StandupStatus.IN_PROGRESS and current is StandupStatus.SCHEDULED:
            return
        # Processing and Completed are only reachable through attach_transcript / attach_analysis.
        raise InvalidState(f"Cannot change status from {current.value} to {target.value}")

    def delete(self, standup_id: int) -> Standup:
        with standup_lock(standup_id):
            standup = self.get(standup_id)
            if standup.status is StandupStatus.PROCESSING:
                raise Conflict("Cannot delete a standup while it is processing")
            standup.is_active = False
            standup.updated_at = self._clock()
            standup = self._repo.update(standup)
            logger.info("Standup deleted", extra={"standup_id": standup_id})
            return standup


class StandupPipeline:
    """Audio -> transcript -> analysis for one standup."""

    def __init__(
        self,
        session: Session,
        gateway: TranscriptionGateway,
        engine: AnalysisEngine,
        settings: Optional[Settings] = None,
        clock: Clock = utcnow,
    ) -> None:
        self.session = session
        self._gateway = gateway
        self._engine = engine
        self._settings = settings or Settings()
        self._standups = StandupService(session, self._settings, clock)
        self._archive = TranscriptArchiveService(session, self._settings, clock)

    def _store_audio(self, standup_id: int, data: bytes, filename: str) -> Path:
        name = Path(filename).name or f"standup-{standup_id}.webm"
        target_dir = self._settings.audio_dir / str(standup_id)
        target_dir.mkdir(parents=True, exist_ok=True)
        # Never overwrite: a rejected upload must not clobber the attached recording.
        stem, suffix = Path(name).stem, Path(name).suffix
        attempt = 0
        while True:
            path = target_dir / (name if attempt == 0 else f"{stem}-{attempt}{suffix}")
            try:
                with path.open("xb") as fh:
                    fh.write(data)
                return path
            except FileExistsError:
                attempt += 1

    def process(
        self,
        standup_id: int,
        data: bytes,
        filename: str,
        content_type: Optional[str],
        language: Optional[str] = None,
    ) -> Standup:
        # Configuration and upload checks run before any side effect.
        self._gateway.ensure_configured()
        self._gateway.validate(AudioUpload(filename=filename, content_type=content_type, size=len(data)))
        standup = self._standups.get(standup_id)
        if standup.transcript_ref is not None:
            raise AlreadyProcessed("Standup already has a transcript")
        if standup.status not in _TRANSCRIPT_READY:
            raise InvalidState(f"Cannot process a {standup.status.value} standup")

        transcript = self._gateway.transcribe(data, filename, language=language)
        audio_path = self._store_audio(standup_id, data, filename)
        try:
            self._standups.attach_transcript(standup_id, transcript, audio_ref=str(audio_path), language=language)
        except Exception:
            # Audio is kept only alongside an attached transcript.
            audio_path.unlink(missing_ok=True)
            raise
        return self.analyze_standup(standup_id)

    def analyze_standup(self, standup_id: int) -> Standup:
        standup = self._standups.get(standup_id)
        if standup.status is not StandupStatus.PROCESSING:
            raise InvalidState(f"Cannot analyze a {standup.status.value} standup")
        entry = self._archive.get_by_standup_id(standup_id)
        result = self._engine.analyze(entry.text)
        return self._standups.attach_analysis(standup_id, result)
