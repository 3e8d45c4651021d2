from __future__ import annotations

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends
from fastapi.responses import PlainTextResponse

from labsync.api.schemas import ExtendRetentionRequest, SaveTranscriptRequest, TranscriptOut
from labsync.deps import get_archive_service, get_cleanup_job, get_standup_service
from labsync.errors import InvalidRequest
from labsync.services.archive_service import ArchiveStats, CleanupResult, TranscriptArchiveService
from labsync.services.cleanup_job import CleanupStatus, RetentionCleanupJob
from labsync.services.standup_service import StandupService


router = APIRouter(prefix="/transcripts", tags=["transcripts"])


@router.post("", status_code=201)
def save_transcript(
    body: SaveTranscriptRequest,
    service: StandupService = Depends(get_standup_service),
    archive: TranscriptArchiveService = Depends(get_archive_service),
) -> TranscriptOut:
    # Archiving goes through the standup so both move to Processing together.
    if service.get(body.standup_id).lab_id != body.lab_id:
        raise InvalidRequest("lab_id does not match the standup")
    service.attach_transcript(
        body.standup_id, body.text, retention_days=body.retention_days, language=body.language
    )
    return TranscriptOut.from_model(archive.get_by_standup_id(body.standup_id))


@router.get("")
def search_transcripts(
    q: str,
    lab_id: Optional[str] = None,
    limit: int = 20,
    offset: int = 0,
    include_expired: bool = False,
    archive: TranscriptArchiveService = Depends(get_archive_service),
) -> List[TranscriptOut]:
    entries = archive.search(q, lab_id=lab_id, limit=limit, offset=offset, include_expired=include_expired)
    return [TranscriptOut.from_model(e) for e in entries]


@router.get("/expiring")
def expiring_transcripts(
    lab_id: Optional[str] = None,
    days: Optional[int] = None,
    archive: TranscriptArchiveService = Depends(get_archive_service),
) -> List[TranscriptOut]:
    return [TranscriptOut.from_model(e) for e in archive.expiring_soon(lab_id, days)]


@router.get("/stats")
def transcript_stats(
    lab_id: Optional[str] = None, archive: TranscriptArchiveService = Depends(get_archive_service)
) -> ArchiveStats:
    return archive.stats(lab_id)


@router.post("/cleanup")
def run_cleanup(job: RetentionCleanupJob = Depends(get_cleanup_job)) -> CleanupResult:
    return job.run_manual_cleanup()


@router.get("/cleanup")
def cleanup_status(job: RetentionCleanupJob = Depends(get_cleanup_job)) -> CleanupStatus:
    return job.status()


@router.get("/{standup_id}")
def get_transcript(standup_id: int, archive: TranscriptArchiveService = Depends(get_archive_service)) -> TranscriptOut:
    return TranscriptOut.from_model(archive.get_by_standup_id(standup_id))


@router.get("/{standup_id}/export")
def export_transcript(
    standup_id: int, archive: TranscriptArchiveService = Depends(get_archive_service)
) -> PlainTextResponse:
    export = archive.export(standup_id)
    return PlainTextResponse(
        export.content,
        headers={"Content-Disposition": f'attachment; filename="{export.filename}"'},
    )


@router.post("/{standup_id}/extend")
def extend_retention(
    standup_id: int,
    body: ExtendRetentionRequest,
    archive: TranscriptArchiveService = Depends(get_archive_service),
) -> Dict[str, Any]:
    entry = archive.extend_retention(standup_id, body.days)
    return {"success": True, "new_expiry_date": entry.expires_at.isoformat()}


@router.delete("/{standup_id}")
def delete_transcript(
    standup_id: int, archive: TranscriptArchiveService = Depends(get_archive_service)
) -> Dict[str, Any]:
    return {"ok": True, "deleted": archive.delete(standup_id)}
