from __future__ import annotations

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, File, Form, UploadFile
from fastapi.responses import JSONResponse

from labsync.api.schemas import (
    AnalyzeRequest,
    AttachTranscriptRequest,
    CreateStandupRequest,
    EmailLogOut,
    SendEmailRequest,
    StandupOut,
)
from labsync.deps import (
    get_analysis_engine,
    get_dispatcher,
    get_gateway,
    get_pipeline,
    get_standup_service,
)
from labsync.models.analysis import AnalysisResult
from labsync.services.analysis_service import AnalysisEngine
from labsync.services.notification_service import NotificationDispatcher
from labsync.services.standup_service import StandupPipeline, StandupService, StandupUpdate
from labsync.services.transcription_service import AudioUpload, TranscriptionGateway


router = APIRouter(prefix="/standups", tags=["standups"])


@router.post("/transcribe")
def transcribe_audio(
    audio: UploadFile = File(...),
    language: Optional[str] = Form(None),
    gateway: TranscriptionGateway = Depends(get_gateway),
) -> Dict[str, str]:
    # Configuration is checked before the upload is even read.
    gateway.ensure_configured()
    data = audio.file.read()
    filename = audio.filename or "recording.webm"
    gateway.validate(AudioUpload(filename=filename, content_type=audio.content_type, size=len(data)))
    transcript = gateway.transcribe(data, filename, language=language)
    return {"transcript": transcript}


@router.post("/analyze")
def analyze_transcript(body: AnalyzeRequest, engine: AnalysisEngine = Depends(get_analysis_engine)) -> AnalysisResult:
    return engine.analyze(body.transcript)


@router.post("", status_code=201)
def create_standup(body: CreateStandupRequest, service: StandupService = Depends(get_standup_service)) -> StandupOut:
    standup = service.create(body.lab_id, date=body.date, participants=body.participants)
    return StandupOut.from_model(standup)


@router.get("")
def list_standups(
    lab_id: str, limit: int = 20, offset: int = 0, service: StandupService = Depends(get_standup_service)
) -> List[StandupOut]:
    return [StandupOut.from_model(s) for s in service.list_by_lab(lab_id, limit=limit, offset=offset)]


@router.get("/{standup_id}")
def get_standup(standup_id: int, service: StandupService = Depends(get_standup_service)) -> StandupOut:
    return StandupOut.from_model(service.get(standup_id))


@router.put("/{standup_id}")
def update_standup(
    standup_id: int, body: StandupUpdate, service: StandupService = Depends(get_standup_service)
) -> StandupOut:
    return StandupOut.from_model(service.update(standup_id, body))


@router.delete("/{standup_id}")
def delete_standup(standup_id: int, service: StandupService = Depends(get_standup_service)) -> Dict[str, Any]:
    service.delete(standup_id)
    return {"ok": True}


@router.post("/{standup_id}/start")
def start_standup(standup_id: int, service: StandupService = Depends(get_standup_service)) -> StandupOut:
    return StandupOut.from_model(service.start(standup_id))


@router.post("/{standup_id}/cancel")
def cancel_standup(standup_id: int, service: StandupService = Depends(get_standup_service)) -> StandupOut:
    return StandupOut.from_model(service.cancel(standup_id))


@router.post("/{standup_id}/transcript")
def attach_transcript(
    standup_id: int, body: AttachTranscriptRequest, service: StandupService = Depends(get_standup_service)
) -> StandupOut:
    standup = service.attach_transcript(
        standup_id,
        body.transcript,
        audio_ref=body.audio_ref,
        language=body.language,
        duration_seconds=body.duration_seconds,
    )
    return StandupOut.from_model(standup)


@router.post("/{standup_id}/analysis")
def attach_analysis(
    standup_id: int, body: AnalysisResult, service: StandupService = Depends(get_standup_service)
) -> StandupOut:
    return StandupOut.from_model(service.attach_analysis(standup_id, body))


@router.post("/{standup_id}/analyze")
def analyze_standup(standup_id: int, pipeline: StandupPipeline = Depends(get_pipeline)) -> StandupOut:
    return StandupOut.from_model(pipeline.analyze_standup(standup_id))


@router.post("/{standup_id}/process")
def process_standup(
    standup_id: int,
    audio: UploadFile = File(...),
    language: Optional[str] = Form(None),
    pipeline: StandupPipeline = Depends(get_pipeline),
) -> StandupOut:
    data = audio.file.read()
    standup = pipeline.process(
        standup_id,
        data,
        audio.filename or f"standup-{standup_id}.webm",
        audio.content_type,
        language=language,
    )
    return StandupOut.from_model(standup)


@router.post("/{standup_id}/send-email")
def send_email(
    standup_id: int, body: SendEmailRequest, dispatcher: NotificationDispatcher = Depends(get_dispatcher)
) -> Any:
    # Dedup guard: at most one send per window.
    if dispatcher.was_recently_sent(standup_id, 1):
        return JSONResponse(
            status_code=429,
            content={"error": "Email was already sent recently. Please wait before sending again."},
        )
    sent = dispatcher.send(
        standup_id,
        body.recipients,
        sender_name=body.sender_name,
        sender_email=body.sender_email,
        subject=body.subject,
    )
    return {
        "success": True,
        "data": sent.model_dump(),
        "message": f"Email sent successfully to {len(sent.recipients)} recipient(s)",
    }


@router.get("/{standup_id}/send-email")
def email_overview(standup_id: int, dispatcher: NotificationDispatcher = Depends(get_dispatcher)) -> Dict[str, Any]:
    history = dispatcher.history(standup_id)
    return {
        "history": [EmailLogOut.from_model(h).model_dump(mode="json") for h in history],
        "suggested_recipients": dispatcher.suggested_recipients(standup_id),
        "can_send": not dispatcher.was_recently_sent(standup_id, 1),
        "last_sent_at": history[0].sent_at.isoformat() if history else None,
    }
