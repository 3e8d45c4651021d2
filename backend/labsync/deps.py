from __future__ import annotations

from typing import Iterator

from fastapi import Depends, Request
from sqlmodel import Session

from labsync.config import Settings
from labsync.models.base import Clock
from labsync.services.analysis_service import AnalysisEngine
from labsync.services.archive_service import TranscriptArchiveService
from labsync.services.cleanup_job import RetentionCleanupJob
from labsync.services.notification_service import NotificationDispatcher
from labsync.services.standup_service import StandupPipeline, StandupService
from labsync.services.transcription_service import TranscriptionGateway


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_clock(request: Request) -> Clock:
    return request.app.state.clock


def get_session(request: Request) -> Iterator[Session]:
    with Session(request.app.state.engine) as session:
        yield session


def get_gateway(request: Request) -> TranscriptionGateway:
    return TranscriptionGateway(request.app.state.speech_provider, request.app.state.settings)


def get_analysis_engine(request: Request) -> AnalysisEngine:
    return AnalysisEngine(request.app.state.analysis_provider)


def get_cleanup_job(request: Request) -> RetentionCleanupJob:
    return request.app.state.cleanup_job


def get_standup_service(
    session: Session = Depends(get_session),
    settings: Settings = Depends(get_settings),
    clock: Clock = Depends(get_clock),
) -> StandupService:
    return StandupService(session, settings, clock)


def get_archive_service(
    session: Session = Depends(get_session),
    settings: Settings = Depends(get_settings),
    clock: Clock = Depends(get_clock),
) -> TranscriptArchiveService:
    return TranscriptArchiveService(session, settings, clock)


def get_pipeline(
    session: Session = Depends(get_session),
    gateway: TranscriptionGateway = Depends(get_gateway),
    engine: AnalysisEngine = Depends(get_analysis_engine),
    settings: Settings = Depends(get_settings),
    clock: Clock = Depends(get_clock),
) -> StandupPipeline:
    return StandupPipeline(session, gateway, engine, settings, clock)


def get_dispatcher(
    request: Request,
    session: Session = Depends(get_session),
    settings: Settings = Depends(get_settings),
    clock: Clock = Depends(get_clock),
) -> NotificationDispatcher:
    return NotificationDispatcher(session, request.app.state.email_transport, settings, clock)
