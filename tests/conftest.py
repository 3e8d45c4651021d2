"""Shared fixtures for the standup backend tests.

Provides:
- In-memory SQLite engine with all tables created, plus a file-backed one
- A controllable clock
- Fake speech-to-text, language model and email providers
- A fake microphone backend for the recorder
- A FastAPI app wired to all of the above
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import List, Optional

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, create_engine

from labsync.config import Settings
from labsync.main import create_app
from labsync.models.base import enable_foreign_keys, init_db, make_engine
from labsync.services.audio_capture import CaptureBackend, CaptureResource
from labsync.services.notification_service import OutboundEmail


# ── Clock ─────────────────────────────────────────────────────────────────────


class FakeClock:
    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class FakeMonotonic:
    def __init__(self) -> None:
        self.value = 100.0

    def __call__(self) -> float:
        return self.value

    def advance(self, seconds: float) -> None:
        self.value += seconds


# ── Providers ─────────────────────────────────────────────────────────────────


class FakeSpeechProvider:
    name = "fake-stt"

    def __init__(self, transcript: str = "  Ana finished the parser. Ben is blocked on the API key.  ") -> None:
        self.transcript = transcript
        self.configured = True
        self.error: Optional[Exception] = None
        self.calls: List[dict] = []

    def is_configured(self) -> bool:
        return self.configured

    def transcribe(self, data: bytes, filename: str, language: Optional[str] = None) -> str:
        self.calls.append({"size": len(data), "filename": filename, "language": language})
        if self.error is not None:
            raise self.error
        return self.transcript


ANALYSIS_JSON = (
    '{"summary": "The team made progress on the parser.",'
    ' "actionItems": [{"task": "Request API key", "assignee": "Ben"}],'
    ' "blockers": [{"issue": "Missing API key", "severity": "high"}],'
    ' "updates": ["Ana finished the parser"]}'
)


class FakeLanguageModel:
    name = "fake-llm"

    def __init__(self, response: str = ANALYSIS_JSON) -> None:
        self.response = response
        self.configured = True
        self.error: Optional[Exception] = None
        self.prompts: List[str] = []

    def is_configured(self) -> bool:
        return self.configured

    def complete_json(self, system: str, user: str) -> str:
        self.prompts.append(user)
        if self.error is not None:
            raise self.error
        return self.response


class FakeEmailTransport:
    name = "fake-email"

    def __init__(self) -> None:
        self.configured = True
        self.error: Optional[Exception] = None
        self.sent: List[OutboundEmail] = []

    def is_configured(self) -> bool:
        return self.configured

    def send(self, message: OutboundEmail) -> str:
        if self.error is not None:
            raise self.error
        self.sent.append(message)
        return f"msg-{len(self.sent)}"


# ── Capture ───────────────────────────────────────────────────────────────────


class FakeCaptureResource(CaptureResource):
    mime_type = "audio/webm"

    def __init__(self) -> None:
        self.on_chunk = None
        self.release_count = 0
        self.paused = False
        self.stopped = False
        self.fail_on_stop: Optional[Exception] = None

    def start(self, on_chunk) -> None:  # noqa: ANN001
        self.on_chunk = on_chunk

    def emit(self, chunk: bytes) -> None:
        self.on_chunk(chunk)

    def pause(self) -> None:
        self.paused = True

    def resume(self) -> None:
        self.paused = False

    def stop(self) -> None:
        if self.fail_on_stop is not None:
            raise self.fail_on_stop
        self.stopped = True

    def release(self) -> None:
        self.release_count += 1

    def assemble(self, chunks: List[bytes]) -> bytes:
        return b"".join(chunks)


class FakeCaptureBackend(CaptureBackend):
    def __init__(self, available: bool = True) -> None:
        self.available = available
        self.deny: Optional[Exception] = None
        self.resources: List[FakeCaptureResource] = []

    def is_available(self) -> bool:
        return self.available

    def acquire(self) -> CaptureResource:
        if self.deny is not None:
            raise self.deny
        resource = FakeCaptureResource()
        self.resources.append(resource)
        return resource


# ── Fixtures ──────────────────────────────────────────────────────────────────


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2024, 3, 4, 9, 30, 0, tzinfo=timezone.utc))


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        home_dir=tmp_path,
        data_dir=tmp_path / "data",
        audio_dir=tmp_path / "audio",
        models_dir=tmp_path / "models",
        logs_dir=tmp_path / "logs",
        database_path=tmp_path / "data" / "labsync.db",
        cleanup_enabled=False,
        openai_api_key=None,
        resend_api_key=None,
        smtp_host=None,
    )


@pytest.fixture
def engine():
    eng = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    enable_foreign_keys(eng)
    init_db(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def file_engine(settings):
    """File-backed SQLite engine; each thread gets its own connection."""
    settings.ensure_dirs()
    eng = make_engine(settings)
    init_db(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session(engine):
    with Session(engine) as s:
        yield s


@pytest.fixture
def speech_provider() -> FakeSpeechProvider:
    return FakeSpeechProvider()


@pytest.fixture
def language_model() -> FakeLanguageModel:
    return FakeLanguageModel()


@pytest.fixture
def email_transport() -> FakeEmailTransport:
    return FakeEmailTransport()


@pytest.fixture
def capture_backend() -> FakeCaptureBackend:
    return FakeCaptureBackend()


@pytest.fixture
def app(settings, engine, speech_provider, language_model, email_transport, clock):
    return create_app(
        settings=settings,
        engine=engine,
        speech_provider=speech_provider,
        analysis_provider=language_model,
        email_transport=email_transport,
        clock=clock,
    )


@pytest.fixture
def client(app):
    with TestClient(app) as c:
        yield c
