from __future__ import annotations

from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.engine import Engine
import logging
from logging.handlers import RotatingFileHandler

from labsync.config import Settings
from labsync.errors import LabSyncError
from labsync.models.base import Clock, init_db, make_engine, utcnow
from labsync.api.devices import router as devices_router
from labsync.api.standups import router as standups_router
from labsync.api.transcripts import router as transcripts_router
from labsync.services.analysis_service import LanguageModelProvider, build_analysis_provider
from labsync.services.cleanup_job import RetentionCleanupJob
from labsync.services.notification_service import EmailTransport, build_email_transport
from labsync.services.transcription_service import SpeechToTextProvider, build_speech_provider


logger = logging.getLogger("labsync.api")


def configure_logging(settings: Settings) -> None:
    log_file = settings.logs_dir / "backend.log"
    root = logging.getLogger()
    if any(isinstance(h, RotatingFileHandler) for h in root.handlers):
        return
    try:
        handler = RotatingFileHandler(str(log_file), maxBytes=5_000_000, backupCount=2)
    except OSError:
        logger.warning("Could not open log file %s; logging to stderr only", log_file)
        return
    handler.setFormatter(logging.Formatter(fmt="%(asctime)s %(levelname)s %(name)s %(message)s"))
    root.addHandler(handler)
    root.setLevel(logging.INFO)


def create_app(
    settings: Optional[Settings] = None,
    engine: Optional[Engine] = None,
    speech_provider: Optional[SpeechToTextProvider] = None,
    analysis_provider: Optional[LanguageModelProvider] = None,
    email_transport: Optional[EmailTransport] = None,
    clock: Clock = utcnow,
) -> FastAPI:
    settings = settings or Settings()
    app = FastAPI(title="LabSync Standups", version="0.1.0")

    app.state.settings = settings
    app.state.clock = clock
    app.state.engine = engine if engine is not None else make_engine(settings)
    app.state.speech_provider = speech_provider or build_speech_provider(settings)
    app.state.analysis_provider = analysis_provider or build_analysis_provider(settings)
    app.state.email_transport = email_transport or build_email_transport(settings)
    app.state.cleanup_job = RetentionCleanupJob(app.state.engine, settings, clock)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["http://localhost:3000", "http://127.0.0.1:3000"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.on_event("startup")
    def _startup() -> None:
        if engine is None:
            settings.ensure_dirs()
            configure_logging(settings)
        init_db(app.state.engine)
        if settings.cleanup_enabled:
            # Daily at 02:00 UTC by default, plus one pass right after startup.
            app.state.cleanup_job.start(run_immediately=settings.cleanup_run_on_start)

    @app.on_event("shutdown")
    def _shutdown() -> None:
        # The cleanup timer must not outlive the server process.
        app.state.cleanup_job.stop()

    @app.get("/healthz")
    def healthz() -> dict[str, str]:
        return {"status": "ok"}

    app.include_router(devices_router)
    app.include_router(standups_router)
    app.include_router(transcripts_router)

    @app.exception_handler(LabSyncError)
    async def _labsync_error_handler(request: Request, exc: LabSyncError):  # type: ignore[override]
        return JSONResponse(status_code=exc.status_code, content={"error": exc.message})

    @app.exception_handler(Exception)
    async def _unhandled_exception_handler(request: Request, exc: Exception):  # type: ignore[override]
        logger.exception("Unhandled exception")
        return JSONResponse(status_code=500, content={"error": str(exc)})

    return app


if __name__ == "__main__":
    import argparse
    import uvicorn

    parser = argparse.ArgumentParser(description="LabSync standup backend")
    parser.add_argument("--host", default="127.0.0.1", help="Host to bind to")
    parser.add_argument("--port", type=int, default=8000, help="Port to bind to")
    args = parser.parse_args()

    # uvicorn turns SIGTERM/SIGINT into the shutdown event, which stops the cleanup job.
    uvicorn.run(create_app(), host=args.host, port=args.port)
