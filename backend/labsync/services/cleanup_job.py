from __future__ import annotations

import signal
import threading
import time
from datetime import datetime, timezone
from typing import Callable, Optional
import logging

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.base import BaseTrigger
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger
from pydantic import BaseModel
from sqlalchemy.engine import Engine
from sqlmodel import Session

from labsync.config import Settings
from labsync.errors import Conflict
from labsync.models.base import Clock, utcnow
from labsync.services.archive_service import CleanupResult, TranscriptArchiveService


logger = logging.getLogger("labsync.cleanup")

JOB_ID = "transcript_cleanup"


class CleanupStatus(BaseModel):
    is_scheduled: bool
    is_running: bool
    schedule: Optional[str] = None
    next_run_at: Optional[datetime] = None
    last_run_at: Optional[datetime] = None
    last_result: Optional[CleanupResult] = None
    last_error: Optional[str] = None


def build_trigger(interval_seconds: Optional[float] = None, schedule: Optional[str] = None) -> tuple[BaseTrigger, str]:
    """Interval trigger when ``interval_seconds`` is given, otherwise a crontab expression.

    Raises ValueError for a non-positive interval or a malformed expression.
    """
    if interval_seconds is not None:
        if interval_seconds <= 0:
            raise ValueError("Cleanup interval must be positive")
        return IntervalTrigger(seconds=interval_seconds, timezone=timezone.utc), f"every {interval_seconds:g}s"
    if not schedule:
        raise ValueError("A cleanup schedule is required")
    return CronTrigger.from_crontab(schedule, timezone=timezone.utc), schedule


class RetentionCleanupJob:
    """Recurring sweep that deletes expired transcript archive entries.

    One instance per process, driven by an APScheduler background scheduler.
    A tick that arrives while a pass is still running (timer or manual) is
    dropped, never queued. After ``stop()`` no timer-driven pass starts.
    """

    def __init__(self, engine: Engine, settings: Optional[Settings] = None, clock: Clock = utcnow) -> None:
        self._engine = engine
        self._settings = settings or Settings()
        self._clock = clock
        self._pass_lock = threading.Lock()
        self._state_lock = threading.Lock()
        self._scheduler: Optional[BackgroundScheduler] = None
        self._schedule: Optional[str] = None
        self._last_run_at: Optional[datetime] = None
        self._last_result: Optional[CleanupResult] = None
        self._last_error: Optional[str] = None

    @property
    def is_scheduled(self) -> bool:
        return self._scheduler is not None

    @property
    def is_running(self) -> bool:
        return self._pass_lock.locked()

    def start(
        self,
        interval_seconds: Optional[float] = None,
        schedule: Optional[str] = None,
        run_immediately: bool = False,
    ) -> bool:
        """Begin the recurring schedule. Returns False if it was already running.

        Without arguments the settings decide: ``cleanup_interval_seconds`` when
        set, else the ``cleanup_schedule`` crontab (daily at 02:00 UTC).
        """
        if interval_seconds is None and schedule is None:
            interval_seconds = self._settings.cleanup_interval_seconds
            schedule = self._settings.cleanup_schedule
        trigger, description = build_trigger(interval_seconds, schedule)
        with self._state_lock:
            if self._scheduler is not None:
                logger.warning("Transcript cleanup job is already running")
                return False
            scheduler = BackgroundScheduler(timezone=timezone.utc)
            scheduler.add_job(
                self._tick,
                trigger=trigger,
                id=JOB_ID,
                name="Delete expired transcripts",
                max_instances=1,
                coalesce=True,
                misfire_grace_time=3600,
            )
            if run_immediately:
                scheduler.add_job(self._tick, id=f"{JOB_ID}_startup", name="Startup transcript cleanup")
            self._scheduler = scheduler
            self._schedule = description
            scheduler.start()
        logger.info("Transcript cleanup job started", extra={"schedule": description})
        return True

    def stop(self) -> None:
        with self._state_lock:
            scheduler = self._scheduler
            self._scheduler = None
            self._schedule = None
        if scheduler is None:
            return
        scheduler.shutdown(wait=False)
        logger.info("Transcript cleanup job stopped")

    def _tick(self) -> Optional[CleanupResult]:
        if self._scheduler is None:
            return None
        if not self._pass_lock.acquire(blocking=False):
            logger.warning("Cleanup is already running, skipping")
            return None
        try:
            return self._run_pass()
        except Exception:
            # A failed pass is recorded; the schedule keeps going.
            logger.exception("Transcript cleanup failed")
            return None
        finally:
            self._pass_lock.release()

    def run_manual_cleanup(self) -> CleanupResult:
        if not self._pass_lock.acquire(blocking=False):
            raise Conflict("Cleanup is already running")
        try:
            return self._run_pass()
        finally:
            self._pass_lock.release()

    def _run_pass(self) -> CleanupResult:
        started = time.monotonic()
        self._last_run_at = self._clock()
        logger.info("Starting transcript cleanup")
        try:
            with Session(self._engine) as session:
                archive = TranscriptArchiveService(session, self._settings, self._clock)
                result = archive.cleanup_expired()
                stats = archive.stats()
        except Exception as exc:
            self._last_error = str(exc)
            self._last_result = None
            raise
        self._last_result = result
        self._last_error = None
        logger.info(
            "Transcript cleanup completed",
            extra={
                "deleted_count": result.deleted_count,
                "errors": len(result.errors),
                "duration_ms": int((time.monotonic() - started) * 1000),
            },
        )
        if result.errors:
            logger.error("Cleanup errors encountered: %s", result.errors)
        logger.info("Archive stats after cleanup: %s", stats.model_dump())
        return result

    def status(self) -> CleanupStatus:
        scheduler = self._scheduler
        job = scheduler.get_job(JOB_ID) if scheduler is not None else None
        return CleanupStatus(
            is_scheduled=scheduler is not None,
            is_running=self.is_running,
            schedule=self._schedule,
            next_run_at=job.next_run_time if job is not None else None,
            last_run_at=self._last_run_at,
            last_result=self._last_result,
            last_error=self._last_error,
        )


def install_signal_handlers(job: RetentionCleanupJob, signals=(signal.SIGTERM, signal.SIGINT)) -> None:
    """Stop the job before exit when the host process is asked to terminate.

    Chains to any previously installed handler. Must be called from the main
    thread. The ASGI app does not need this; it stops the job on shutdown.
    """
    for sig in signals:
        previous = signal.getsignal(sig)

        def _handler(signum, frame, _previous=previous):  # noqa: ANN001
            job.stop()
            if callable(_previous):
                _previous(signum, frame)
            elif _previous == signal.SIG_DFL:
                signal.signal(signum, signal.SIG_DFL)
                signal.raise_signal(signum)

        signal.signal(sig, _handler)


def run_forever(
    job: RetentionCleanupJob, run_immediately: bool = True, sleep: Callable[[float], None] = time.sleep
) -> None:
    """Standalone entry: run the job until a termination signal stops it."""
    install_signal_handlers(job)
    job.start(run_immediately=run_immediately)
    while job.is_scheduled:
        sleep(1.0)


if __name__ == "__main__":
    from labsync.models.base import init_db, make_engine

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s %(message)s")
    _settings = Settings()
    _settings.ensure_dirs()
    _engine = make_engine(_settings)
    init_db(_engine)
    run_forever(RetentionCleanupJob(_engine, _settings), run_immediately=_settings.cleanup_run_on_start)
