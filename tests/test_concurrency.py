"""Concurrent transition tests against a file-backed SQLite database.

Every worker thread opens its own Session, the way request handlers do,
and all of them are released together by a barrier.
"""

from __future__ import annotations

import threading
from typing import Callable, List

import pytest
from sqlmodel import Session, select

from labsync.errors import AlreadyExists, AlreadyProcessed, InvalidState
from labsync.models.analysis import AnalysisResult
from labsync.models.standup import Standup, StandupStatus
from labsync.models.transcript_archive import TranscriptArchive
from labsync.services.archive_service import TranscriptArchiveService
from labsync.services.standup_service import StandupService


WORKERS = 8


def _race(engine, work: Callable[[Session, int], object]) -> List[object]:
    """Run ``work`` in WORKERS threads at once; collect results or exceptions."""
    barrier = threading.Barrier(WORKERS)
    outcomes: List[object] = [None] * WORKERS

    def _worker(i: int) -> None:
        with Session(engine) as session:
            barrier.wait(timeout=10)
            try:
                outcomes[i] = work(session, i)
            except Exception as exc:  # noqa: BLE001 - collected for assertions
                outcomes[i] = exc

    threads = [threading.Thread(target=_worker, args=(i,), name=f"racer-{i}") for i in range(WORKERS)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(30)
        assert not t.is_alive()
    return outcomes


def _split(outcomes):
    wins = [o for o in outcomes if not isinstance(o, Exception)]
    losses = [o for o in outcomes if isinstance(o, Exception)]
    return wins, losses


@pytest.fixture
def standup_id(file_engine, settings, clock) -> int:
    with Session(file_engine) as session:
        return StandupService(session, settings, clock).create("lab-1").id


def _archive_rows(engine, standup_id):
    with Session(engine) as session:
        return session.exec(select(TranscriptArchive).where(TranscriptArchive.standup_id == standup_id)).all()


# ── Transcripts ───────────────────────────────────────────────────────────────


def test_concurrent_attach_transcript_has_one_winner(file_engine, settings, clock, standup_id):
    outcomes = _race(
        file_engine,
        lambda s, i: StandupService(s, settings, clock).attach_transcript(standup_id, f"take {i}").transcript_ref,
    )

    wins, losses = _split(outcomes)
    assert len(wins) == 1
    assert all(isinstance(e, (AlreadyProcessed, InvalidState)) for e in losses)

    rows = _archive_rows(file_engine, standup_id)
    assert len(rows) == 1
    with Session(file_engine) as session:
        standup = session.get(Standup, standup_id)
        assert standup.status is StandupStatus.PROCESSING
        assert standup.transcript_ref == rows[0].id == wins[0]


def test_concurrent_archive_save_has_one_winner(file_engine, settings, clock, standup_id):
    outcomes = _race(
        file_engine,
        lambda s, i: TranscriptArchiveService(s, settings, clock).save(standup_id, "lab-1", f"take {i}").id,
    )

    wins, losses = _split(outcomes)
    assert len(wins) == 1
    assert all(isinstance(e, AlreadyExists) for e in losses)
    rows = _archive_rows(file_engine, standup_id)
    assert [r.id for r in rows] == wins
    with Session(file_engine) as session:
        assert session.get(Standup, standup_id).transcript_ref == wins[0]


def test_save_and_attach_racing_each_other_archive_once(file_engine, settings, clock, standup_id):
    def work(session, i):
        if i % 2:
            return TranscriptArchiveService(session, settings, clock).save(standup_id, "lab-1", f"save {i}").id
        return StandupService(session, settings, clock).attach_transcript(standup_id, f"attach {i}").transcript_ref

    wins, losses = _split(_race(file_engine, work))
    assert len(wins) == 1
    assert all(isinstance(e, (AlreadyExists, AlreadyProcessed, InvalidState)) for e in losses)
    assert len(_archive_rows(file_engine, standup_id)) == 1


# ── Analysis ──────────────────────────────────────────────────────────────────


def test_concurrent_attach_analysis_has_one_winner(file_engine, settings, clock, standup_id):
    with Session(file_engine) as session:
        StandupService(session, settings, clock).attach_transcript(standup_id, "Ana finished the parser.")

    outcomes = _race(
        file_engine,
        lambda s, i: StandupService(s, settings, clock)
        .attach_analysis(standup_id, AnalysisResult(summary=f"run {i}"))
        .analysis_json,
    )

    wins, losses = _split(outcomes)
    assert len(wins) == 1
    assert all(isinstance(e, InvalidState) for e in losses)
    with Session(file_engine) as session:
        standup = session.get(Standup, standup_id)
        assert standup.status is StandupStatus.COMPLETED
        assert standup.analysis_json == wins[0]
