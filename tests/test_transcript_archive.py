"""Transcript archive tests: retention, search, stats, export and cleanup."""

from __future__ import annotations

from datetime import timedelta
from unittest import mock

import pytest
from sqlmodel import select

from labsync.errors import AlreadyExists, InvalidRequest, NotFound
from labsync.models.lab import Lab
from labsync.models.transcript_archive import TranscriptArchive
from labsync.services.archive_service import TranscriptArchiveService, count_words
from labsync.services.standup_service import StandupService


@pytest.fixture
def archive(session, settings, clock) -> TranscriptArchiveService:
    return TranscriptArchiveService(session, settings, clock)


@pytest.fixture
def standups(session, settings, clock) -> StandupService:
    return StandupService(session, settings, clock)


def _save(archive, standups, text, lab_id="lab-1", **kwargs):
    standup = standups.create(lab_id)
    return archive.save(standup.id, lab_id, text, **kwargs)


# ── Save and retention ────────────────────────────────────────────────────────


def test_save_applies_default_retention(archive, standups, clock):
    entry = _save(archive, standups, "Daily standup notes here")
    assert entry.created_at == clock.now
    assert entry.expires_at == clock.now + timedelta(days=30)
    assert entry.word_count == 4
    assert entry.language == "en"


def test_save_twice_for_same_standup_is_rejected(archive, standups):
    entry = _save(archive, standups, "first")
    with pytest.raises(AlreadyExists):
        archive.save(entry.standup_id, "lab-1", "second")


def test_save_rejects_non_positive_retention(archive, standups):
    with pytest.raises(InvalidRequest):
        _save(archive, standups, "text", retention_days=0)


def test_save_for_missing_standup_is_not_found(archive, session):
    with pytest.raises(NotFound):
        archive.save(9999, "lab-1", "orphan notes")
    assert session.exec(select(TranscriptArchive)).all() == []


def test_save_rejects_lab_mismatch(archive, standups):
    standup = standups.create("lab-1")
    with pytest.raises(InvalidRequest):
        archive.save(standup.id, "lab-2", "notes")


def test_save_links_the_standup(archive, standups):
    """The standup points at its archive entry as soon as it is saved."""
    entry = _save(archive, standups, "notes")
    assert standups.get(entry.standup_id).transcript_ref == entry.id


def test_extend_retention_is_additive(archive, standups, clock):
    entry = _save(archive, standups, "text")
    extended = archive.extend_retention(entry.standup_id, 15)
    assert extended.expires_at == clock.now + timedelta(days=45)
    again = archive.extend_retention(entry.standup_id, 1)
    assert again.expires_at == clock.now + timedelta(days=46)


@pytest.mark.parametrize("days", [0, -1, 366, True, 1.5])
def test_extend_retention_bounds(archive, standups, days):
    entry = _save(archive, standups, "text")
    with pytest.raises(InvalidRequest):
        archive.extend_retention(entry.standup_id, days)


def test_extend_missing_transcript_raises(archive):
    with pytest.raises(NotFound):
        archive.extend_retention(404, 10)


# ── Search ────────────────────────────────────────────────────────────────────


def test_search_is_case_insensitive_and_lab_scoped(archive, standups, clock):
    first = _save(archive, standups, "The Parser is done")
    clock.advance(minutes=1)
    second = _save(archive, standups, "parser tests are flaky")
    _save(archive, standups, "Parser in another lab", lab_id="lab-2")
    _save(archive, standups, "nothing relevant")

    hits = archive.search("PARSER", lab_id="lab-1")
    assert [h.id for h in hits] == [second.id, first.id]
    assert len(archive.search("parser")) == 3
    assert [h.id for h in archive.search("parser", lab_id="lab-1", limit=1, offset=1)] == [first.id]


def test_search_folds_non_ascii_case(archive, standups):
    _save(archive, standups, "Réunion ÉQUIPE Zürich")
    _save(archive, standups, "unrelated notes")
    assert len(archive.search("équipe")) == 1
    assert len(archive.search("ZÜRICH")) == 1
    assert len(archive.search("Straße")) == 0


def test_search_treats_wildcards_literally(archive, standups):
    _save(archive, standups, "coverage went to 100% today")
    _save(archive, standups, "coverage went to 100 today")
    assert len(archive.search("100%")) == 1


def test_search_hides_expired_unless_asked(archive, standups, clock):
    _save(archive, standups, "old parser notes", retention_days=1)
    clock.advance(days=2)
    assert archive.search("parser") == []
    assert len(archive.search("parser", include_expired=True)) == 1


@pytest.mark.parametrize("kwargs", [{"term": "  "}, {"term": "x", "limit": 0}, {"term": "x", "limit": 101}, {"term": "x", "offset": -1}])
def test_search_validates_arguments(archive, kwargs):
    with pytest.raises(InvalidRequest):
        archive.search(**kwargs)


# ── Expiry, stats, export ─────────────────────────────────────────────────────


def test_expiring_soon_uses_threshold(archive, standups):
    soon = _save(archive, standups, "soon", retention_days=3)
    _save(archive, standups, "later", retention_days=30)
    assert [e.id for e in archive.expiring_soon("lab-1")] == [soon.id]
    assert len(archive.expiring_soon("lab-1", days_threshold=30)) == 2


def test_stats(archive, standups, clock):
    _save(archive, standups, "one two three", retention_days=2)
    _save(archive, standups, "uno dos", language="es")
    _save(archive, standups, "gone soon", retention_days=1)
    clock.advance(days=1)

    stats = archive.stats("lab-1")
    assert stats.total_transcripts == 3
    assert stats.total_words == 7
    assert stats.average_word_count == 2
    assert stats.expired_count == 1
    assert stats.expiring_within_threshold == 1
    assert stats.language_breakdown == {"en": 2, "es": 1}


def test_export_renders_text_document(archive, standups, session, clock):
    session.add(Lab(id="lab-1", name="Robotics Lab"))
    session.commit()
    entry = _save(archive, standups, "Ana finished the parser.")

    export = archive.export(entry.standup_id)

    assert export.filename == f"transcript-{entry.standup_id}-2024-03-04.txt"
    assert export.lab_name == "Robotics Lab"
    assert export.content.startswith("Standup Transcript\n")
    assert "Lab: Robotics Lab" in export.content
    assert "Word count: 4" in export.content
    assert "Expires: 2024-04-03 09:30 UTC" in export.content
    assert export.content.rstrip().endswith("Ana finished the parser.")


def test_delete(archive, standups):
    entry = _save(archive, standups, "text")
    assert archive.delete(entry.standup_id) is True
    assert archive.delete(entry.standup_id) is False
    with pytest.raises(NotFound):
        archive.get_by_standup_id(entry.standup_id)


# ── Cleanup ───────────────────────────────────────────────────────────────────


def test_cleanup_deletes_only_expired_entries(archive, standups, clock):
    short = _save(archive, standups, "short", retention_days=1)
    keep = _save(archive, standups, "long", retention_days=30)
    clock.advance(days=1)

    result = archive.cleanup_expired()

    assert result.deleted_count == 1
    assert result.errors == []
    with pytest.raises(NotFound):
        archive.get_by_standup_id(short.standup_id)
    assert archive.get_by_standup_id(keep.standup_id).text == "long"
    assert archive.cleanup_expired().deleted_count == 0


def test_cleanup_keeps_standup_transcript_ref(archive, standups, clock):
    standup = standups.create("lab-1")
    standups.attach_transcript(standup.id, "text", retention_days=1)
    clock.advance(days=2)
    assert archive.cleanup_expired().deleted_count == 1
    assert standups.get(standup.id).transcript_ref is not None


def test_count_words():
    assert count_words("  a  b\nc\t d ") == 4
    assert count_words("") == 0


def test_retention_scenario_end_to_end(archive, standups, clock):
    """Attach with default retention, extend by 15, clean up once past 45 days."""
    standup = standups.create("lab-1")
    standups.attach_transcript(standup.id, "quarterly review notes for the lab")
    entry = archive.get_by_standup_id(standup.id)
    assert entry.expires_at - entry.created_at == timedelta(days=30)

    entry = archive.extend_retention(standup.id, 15)
    assert entry.expires_at - entry.created_at == timedelta(days=45)
    assert archive.cleanup_expired().deleted_count == 0

    clock.advance(days=45, seconds=1)
    assert archive.cleanup_expired().deleted_count == 1


def test_extensions_compose(archive, standups):
    a = _save(archive, standups, "a")
    b = _save(archive, standups, "b")
    archive.extend_retention(a.standup_id, 10)
    archive.extend_retention(a.standup_id, 20)
    archive.extend_retention(b.standup_id, 30)
    assert archive.get_by_standup_id(a.standup_id).expires_at == archive.get_by_standup_id(b.standup_id).expires_at


def test_cleanup_collects_per_entry_failures(archive, standups, clock):
    first = _save(archive, standups, "first", retention_days=1)
    _save(archive, standups, "second", retention_days=1)
    clock.advance(days=1)
    real_delete = archive._repo.delete

    def flaky_delete(entry):
        if entry.standup_id == first.standup_id:
            raise RuntimeError("disk I/O error")
        real_delete(entry)

    with mock.patch.object(archive._repo, "delete", side_effect=flaky_delete):
        result = archive.cleanup_expired()

    assert result.deleted_count == 1
    assert len(result.errors) == 1
    assert result.errors[0].endswith("disk I/O error")
    assert result.errors[0].startswith("Failed to delete transcript ")
