"""Recorder state machine tests.

Covers start/pause/resume/stop transitions, elapsed time accounting,
release of the capture resource on every exit path, and artifact handles.
"""

from __future__ import annotations

import pytest

from labsync.errors import CaptureUnavailable, PermissionDenied
from labsync.services.audio_capture import AudioRecorder, RecorderState, encode_wav, format_recording_time

from tests.conftest import FakeCaptureBackend, FakeMonotonic


@pytest.fixture
def monotonic() -> FakeMonotonic:
    return FakeMonotonic()


@pytest.fixture
def recorder(capture_backend, monotonic) -> AudioRecorder:
    return AudioRecorder(capture_backend, monotonic=monotonic)


# ── Transitions ───────────────────────────────────────────────────────────────


def test_start_moves_to_recording(recorder, capture_backend):
    """start() acquires one resource and begins recording."""
    recorder.start()
    assert recorder.state is RecorderState.RECORDING
    assert recorder.has_live_resource
    assert len(capture_backend.resources) == 1


def test_pause_resume_stop_accumulates_only_recording_time(recorder, capture_backend, monotonic):
    """Paused intervals do not count toward the duration."""
    recorder.start()
    resource = capture_backend.resources[0]
    resource.emit(b"aa")
    monotonic.advance(5)
    recorder.pause()
    assert recorder.state is RecorderState.PAUSED
    resource.emit(b"ignored")
    monotonic.advance(30)
    assert recorder.elapsed == pytest.approx(5)
    recorder.resume()
    assert recorder.state is RecorderState.RECORDING
    resource.emit(b"bb")
    monotonic.advance(3)

    artifact = recorder.stop()

    assert recorder.state is RecorderState.STOPPED
    assert artifact is not None
    assert artifact.data == b"aabb"
    assert artifact.mime_type == "audio/webm"
    assert artifact.duration_seconds == pytest.approx(8)
    assert resource.release_count == 1
    assert not recorder.has_live_resource


def test_stop_from_paused_produces_artifact(recorder, capture_backend, monotonic):
    recorder.start()
    capture_backend.resources[0].emit(b"x")
    monotonic.advance(2)
    recorder.pause()
    artifact = recorder.stop()
    assert artifact is not None and artifact.data == b"x"
    assert artifact.duration_seconds == pytest.approx(2)


def test_pause_and_resume_are_noops_from_wrong_state(recorder):
    recorder.pause()
    recorder.resume()
    assert recorder.state is RecorderState.IDLE
    recorder.start()
    recorder.resume()
    assert recorder.state is RecorderState.RECORDING


def test_stop_from_idle_returns_nothing(recorder):
    assert recorder.stop() is None
    assert recorder.state is RecorderState.IDLE


def test_elapsed_is_frozen_after_stop(recorder, monotonic):
    recorder.start()
    monotonic.advance(4)
    recorder.stop()
    monotonic.advance(100)
    assert recorder.elapsed == pytest.approx(4)


# ── Resource ownership ────────────────────────────────────────────────────────


def test_restart_releases_previous_resource_and_revokes_artifact(recorder, capture_backend):
    """A second start never leaves two resources live."""
    recorder.start()
    first_artifact = recorder.stop()
    recorder.start()
    assert first_artifact is not None and not first_artifact.handle.is_valid
    assert recorder.artifact is None
    recorder.start()
    assert capture_backend.resources[1].release_count == 1
    assert capture_backend.resources[2].release_count == 0
    assert len(capture_backend.resources) == 3


def test_reset_releases_and_returns_to_idle(recorder, capture_backend):
    recorder.start()
    recorder.reset()
    assert recorder.state is RecorderState.IDLE
    assert capture_backend.resources[0].release_count == 1
    recorder.reset()
    assert capture_backend.resources[0].release_count == 1


def test_unavailable_backend_raises():
    recorder = AudioRecorder(FakeCaptureBackend(available=False))
    with pytest.raises(CaptureUnavailable):
        recorder.start()
    assert recorder.state is RecorderState.IDLE


def test_permission_denied_returns_to_idle_with_error(capture_backend):
    errors = []
    recorder = AudioRecorder(capture_backend, on_error=errors.append)
    capture_backend.deny = PermissionDenied("Microphone access refused")
    with pytest.raises(PermissionDenied):
        recorder.start()
    assert recorder.state is RecorderState.IDLE
    assert isinstance(recorder.error, PermissionDenied)
    assert errors == [recorder.error]
    assert not recorder.has_live_resource


def test_failure_during_stop_releases_resource(recorder, capture_backend):
    recorder.start()
    resource = capture_backend.resources[0]
    resource.fail_on_stop = RuntimeError("device unplugged")
    with pytest.raises(RuntimeError):
        recorder.stop()
    assert recorder.state is RecorderState.IDLE
    assert resource.release_count == 1


def test_callbacks_receive_chunks_and_artifact(capture_backend):
    chunks, stopped = [], []
    recorder = AudioRecorder(capture_backend, on_chunk=chunks.append, on_stop=stopped.append)
    recorder.start()
    capture_backend.resources[0].emit(b"one")
    capture_backend.resources[0].emit(b"")
    artifact = recorder.stop()
    assert chunks == [b"one"]
    assert stopped == [artifact]


# ── Helpers ───────────────────────────────────────────────────────────────────


@pytest.mark.parametrize(
    "seconds, expected",
    [(0, "0:00"), (5, "0:05"), (65, "1:05"), (3600, "1:00:00"), (3725, "1:02:05"), (-3, "0:00")],
)
def test_format_recording_time(seconds, expected):
    assert format_recording_time(seconds) == expected


def test_encode_wav_writes_riff_header():
    data = encode_wav([b"\x00\x00" * 160], samplerate=16000)
    assert data[:4] == b"RIFF"
    assert data[8:12] == b"WAVE"
