from __future__ import annotations

import io
import itertools
import threading
import time
import wave
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, List, Optional

import numpy as np
import logging

try:
    import sounddevice as sd
except Exception:  # pragma: no cover - allow import on systems without PortAudio
    sd = None

from labsync.errors import CaptureUnavailable, PermissionDenied


logger = logging.getLogger("labsync.audio")

# Capture tuning
DEFAULT_BLOCKSIZE = 4096
DEFAULT_SAMPLE_RATE = 16000


class RecorderState(str, Enum):
    IDLE = "idle"
    RECORDING = "recording"
    PAUSED = "paused"
    STOPPED = "stopped"


ChunkCallback = Callable[[bytes], None]


class CaptureResource(ABC):
    """One live capture stream. ``release`` must be safe to call repeatedly."""

    mime_type: str = "application/octet-stream"

    @abstractmethod
    def start(self, on_chunk: ChunkCallback) -> None: ...

    @abstractmethod
    def pause(self) -> None: ...

    @abstractmethod
    def resume(self) -> None: ...

    @abstractmethod
    def stop(self) -> None: ...

    @abstractmethod
    def release(self) -> None: ...

    @abstractmethod
    def assemble(self, chunks: List[bytes]) -> bytes:
        """Turn accumulated chunks into one encoded audio payload."""


class CaptureBackend(ABC):
    @abstractmethod
    def is_available(self) -> bool: ...

    @abstractmethod
    def acquire(self) -> CaptureResource:
        """Open the microphone. Raises PermissionDenied if access is refused."""


_handle_ids = itertools.count(1)


@dataclass
class ArtifactHandle:
    """Transient locator for a finished recording (the blob URL of a browser)."""

    id: int = field(default_factory=lambda: next(_handle_ids))
    revoked: bool = False

    @property
    def is_valid(self) -> bool:
        return not self.revoked

    def revoke(self) -> None:
        self.revoked = True


@dataclass
class AudioArtifact:
    data: bytes
    mime_type: str
    duration_seconds: float
    handle: ArtifactHandle = field(default_factory=ArtifactHandle)

    @property
    def size(self) -> int:
        return len(self.data)


@dataclass
class _Capture:
    """Everything owned by the recorder while a capture resource is live."""

    resource: CaptureResource
    chunks: List[bytes] = field(default_factory=list)
    accumulated: float = 0.0
    segment_started: Optional[float] = None


class AudioRecorder:
    """Record/pause/resume/stop state machine over a CaptureBackend.

    Holds at most one capture resource. Every path that gives up the resource
    goes through ``_release_capture`` so it is released exactly once.
    """

    def __init__(
        self,
        backend: CaptureBackend,
        monotonic: Callable[[], float] = time.monotonic,
        on_chunk: Optional[ChunkCallback] = None,
        on_stop: Optional[Callable[[AudioArtifact], None]] = None,
        on_error: Optional[Callable[[Exception], None]] = None,
    ) -> None:
        self._backend = backend
        self._monotonic = monotonic
        self._on_chunk = on_chunk
        self._on_stop = on_stop
        self._on_error = on_error
        self._lock = threading.RLock()
        self._state = RecorderState.IDLE
        self._capture: Optional[_Capture] = None
        self._artifact: Optional[AudioArtifact] = None
        self._frozen_elapsed = 0.0
        self.error: Optional[Exception] = None

    @property
    def state(self) -> RecorderState:
        return self._state

    @property
    def artifact(self) -> Optional[AudioArtifact]:
        return self._artifact

    @property
    def has_live_resource(self) -> bool:
        return self._capture is not None

    @property
    def elapsed(self) -> float:
        with self._lock:
            cap = self._capture
            if cap is None:
                return self._frozen_elapsed
            if cap.segment_started is None:
                return cap.accumulated
            return cap.accumulated + max(0.0, self._monotonic() - cap.segment_started)

    def start(self) -> None:
        with self._lock:
            if not self._backend.is_available():
                raise CaptureUnavailable("Audio capture is not supported on this system")

            # Never hold two capture resources; drop the old one and its artifact first.
            self._release_capture()
            self._revoke_artifact()
            self.error = None

            try:
                resource = self._backend.acquire()
            except Exception as exc:
                self._fail(exc)
                raise
            capture = _Capture(resource=resource)
            self._capture = capture
            self._frozen_elapsed = 0.0
            try:
                resource.start(lambda chunk: self._append_chunk(capture, chunk))
            except Exception as exc:
                self._fail(exc)
                raise
            capture.segment_started = self._monotonic()
            self._state = RecorderState.RECORDING
            logger.info("Recording started")

    def pause(self) -> None:
        with self._lock:
            if self._state is not RecorderState.RECORDING or self._capture is None:
                return
            cap = self._capture
            cap.resource.pause()
            if cap.segment_started is not None:
                cap.accumulated += max(0.0, self._monotonic() - cap.segment_started)
            cap.segment_started = None
            self._state = RecorderState.PAUSED

    def resume(self) -> None:
        with self._lock:
            if self._state is not RecorderState.PAUSED or self._capture is None:
                return
            self._capture.resource.resume()
            self._capture.segment_started = self._monotonic()
            self._state = RecorderState.RECORDING

    def stop(self) -> Optional[AudioArtifact]:
        with self._lock:
            if self._state not in (RecorderState.RECORDING, RecorderState.PAUSED) or self._capture is None:
                return self._artifact
            cap = self._capture
            elapsed = self.elapsed
            try:
                cap.resource.stop()
                data = cap.resource.assemble(list(cap.chunks))
            except Exception as exc:
                self._fail(exc)
                raise
            self._frozen_elapsed = elapsed
            self._release_capture()
            artifact = AudioArtifact(data=data, mime_type=cap.resource.mime_type, duration_seconds=elapsed)
            self._artifact = artifact
            self._state = RecorderState.STOPPED
            logger.info("Recording stopped", extra={"bytes": artifact.size, "seconds": round(elapsed, 1)})
        if self._on_stop is not None:
            self._on_stop(artifact)
        return artifact

    def reset(self) -> None:
        with self._lock:
            self._release_capture()
            self._revoke_artifact()
            self._frozen_elapsed = 0.0
            self.error = None
            self._state = RecorderState.IDLE

    def _append_chunk(self, capture: _Capture, chunk: bytes) -> None:
        if not chunk:
            return
        with self._lock:
            # Late callbacks from a stream that is no longer ours are dropped.
            if self._capture is not capture or self._state is not RecorderState.RECORDING:
                return
            capture.chunks.append(chunk)
        if self._on_chunk is not None:
            self._on_chunk(chunk)

    def _fail(self, exc: Exception) -> None:
        logger.warning("Recorder error: %s", exc)
        self.error = exc
        self._release_capture()
        self._revoke_artifact()
        self._frozen_elapsed = 0.0
        self._state = RecorderState.IDLE
        if self._on_error is not None:
            self._on_error(exc)

    def _release_capture(self) -> None:
        cap, self._capture = self._capture, None
        if cap is not None:
            cap.resource.release()

    def _revoke_artifact(self) -> None:
        artifact, self._artifact = self._artifact, None
        if artifact is not None:
            artifact.handle.revoke()


def format_recording_time(seconds: float) -> str:
    total = int(max(0, seconds))
    hours, rest = divmod(total, 3600)
    minutes, secs = divmod(rest, 60)
    if hours > 0:
        return f"{hours}:{minutes:02d}:{secs:02d}"
    return f"{minutes}:{secs:02d}"


def _to_mono_int16(data: np.ndarray) -> np.ndarray:
    """Convert float32/other shaped buffers to mono int16 for WAV writing."""
    data_f32 = data.astype(np.float32, copy=False)
    if data_f32.ndim == 2 and data_f32.shape[1] > 1:
        data_f32 = data_f32.mean(axis=1)
    elif data_f32.ndim == 2:
        data_f32 = data_f32[:, 0]
    return np.clip(data_f32 * 32767.0, -32768, 32767).astype(np.int16)


def encode_wav(pcm_chunks: List[bytes], samplerate: int, channels: int = 1) -> bytes:
    buf = io.BytesIO()
    wf = wave.open(buf, "wb")
    try:
        wf.setnchannels(channels)
        wf.setsampwidth(2)  # int16
        wf.setframerate(samplerate)
        for chunk in pcm_chunks:
            wf.writeframes(chunk)
    finally:
        wf.close()
    return buf.getvalue()


class SoundDeviceResource(CaptureResource):
    mime_type = "audio/wav"

    def __init__(self, stream: "sd.InputStream", samplerate: int) -> None:
        self._stream = stream
        self._samplerate = samplerate
        self._on_chunk: Optional[ChunkCallback] = None
        self._paused = False
        self._released = False

    def callback(self, indata, frames, time_info, status) -> None:  # noqa: ANN001 - external callback signature
        if status:  # pragma: no cover
            logger.debug("Input stream status: %s", status)
        if self._paused or self._on_chunk is None:
            return
        self._on_chunk(_to_mono_int16(indata).tobytes())

    def start(self, on_chunk: ChunkCallback) -> None:
        self._on_chunk = on_chunk
        self._stream.start()

    def pause(self) -> None:
        self._paused = True

    def resume(self) -> None:
        self._paused = False

    def stop(self) -> None:
        if not self._released and self._stream.active:
            self._stream.stop()

    def release(self) -> None:
        if self._released:
            return
        self._released = True
        try:
            if self._stream.active:
                self._stream.stop()
        finally:
            self._stream.close()

    def assemble(self, chunks: List[bytes]) -> bytes:
        return encode_wav(chunks, self._samplerate)


class SoundDeviceBackend(CaptureBackend):
    """Microphone capture through PortAudio (sounddevice)."""

    def __init__(self, device: Optional[int] = None, samplerate: int = DEFAULT_SAMPLE_RATE) -> None:
        self._device = device
        self._samplerate = samplerate

    def is_available(self) -> bool:
        if sd is None:
            return False
        try:
            return any(d.get("max_input_channels", 0) > 0 for d in sd.query_devices())
        except Exception:
            return False

    def acquire(self) -> CaptureResource:
        if sd is None:
            raise CaptureUnavailable("sounddevice not available")
        holder: dict = {}

        def _cb(indata, frames, time_info, status):  # noqa: ANN001
            res = holder.get("resource")
            if res is not None:
                res.callback(indata, frames, time_info, status)

        try:
            stream = sd.InputStream(
                device=self._device,
                channels=1,
                dtype="float32",
                samplerate=self._samplerate,
                blocksize=DEFAULT_BLOCKSIZE,
                callback=_cb,
            )
        except sd.PortAudioError as exc:
            raise PermissionDenied(f"Microphone access refused: {exc}") from exc
        resource = SoundDeviceResource(stream, self._samplerate)
        holder["resource"] = resource
        return resource


def list_input_devices() -> List[dict]:
    if sd is None:
        return []
    devices = sd.query_devices()
    default_input = sd.default.device[0] if sd.default.device is not None else None
    out: List[dict] = []
    for idx, dev in enumerate(devices):
        if dev.get("max_input_channels", 0) > 0:
            out.append(
                {
                    "id": str(idx),
                    "name": dev.get("name", f"Device {idx}"),
                    "is_default": idx == default_input,
                }
            )
    return out
