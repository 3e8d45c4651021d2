from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Tuple
import io

from labsync.config import Settings


@dataclass
class ASRConfig:
    model_id: str = "small"
    device: str = "auto"  # auto|cpu|cuda
    language: Optional[str] = None
    vad: bool = True


class WhisperASREngine:
    """Thin wrapper around faster-whisper WhisperModel with simple caching."""

    def __init__(self, settings: Optional[Settings] = None) -> None:
        self._settings = settings or Settings()
        self._cached_key: Optional[Tuple[str, str, str]] = None
        self._model = None

    @staticmethod
    def _compute_type(device: str) -> str:
        if device == "cuda":
            return "float16"
        if device == "cpu":
            return "int8"
        return "default"

    def _ensure_model(self, model_id: str, device: str) -> None:
        compute_type = self._compute_type(device)
        key = (model_id, device, compute_type)
        if self._model is not None and self._cached_key == key:
            return
        # Lazy import to avoid heavy module import during app startup
        from faster_whisper import WhisperModel  # type: ignore

        download_root = str((self._settings.models_dir / "whisper" / "faster-whisper").resolve())
        Path(download_root).mkdir(parents=True, exist_ok=True)
        self._model = WhisperModel(
            model_id,
            device=device,
            compute_type=compute_type,
            download_root=download_root,
        )
        self._cached_key = key

    def transcribe_bytes(self, data: bytes, cfg: ASRConfig) -> str:
        """Decode an in-memory audio file and return the joined transcript text."""
        self._ensure_model(cfg.model_id, cfg.device)
        assert self._model is not None
        seg_iter, _info = self._model.transcribe(
            io.BytesIO(data),
            vad_filter=bool(cfg.vad),
            language=cfg.language,
            task="transcribe",
            beam_size=1,
            temperature=0.0,
            condition_on_previous_text=False,
        )
        parts = [(seg.text or "").strip() for seg in seg_iter]
        return " ".join(p for p in parts if p)
