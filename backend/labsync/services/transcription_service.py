from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Protocol
import io
import logging

from labsync.config import Settings
from labsync.errors import InvalidAudio, ProviderError, ProviderUnconfigured
from labsync.services.asr_engine import ASRConfig, WhisperASREngine


logger = logging.getLogger("labsync.transcription")


class SpeechToTextProvider(Protocol):
    name: str

    def is_configured(self) -> bool: ...

    def transcribe(self, data: bytes, filename: str, language: Optional[str] = None) -> str: ...


@dataclass
class AudioUpload:
    filename: str
    content_type: Optional[str]
    size: int


class OpenAISpeechProvider:
    name = "openai"

    def __init__(self, settings: Settings) -> None:
        self._api_key = settings.openai_api_key
        self._model = settings.openai_transcription_model
        self._client = None

    def is_configured(self) -> bool:
        return bool(self._api_key)

    def _get_client(self):
        if self._client is None:
            from openai import OpenAI

            self._client = OpenAI(api_key=self._api_key)
        return self._client

    def transcribe(self, data: bytes, filename: str, language: Optional[str] = None) -> str:
        kwargs = {"model": self._model, "file": (filename, io.BytesIO(data)), "response_format": "text"}
        if language:
            kwargs["language"] = language
        result = self._get_client().audio.transcriptions.create(**kwargs)
        # response_format="text" yields a plain string; older SDKs wrap it.
        return result if isinstance(result, str) else str(getattr(result, "text", result))


class WhisperSpeechProvider:
    """On-device transcription with faster-whisper."""

    name = "whisper"

    def __init__(self, settings: Settings, engine: Optional[WhisperASREngine] = None) -> None:
        self._settings = settings
        self._engine = engine or WhisperASREngine(settings)

    def is_configured(self) -> bool:
        return bool(self._settings.whisper_model_id)

    def transcribe(self, data: bytes, filename: str, language: Optional[str] = None) -> str:
        cfg = ASRConfig(
            model_id=str(self._settings.whisper_model_id),
            device=self._settings.whisper_device,
            language=language,
        )
        return self._engine.transcribe_bytes(data, cfg)


def build_speech_provider(settings: Settings) -> SpeechToTextProvider:
    if settings.stt_provider == "whisper":
        return WhisperSpeechProvider(settings)
    return OpenAISpeechProvider(settings)


class TranscriptionGateway:
    """Validates uploads and obtains transcripts from a speech-to-text provider.

    Calls are blocking and single-shot; callers own timeouts and retries.
    """

    def __init__(self, provider: SpeechToTextProvider, settings: Optional[Settings] = None) -> None:
        self._provider = provider
        self._settings = settings or Settings()

    @property
    def is_configured(self) -> bool:
        return self._provider.is_configured()

    def ensure_configured(self) -> None:
        if not self._provider.is_configured():
            raise ProviderUnconfigured(
                f"Speech-to-text provider '{self._provider.name}' is not configured"
            )

    def validate(self, upload: AudioUpload) -> None:
        max_bytes = self._settings.max_audio_bytes
        if upload.size <= 0:
            raise InvalidAudio("Audio file is empty")
        if upload.size > max_bytes:
            raise InvalidAudio(f"File size exceeds {max_bytes / (1024 * 1024):g}MB limit")
        content_type = (upload.content_type or "").split(";")[0].strip().lower()
        if not content_type:
            raise InvalidAudio("Audio media type is missing")
        if content_type not in self._settings.allowed_audio_types:
            raise InvalidAudio(
                f"File type '{content_type}' not supported. Please upload an audio file (WebM, MP3, WAV, etc.)"
            )

    def transcribe(
        self,
        data: bytes,
        filename: str,
        language: Optional[str] = None,
        content_type: Optional[str] = None,
    ) -> str:
        self.ensure_configured()
        if content_type is not None:
            self.validate(AudioUpload(filename=filename, content_type=content_type, size=len(data)))
        try:
            text = self._provider.transcribe(data, filename, language=language)
        except Exception as exc:
            logger.warning("Transcription failed for %s: %s", filename, exc)
            raise ProviderError(f"Transcription failed: {exc}") from exc
        if text is None:
            raise ProviderError("Transcription failed: provider returned no transcript")
        text = str(text).strip()
        logger.info("Transcribed %s", filename, extra={"chars": len(text), "provider": self._provider.name})
        return text
