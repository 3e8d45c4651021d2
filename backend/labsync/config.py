from __future__ import annotations

from pathlib import Path
from typing import List, Literal, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict
import os


def _home() -> Path:
    return Path(os.getenv("LABSYNC_HOME", str(Path.home() / ".labsync")))


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="LABSYNC_", case_sensitive=False)

    app_name: str = "LabSync Standups"

    home_dir: Path = Field(default_factory=_home)
    data_dir: Path = Field(default_factory=lambda: _home() / "data")
    audio_dir: Path = Field(default_factory=lambda: _home() / "audio")
    models_dir: Path = Field(default_factory=lambda: _home() / "models")
    logs_dir: Path = Field(default_factory=lambda: _home() / "logs")

    database_path: Path = Field(default_factory=lambda: _home() / "data" / "labsync.db")

    # Transcript retention
    transcript_retention_days: int = 30
    expiring_soon_days: int = 7

    # Background cleanup
    cleanup_enabled: bool = True
    cleanup_schedule: str = "0 2 * * *"  # crontab, UTC
    cleanup_interval_seconds: Optional[float] = None  # overrides the crontab when set
    cleanup_run_on_start: bool = True

    # Upload limits
    max_audio_bytes: int = 50 * 1024 * 1024
    allowed_audio_types: List[str] = Field(
        default_factory=lambda: [
            "audio/webm",
            "audio/mp4",
            "audio/mpeg",
            "audio/wav",
            "audio/ogg",
            "audio/x-m4a",
        ]
    )

    # Providers
    stt_provider: Literal["openai", "whisper"] = "openai"
    llm_provider: Literal["openai", "llama"] = "openai"
    openai_api_key: Optional[str] = None
    openai_transcription_model: str = "whisper-1"
    openai_analysis_model: str = "gpt-4o"
    whisper_model_id: Optional[str] = None  # e.g. "small", "large-v3"
    whisper_device: Literal["auto", "cpu", "cuda"] = "auto"
    llm_model_path: Optional[str] = None  # local .gguf file

    # Outbound email
    email_provider: Literal["resend", "smtp"] = "resend"
    resend_api_key: Optional[str] = None
    smtp_host: Optional[str] = None
    smtp_port: int = 587
    smtp_username: Optional[str] = None
    smtp_password: Optional[str] = None
    smtp_use_tls: bool = True
    email_from: str = "meetings@labsync.com"
    app_url: str = "https://labsync.com"
    email_resend_window_hours: float = 1.0

    def ensure_dirs(self) -> None:
        for d in [self.home_dir, self.data_dir, self.audio_dir, self.models_dir, self.logs_dir]:
            d.mkdir(parents=True, exist_ok=True)
