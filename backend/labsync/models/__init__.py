from __future__ import annotations

from labsync.models.lab import Lab
from labsync.models.standup import Standup, StandupStatus
from labsync.models.transcript_archive import TranscriptArchive
from labsync.models.email_log import EmailLog

__all__ = ["Lab", "Standup", "StandupStatus", "TranscriptArchive", "EmailLog"]
