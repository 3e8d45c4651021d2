"""Typed failures raised by the standup pipeline.

Every error carries a human readable message and the HTTP status the API
layer renders it with.
"""

from __future__ import annotations


class LabSyncError(Exception):
    status_code: int = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class InvalidRequest(LabSyncError):
    status_code = 400


# Recorder
class PermissionDenied(LabSyncError):
    status_code = 403


class CaptureUnavailable(LabSyncError):
    status_code = 503


# Providers
class InvalidAudio(LabSyncError):
    status_code = 400


class ProviderUnconfigured(LabSyncError):
    status_code = 503


class ProviderError(LabSyncError):
    status_code = 502


# Aggregate / archive
class NotFound(LabSyncError):
    status_code = 404


class AlreadyProcessed(LabSyncError):
    status_code = 409


class InvalidState(LabSyncError):
    status_code = 409


class Conflict(LabSyncError):
    status_code = 409


class AlreadyExists(LabSyncError):
    status_code = 409


# Dispatcher
class RateLimited(LabSyncError):
    status_code = 429


class DeliveryFailed(LabSyncError):
    status_code = 502
