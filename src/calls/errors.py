"""Domain-specific exceptions for the call recorder.

These exceptions are safe to import from API layers without pulling in the
websocket or AMQP clients.
"""

from __future__ import annotations


class RecorderError(Exception):
    status_code: int = 500
    default_detail: str = "Recorder error"

    def __init__(self, detail: str | None = None) -> None:
        super().__init__(detail or self.default_detail)
        self.detail = detail or self.default_detail


class SinkClosedError(RecorderError, OSError):
    default_detail = "Audio sink is not open."


class DuplicateStreamError(RecorderError):
    status_code = 409
    default_detail = "A session is already registered for this stream."


class RealtimeLinkError(RecorderError):
    status_code = 503
    default_detail = "Realtime link unavailable."


class MixFailedError(RecorderError):
    status_code = 503
    default_detail = "Audio mixing failed."


class TranscriptionFailedError(RecorderError):
    status_code = 503
    default_detail = "Transcription failed."


class OutboundCallError(RecorderError):
    status_code = 502
    default_detail = "Outbound call could not be created."
