"""Error taxonomy for compression requests, each mapped to an HTTP status."""
from typing import Optional


class CompressorError(Exception):
    """Base error. Carries the client-facing message and an optional detail line."""

    status_code = 500

    def __init__(self, message: str, details: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict:
        out = {"error": self.message}
        if self.details:
            out["details"] = self.details
        return out


class UploadMissing(CompressorError):
    status_code = 400

    def __init__(self, message: str = "No file uploaded."):
        super().__init__(message)


class InvalidParameters(CompressorError):
    status_code = 400


class UploadTooLarge(CompressorError):
    status_code = 413


class ScratchIOError(CompressorError):
    """Scratch file could not be written or read."""


class ProbeError(CompressorError):
    """Engine probe failed or produced output we cannot use."""


class TranscodeError(CompressorError):
    """Engine transcode failed: non-zero exit, spawn failure or timeout."""


class SendError(CompressorError):
    """Output bytes could not be delivered to the client."""
