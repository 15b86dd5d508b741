from .errors import CompressorError, ProbeError, TranscodeError
from .models import JobStatus, TranscodeJob, TranscodeRequest, VideoMetadata
from .probe import MetadataProber
from .scratch import ScratchFileManager
from .service import TranscodeOrchestrator

__all__ = [
    "CompressorError",
    "JobStatus",
    "MetadataProber",
    "ProbeError",
    "ScratchFileManager",
    "TranscodeError",
    "TranscodeJob",
    "TranscodeOrchestrator",
    "TranscodeRequest",
    "VideoMetadata",
]
