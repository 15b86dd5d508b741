"""Upload, request, metadata and job models."""
import queue
import re
from concurrent.futures import Future
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Iterator, Optional

from app import config as app_config
from app.transcoding.errors import InvalidParameters, ScratchIOError

_BITRATE_RE = re.compile(r"^\d+(\.\d+)?[kKmM]?$")
_SUFFIX_RE = re.compile(r"\.[a-z0-9]{1,8}")
DEFAULT_SUFFIX = ".mp4"
MAX_FPS = 240
MAX_DIMENSION = 8192


class JobStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass(frozen=True)
class UploadedVideo:
    data: bytes
    filename: str
    content_type: str = "application/octet-stream"

    @property
    def suffix(self) -> str:
        """Extension for the scratch copy; anything unusual becomes .mp4."""
        suffix = Path(self.filename).suffix.lower()
        return suffix if _SUFFIX_RE.fullmatch(suffix) else DEFAULT_SUFFIX

    @property
    def size(self) -> int:
        return len(self.data)


def _parse_optional_int(name: str, value: Optional[str]) -> Optional[int]:
    if value is None:
        return None
    value = str(value).strip()
    if not value:
        return None
    try:
        return int(value)
    except ValueError:
        raise InvalidParameters(f"{name} must be an integer, got {value!r}")


@dataclass(frozen=True)
class TranscodeRequest:
    """Validated transcode parameters. Width and height come as a pair or not at all."""

    fps: Optional[int] = None
    bitrate: Optional[str] = None
    width: Optional[int] = None
    height: Optional[int] = None
    format: str = app_config.DEFAULT_FORMAT

    def __post_init__(self):
        if self.fps is not None and (isinstance(self.fps, bool) or not isinstance(self.fps, int) or not 1 <= self.fps <= MAX_FPS):
            raise InvalidParameters(f"fps must be an integer between 1 and {MAX_FPS}")
        if self.bitrate is not None and not _BITRATE_RE.match(self.bitrate):
            raise InvalidParameters(f"bitrate must look like '1000k', got {self.bitrate!r}")
        if (self.width is None) != (self.height is None):
            raise InvalidParameters("width and height must be supplied together")
        for name, dim in (("width", self.width), ("height", self.height)):
            if dim is not None and not 1 <= dim <= MAX_DIMENSION:
                raise InvalidParameters(f"{name} must be between 1 and {MAX_DIMENSION}")
        if self.format not in app_config.VIDEO_OUTPUT_FORMATS:
            supported = ", ".join(sorted(app_config.VIDEO_OUTPUT_FORMATS))
            raise InvalidParameters(f"Unsupported format: {self.format}. Use one of {supported}")

    @classmethod
    def from_form(
        cls,
        fps: Optional[str] = None,
        bitrate: Optional[str] = None,
        width: Optional[str] = None,
        height: Optional[str] = None,
        format: Optional[str] = None,
    ) -> "TranscodeRequest":
        """Build from raw form fields; blank fields fall back to defaults."""
        parsed_fps = _parse_optional_int("fps", fps)
        bitrate = (bitrate or "").strip() or None
        fmt = (format or "").strip().lower().lstrip(".") or app_config.DEFAULT_FORMAT
        return cls(
            fps=parsed_fps,
            bitrate=bitrate,
            width=_parse_optional_int("width", width),
            height=_parse_optional_int("height", height),
            format=fmt,
        )

    @property
    def muxer(self) -> str:
        return app_config.VIDEO_OUTPUT_FORMATS[self.format]

    @property
    def content_type(self) -> str:
        return f"video/{self.format}"

    @property
    def has_resolution(self) -> bool:
        return self.width is not None and self.height is not None


@dataclass(frozen=True)
class VideoStreamInfo:
    codec: str
    width: int
    height: int
    fps: float
    bitrate: int

    def to_dict(self) -> dict:
        return {
            "codec": self.codec,
            "width": self.width,
            "height": self.height,
            "fps": self.fps,
            "bitrate": self.bitrate,
        }


@dataclass(frozen=True)
class AudioStreamInfo:
    codec: str
    channels: int
    sample_rate: int
    bitrate: int

    def to_dict(self) -> dict:
        return {
            "codec": self.codec,
            "channels": self.channels,
            "sample_rate": self.sample_rate,
            "bitrate": self.bitrate,
        }


@dataclass(frozen=True)
class VideoMetadata:
    format: str
    duration: float
    size: int
    bitrate: int
    video: Optional[VideoStreamInfo] = None
    audio: Optional[AudioStreamInfo] = None

    @property
    def fps(self) -> float:
        return self.video.fps if self.video else 0.0

    def to_dict(self) -> dict:
        return {
            "format": self.format,
            "duration": self.duration,
            "size": self.size,
            "bitrate": self.bitrate,
            "video": self.video.to_dict() if self.video else None,
            "audio": self.audio.to_dict() if self.audio else None,
        }


@dataclass(frozen=True)
class JobEvent:
    kind: str  # "start" | "progress" | "end" | "error"
    command: Optional[list] = None
    percent: float = 0.0
    error: Optional[str] = None


class TranscodeJob:
    """In-memory state for one engine run. Lives only for one request."""

    def __init__(self, job_id: str, input_path: Path, output_path: Path, request: TranscodeRequest):
        self.job_id = job_id
        self.input_path = input_path
        self.output_path = output_path
        self.request = request
        self.status = JobStatus.PENDING
        self.progress: float = 0.0
        self.command: list[str] = []
        self.error: Optional[str] = None
        self.events: "queue.Queue[JobEvent]" = queue.Queue()
        self.future: "Future[Path]" = Future()

    @property
    def done(self) -> bool:
        return self.status in (JobStatus.SUCCEEDED, JobStatus.FAILED)

    def result(self, timeout: Optional[float] = None) -> Path:
        """Block until the job is terminal; raises TranscodeError on failure."""
        return self.future.result(timeout=timeout)

    def drain_events(self) -> list[JobEvent]:
        events = []
        while True:
            try:
                events.append(self.events.get_nowait())
            except queue.Empty:
                return events

    def iter_chunks(self, chunk_size: int = 1024 * 1024) -> Iterator[bytes]:
        """Lazily read the finished output file."""
        path = self.result()
        try:
            with open(path, "rb") as f:
                while chunk := f.read(chunk_size):
                    yield chunk
        except OSError as e:
            raise ScratchIOError(f"Could not read output file: {e.strerror or e}") from e
