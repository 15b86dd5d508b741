"""Media metadata via ffprobe."""
import json
import logging
import re
import subprocess
from pathlib import Path
from typing import Any, Optional

from app import config as app_config
from app.transcoding.errors import ProbeError
from app.transcoding.ffmpeg import diagnostic_summary
from app.transcoding.models import AudioStreamInfo, VideoMetadata, VideoStreamInfo

logger = logging.getLogger("compressor.probe")

_RATIO_RE = re.compile(r"^(\d+)(?:/(\d+))?$")


def parse_frame_rate(value: Any) -> float:
    """Reduce an engine rate like "30000/1001" to a decimal. Digits and one "/" only."""
    text = str(value).strip()
    m = _RATIO_RE.match(text)
    if not m:
        raise ValueError(f"Not a frame rate ratio: {text!r}")
    num = int(m.group(1))
    den = int(m.group(2)) if m.group(2) is not None else 1
    if den == 0:
        return 0.0
    return round(num / den, 3)


def _to_int(value: Any) -> int:
    if value in (None, "", "N/A"):
        return 0
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return 0


def _to_float(value: Any) -> float:
    if value in (None, "", "N/A"):
        return 0.0
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def _stream_fps(stream: dict) -> float:
    avg = stream.get("avg_frame_rate")
    fps = parse_frame_rate(avg) if avg else 0.0
    if not fps and stream.get("r_frame_rate"):
        fps = parse_frame_rate(stream["r_frame_rate"])
    return fps


def _first_stream(streams: list, codec_type: str) -> Optional[dict]:
    for s in streams:
        if isinstance(s, dict) and s.get("codec_type") == codec_type:
            return s
    return None


def parse_metadata(raw: dict) -> VideoMetadata:
    """Normalize ffprobe JSON (-show_format -show_streams) into VideoMetadata."""
    if not isinstance(raw, dict):
        raise ProbeError("Unrecognised probe output")
    fmt = raw.get("format")
    streams = raw.get("streams") or []
    if not isinstance(fmt, dict) or not isinstance(streams, list):
        raise ProbeError("Probe output has no format section")
    if not streams:
        raise ProbeError("File has no decodable streams")

    try:
        video = None
        vs = _first_stream(streams, "video")
        if vs is not None:
            video = VideoStreamInfo(
                codec=vs.get("codec_name") or "unknown",
                width=_to_int(vs.get("width")),
                height=_to_int(vs.get("height")),
                fps=_stream_fps(vs),
                bitrate=_to_int(vs.get("bit_rate")),
            )
    except ValueError as e:
        raise ProbeError("Unparsable frame rate in probe output", details=str(e))

    audio = None
    aus = _first_stream(streams, "audio")
    if aus is not None:
        audio = AudioStreamInfo(
            codec=aus.get("codec_name") or "unknown",
            channels=_to_int(aus.get("channels")),
            sample_rate=_to_int(aus.get("sample_rate")),
            bitrate=_to_int(aus.get("bit_rate")),
        )

    return VideoMetadata(
        format=fmt.get("format_name") or "unknown",
        duration=_to_float(fmt.get("duration")),
        size=_to_int(fmt.get("size")),
        bitrate=_to_int(fmt.get("bit_rate")),
        video=video,
        audio=audio,
    )


class MetadataProber:
    """Runs ffprobe against a scratch file; blocks until the engine exits."""

    def __init__(self, ffprobe_path: str = app_config.FFPROBE_PATH, timeout: float = app_config.PROBE_TIMEOUT):
        self.ffprobe_path = ffprobe_path
        self.timeout = timeout

    def build_command(self, path: Path) -> list[str]:
        return [
            self.ffprobe_path,
            "-v", "error",
            "-print_format", "json",
            "-show_format",
            "-show_streams",
            str(path),
        ]

    def probe(self, path: Path) -> VideoMetadata:
        path = Path(path)
        if not path.is_file():
            raise ProbeError(f"File not found: {path.name}")
        cmd = self.build_command(path)
        try:
            result = subprocess.run(cmd, capture_output=True, text=True, timeout=self.timeout)
        except FileNotFoundError:
            logger.error("ffprobe not found at %s", self.ffprobe_path)
            raise ProbeError("ffprobe not installed")
        except subprocess.TimeoutExpired:
            logger.error("ffprobe timed out after %ss on %s", self.timeout, path)
            raise ProbeError("Probe timed out")
        except OSError as e:
            logger.error("ffprobe could not start: %s", e)
            raise ProbeError("Probe could not start", details=str(e))

        if result.returncode != 0:
            logger.error("ffprobe failed for %s (exit %s): %s", path, result.returncode, result.stderr)
            raise ProbeError("Could not read video metadata", details=diagnostic_summary(result.stderr))
        try:
            raw = json.loads(result.stdout)
        except json.JSONDecodeError as e:
            logger.error("ffprobe returned invalid JSON for %s: %s", path, e)
            raise ProbeError("Could not read video metadata", details="unparsable probe output")
        meta = parse_metadata(raw)
        logger.info(
            "Probed %s: format=%s duration=%.2fs bitrate=%s fps=%s",
            path.name, meta.format, meta.duration, meta.bitrate, meta.fps,
        )
        return meta
