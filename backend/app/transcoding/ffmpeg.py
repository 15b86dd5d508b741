"""FFmpeg command building and output parsing."""
import logging
import subprocess
from pathlib import Path
from typing import Optional

from app import config as app_config
from app.transcoding.errors import TranscodeError
from app.transcoding.models import TranscodeRequest

logger = logging.getLogger("compressor.ffmpeg")

_PROGRESS_KEYS = ("out_time_us", "out_time_ms")
_FLAG_CHARS = set("DEd.")
MAX_DETAIL_LENGTH = 300


def build_transcode_command(
    input_path: Path,
    output_path: Path,
    request: TranscodeRequest,
    ffmpeg_path: str = app_config.FFMPEG_PATH,
    video_codec: str = app_config.VIDEO_CODEC,
    audio_codec: str = app_config.AUDIO_CODEC,
    preset: str = app_config.ENCODE_PRESET,
) -> list[str]:
    """Build the engine argument list. Same inputs always give the same list."""
    cmd = [
        ffmpeg_path, "-hide_banner", "-y",
        "-i", str(input_path),
        "-c:v", video_codec,
        "-preset", preset,
        "-c:a", audio_codec,
    ]
    if request.fps is not None:
        cmd.extend(["-r", str(request.fps)])
    if request.bitrate:
        cmd.extend(["-b:v", request.bitrate])
    if request.has_resolution:
        cmd.extend(["-vf", f"scale={request.width}:{request.height}"])
    if request.format in app_config.STREAMABLE_FORMATS:
        cmd.extend(["-movflags", "frag_keyframe+empty_moov"])
    cmd.extend([
        "-f", request.muxer,
        "-progress", "pipe:1", "-nostats",
        str(output_path),
    ])
    return cmd


def parse_progress_line(line: str, duration: Optional[float] = None) -> Optional[float]:
    """
    Turn one `-progress` line into a percentage.
    Returns None for lines that carry no output time. Unknown duration or a
    non-numeric value yields 0.0.
    """
    key, sep, value = line.strip().partition("=")
    if not sep or key not in _PROGRESS_KEYS:
        return None
    if not duration or duration <= 0:
        return 0.0
    try:
        # Both keys are microseconds in current ffmpeg releases
        elapsed = int(value.strip()) / 1_000_000
    except ValueError:
        return 0.0
    return max(0.0, min(100.0, elapsed / duration * 100.0))


def diagnostic_summary(stderr: str) -> str:
    """Last non-empty engine line, short enough to hand to a client."""
    lines = [ln.strip() for ln in (stderr or "").splitlines() if ln.strip()]
    if not lines:
        return "engine exited without diagnostics"
    last = lines[-1]
    if len(last) > MAX_DETAIL_LENGTH:
        last = last[:MAX_DETAIL_LENGTH] + "..."
    return last


def parse_muxers(output: str) -> tuple[str, ...]:
    """Parse `ffmpeg -formats` output into muxer names (entries flagged E)."""
    names = set()
    in_table = False
    for line in output.splitlines():
        if line.strip() == "--":
            in_table = True
            continue
        tokens = line.split()
        if not in_table or len(tokens) < 2:
            continue
        flags = tokens[0]
        if not set(flags) <= _FLAG_CHARS or "E" not in flags:
            continue
        for name in tokens[1].split(","):
            if name:
                names.add(name)
    return tuple(sorted(names))


def list_muxers(ffmpeg_path: str = app_config.FFMPEG_PATH, timeout: float = app_config.PROBE_TIMEOUT) -> tuple[str, ...]:
    cmd = [ffmpeg_path, "-hide_banner", "-formats"]
    try:
        result = subprocess.run(cmd, capture_output=True, text=True, timeout=timeout)
    except FileNotFoundError:
        raise TranscodeError("ffmpeg not installed")
    except (OSError, subprocess.TimeoutExpired) as e:
        raise TranscodeError("Could not query engine formats", details=str(e))
    if result.returncode != 0:
        logger.error("ffmpeg -formats failed (%s): %s", result.returncode, result.stderr)
        raise TranscodeError("Could not query engine formats", details=diagnostic_summary(result.stderr))
    return parse_muxers(result.stdout)
