import os
import stat
import sys
from pathlib import Path
from types import SimpleNamespace

import pytest

# Ensure backend/ is on sys.path so the 'app' package is importable
ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), '..'))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

from app import config as app_config

FAKE_FFMPEG = r"""#!/bin/sh
if [ -n "$FAKE_ENGINE_LOG" ]; then echo "ffmpeg $*" >> "$FAKE_ENGINE_LOG"; fi
case " $* " in
  *" -formats "*)
    cat <<'EOF'
File formats:
 D. = Demuxing supported
 .E = Muxing supported
 --
 D  3dostr          3DO STR
  E 3g2             3GP2 (3GP2 format)
 DE matroska,webm   Matroska / WebM
  E mp4             MP4 (MPEG-4 Part 14)
 DE mov             QuickTime / MOV
EOF
    exit 0;;
esac
input=""; prev=""; out=""
for arg in "$@"; do
  if [ "$prev" = "-i" ]; then input="$arg"; fi
  prev="$arg"; out="$arg"
done
if grep -q FAIL "$input"; then
  echo "frame=    0 fps=0.0 q=0.0" >&2
  echo "$input: Invalid data found when processing input" >&2
  exit 1
fi
if grep -q SLOW "$input"; then exec sleep 5; fi
echo "out_time_us=N/A"
echo "progress=continue"
echo "out_time_us=5000000"
echo "progress=continue"
echo "out_time_ms=10000000"
echo "progress=end"
printf 'transcoded:' > "$out"
cat "$input" >> "$out"
exit 0
"""

FAKE_FFPROBE = r"""#!/bin/sh
if [ -n "$FAKE_ENGINE_LOG" ]; then echo "ffprobe $*" >> "$FAKE_ENGINE_LOG"; fi
for arg in "$@"; do last="$arg"; done
if [ ! -f "$last" ]; then
  echo "$last: No such file or directory" >&2
  exit 1
fi
if grep -q BROKEN "$last"; then
  echo "$last: Invalid data found when processing input" >&2
  exit 1
fi
if grep -q GARBLED "$last"; then
  echo "{this is not json"
  exit 0
fi
if grep -q transcoded "$last"; then
  cat <<'EOF'
{"format": {"format_name": "mov,mp4,m4a,3gp,3g2,mj2", "duration": "10.000000", "size": "1000000", "bit_rate": "800000"},
 "streams": [
  {"codec_type": "video", "codec_name": "h264", "width": 1280, "height": 720, "avg_frame_rate": "30/1", "r_frame_rate": "30/1", "bit_rate": "700000"},
  {"codec_type": "audio", "codec_name": "aac", "channels": 2, "sample_rate": "48000", "bit_rate": "96000"}
 ]}
EOF
  exit 0
fi
cat <<'EOF'
{"format": {"format_name": "mov,mp4,m4a,3gp,3g2,mj2", "duration": "10.010000", "size": "2000000", "bit_rate": "1600000"},
 "streams": [
  {"codec_type": "video", "codec_name": "h264", "width": 1920, "height": 1080, "avg_frame_rate": "30000/1001", "r_frame_rate": "30000/1001", "bit_rate": "1500000"},
  {"codec_type": "audio", "codec_name": "aac", "channels": 2, "sample_rate": "48000", "bit_rate": "128000"}
 ]}
EOF
"""

posix_only = pytest.mark.skipif(sys.platform == "win32", reason="fake engines are POSIX shell scripts")


def _write_script(path: Path, body: str) -> Path:
    path.write_text(body)
    path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return path


@pytest.fixture
def fake_engine(tmp_path, monkeypatch):
    """Stand-in ffmpeg/ffprobe that log their invocations to a file."""
    bin_dir = tmp_path / "bin"
    bin_dir.mkdir()
    log = tmp_path / "engine.log"
    monkeypatch.setenv("FAKE_ENGINE_LOG", str(log))
    engine = SimpleNamespace(
        ffmpeg=str(_write_script(bin_dir / "ffmpeg", FAKE_FFMPEG)),
        ffprobe=str(_write_script(bin_dir / "ffprobe", FAKE_FFPROBE)),
        log=log,
    )

    def calls(name: str) -> list[str]:
        if not log.exists():
            return []
        return [ln for ln in log.read_text().splitlines() if ln.startswith(name + " ")]

    engine.calls = calls
    return engine


@pytest.fixture
def scratch_dir(tmp_path):
    d = tmp_path / "scratch"
    d.mkdir()
    return d


@pytest.fixture
def client(fake_engine, scratch_dir, monkeypatch):
    from fastapi.testclient import TestClient

    from app.main import app

    monkeypatch.setattr(app_config, "FFMPEG_PATH", fake_engine.ffmpeg)
    monkeypatch.setattr(app_config, "FFPROBE_PATH", fake_engine.ffprobe)
    monkeypatch.setattr(app_config, "SCRATCH_DIR", scratch_dir)
    monkeypatch.setattr(app_config, "MAX_WORKERS", 2)
    monkeypatch.setattr(app_config, "REMOVE_BACKOFF_SECONDS", 0.0)
    with TestClient(app) as c:
        yield c
