"""Scratch file allocation, writing and removal."""
import logging
import threading
import time
import uuid
from pathlib import Path
from typing import Optional

from app import config as app_config
from app.transcoding.errors import ScratchIOError

logger = logging.getLogger("compressor.scratch")


class ScratchFileManager:
    """Hands out unique scratch paths and removes them without ever raising."""

    def __init__(
        self,
        base_dir: Optional[Path] = None,
        attempts: int = app_config.REMOVE_ATTEMPTS,
        backoff: float = app_config.REMOVE_BACKOFF_SECONDS,
    ):
        self.base_dir = Path(base_dir or app_config.SCRATCH_DIR)
        self.base_dir.mkdir(parents=True, exist_ok=True)
        self.attempts = max(1, attempts)
        self.backoff = backoff

    def allocate(self, prefix: str, suffix: str = "") -> Path:
        return self.base_dir / f"{prefix}_{uuid.uuid4().hex}{suffix}"

    def write(self, path: Path, data: bytes) -> Path:
        try:
            with open(path, "wb") as f:
                f.write(data)
        except OSError as e:
            logger.error("Scratch write failed for %s: %s", path, e)
            self.remove(path)
            raise ScratchIOError(f"Could not write scratch file: {e.strerror or e}")
        return path

    def remove(self, path: Path) -> bool:
        """Delete path. Missing files count as removed. Returns False after giving up."""
        path = Path(path)
        for attempt in range(1, self.attempts + 1):
            try:
                path.unlink(missing_ok=True)
                return True
            except (OSError, ValueError) as e:
                if attempt == self.attempts or isinstance(e, ValueError):
                    logger.error("Giving up removing %s after %s attempts: %s", path, attempt, e)
                    return False
                wait_time = self.backoff * (2 ** (attempt - 1))
                logger.warning("Could not remove %s (attempt %s): %s; retrying in %.2fs", path, attempt, e, wait_time)
                time.sleep(wait_time)
        return False

    def session(self) -> "ScratchSession":
        return ScratchSession(self)


class ScratchSession:
    """Tracks the scratch files of one request and removes them exactly once."""

    def __init__(self, manager: ScratchFileManager):
        self.manager = manager
        self._paths: list[Path] = []
        self._lock = threading.Lock()
        self._closed = False

    @property
    def paths(self) -> list[Path]:
        with self._lock:
            return list(self._paths)

    @property
    def closed(self) -> bool:
        return self._closed

    def track(self, path: Path) -> Path:
        with self._lock:
            if self._closed:
                raise RuntimeError("Scratch session already closed")
            self._paths.append(Path(path))
        return path

    def allocate(self, prefix: str, suffix: str = "") -> Path:
        return self.track(self.manager.allocate(prefix, suffix))

    def write(self, prefix: str, data: bytes, suffix: str = "") -> Path:
        path = self.allocate(prefix, suffix)
        return self.manager.write(path, data)

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
            paths, self._paths = self._paths, []
        for path in paths:
            self.manager.remove(path)
        if paths:
            logger.debug("Removed %s scratch file(s)", len(paths))

    def __enter__(self) -> "ScratchSession":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
