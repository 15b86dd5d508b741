"""Transcode job orchestration: one engine process per job, run on a worker pool."""
import logging
import subprocess
import tempfile
import threading
import uuid
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Callable, Optional

from app import config as app_config
from app.transcoding.errors import TranscodeError
from app.transcoding.ffmpeg import build_transcode_command, diagnostic_summary, parse_progress_line
from app.transcoding.models import JobEvent, JobStatus, TranscodeJob, TranscodeRequest
from app.transcoding.scratch import ScratchFileManager

logger = logging.getLogger("compressor.service")

ProgressCallback = Callable[[str, float], None]


class TranscodeOrchestrator:
    """Builds engine invocations, runs them and reports each job's outcome through a future."""

    def __init__(
        self,
        scratch: ScratchFileManager,
        ffmpeg_path: str = app_config.FFMPEG_PATH,
        timeout: float = app_config.TRANSCODE_TIMEOUT,
        max_workers: int = app_config.MAX_WORKERS,
        video_codec: str = app_config.VIDEO_CODEC,
        audio_codec: str = app_config.AUDIO_CODEC,
        preset: str = app_config.ENCODE_PRESET,
    ):
        self.scratch = scratch
        self.ffmpeg_path = ffmpeg_path
        self.timeout = timeout
        self.video_codec = video_codec
        self.audio_codec = audio_codec
        self.preset = preset
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="transcode")
        logger.info("TranscodeOrchestrator initialized with max_workers=%s", max_workers)

    def build_command(self, job: TranscodeJob) -> list[str]:
        return build_transcode_command(
            job.input_path,
            job.output_path,
            job.request,
            ffmpeg_path=self.ffmpeg_path,
            video_codec=self.video_codec,
            audio_codec=self.audio_codec,
            preset=self.preset,
        )

    def submit(
        self,
        input_path: Path,
        request: TranscodeRequest,
        output_path: Optional[Path] = None,
        duration: Optional[float] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> TranscodeJob:
        """Schedule one engine run and return its job right away."""
        if output_path is None:
            output_path = self.scratch.allocate("output", f".{request.format}")
        job = TranscodeJob(str(uuid.uuid4()), Path(input_path), Path(output_path), request)
        job.command = self.build_command(job)
        job.future.set_running_or_notify_cancel()
        self._executor.submit(self._run, job, duration, on_progress)
        return job

    def run(self, input_path: Path, request: TranscodeRequest, **kwargs) -> Path:
        return self.submit(input_path, request, **kwargs).result()

    def _emit(self, job: TranscodeJob, event: JobEvent) -> None:
        job.events.put(event)

    def _fail(self, job: TranscodeJob, message: str, diagnostics: str = "") -> None:
        job.status = JobStatus.FAILED
        job.error = message
        self.scratch.remove(job.output_path)
        details = diagnostic_summary(diagnostics) if diagnostics else None
        self._emit(job, JobEvent("error", error=message))
        job.future.set_exception(TranscodeError(message, details=details))

    def _run(self, job: TranscodeJob, duration: Optional[float], on_progress: Optional[ProgressCallback]) -> None:
        try:
            self._execute(job, duration, on_progress)
        except Exception as e:
            logger.exception("Transcode job %s crashed: %s", job.job_id, e)
            if not job.future.done():
                self._fail(job, "Transcoding failed", str(e))

    def _execute(self, job: TranscodeJob, duration: Optional[float], on_progress: Optional[ProgressCallback]) -> None:
        with tempfile.TemporaryFile() as stderr_file:
            try:
                process = subprocess.Popen(
                    job.command,
                    stdin=subprocess.DEVNULL,
                    stdout=subprocess.PIPE,
                    stderr=stderr_file,
                    text=True,
                )
            except FileNotFoundError:
                logger.error("ffmpeg not found. Install ffmpeg for video transcoding.")
                self._fail(job, "ffmpeg not installed")
                return
            except OSError as e:
                logger.error("Could not start ffmpeg for job %s: %s", job.job_id, e)
                self._fail(job, "Could not start transcoder", str(e))
                return

            job.status = JobStatus.RUNNING
            logger.info("Transcode started [%s]: %s", job.job_id[:8], " ".join(job.command))
            self._emit(job, JobEvent("start", command=list(job.command)))

            timed_out = threading.Event()
            timer = None
            if self.timeout and self.timeout > 0:
                def _kill():
                    if process.poll() is None:
                        timed_out.set()
                        process.kill()
                timer = threading.Timer(self.timeout, _kill)
                timer.daemon = True
                timer.start()
            try:
                for line in process.stdout:
                    percent = parse_progress_line(line, duration)
                    if percent is None:
                        continue
                    job.progress = percent
                    self._emit(job, JobEvent("progress", percent=percent))
                    if on_progress:
                        try:
                            on_progress(job.job_id, percent)
                        except Exception as e:
                            logger.warning("Progress callback failed for job %s: %s", job.job_id, e)
                returncode = process.wait()
            finally:
                if timer is not None:
                    timer.cancel()
                if process.poll() is None:
                    process.kill()
                    process.wait()
                process.stdout.close()

            stderr_file.seek(0)
            stderr = stderr_file.read().decode("utf-8", errors="replace")

        if timed_out.is_set() and returncode != 0:
            logger.error("Transcode job %s timed out after %ss", job.job_id, self.timeout)
            self._fail(job, "Transcoding timed out", f"no result after {self.timeout:g}s")
            return
        if returncode != 0:
            logger.error("Transcode job %s failed (exit %s): %s", job.job_id, returncode, stderr)
            self._fail(job, "Error occurred during compression", stderr)
            return
        if not job.output_path.is_file():
            logger.error("Transcode job %s exited 0 but wrote no output", job.job_id)
            self._fail(job, "Transcoder produced no output")
            return

        job.status = JobStatus.SUCCEEDED
        job.progress = 100.0
        self._emit(job, JobEvent("end", percent=100.0))
        logger.info("Transcode finished [%s] -> %s (%s bytes)", job.job_id[:8], job.output_path.name, job.output_path.stat().st_size)
        job.future.set_result(job.output_path)

    def shutdown(self) -> None:
        self._executor.shutdown(wait=True)
