"""Build HTTP responses for probe, compress and error outcomes."""
import logging
from pathlib import Path
from typing import Callable, Iterator, Optional

from fastapi.responses import JSONResponse, StreamingResponse
from starlette.background import BackgroundTask

from app import config as app_config
from app.transcoding.errors import CompressorError, ScratchIOError, SendError
from app.transcoding.models import TranscodeJob, TranscodeRequest, VideoMetadata

logger = logging.getLogger("compressor.responses")

Cleanup = Callable[[], None]


def details_payload(meta: VideoMetadata) -> dict:
    return meta.to_dict()


def basic_details_payload(meta: VideoMetadata) -> dict:
    """Narrow legacy shape: bitrate and frame rate only."""
    return {"bitrate": meta.bitrate, "fps": meta.fps}


def attachment_filename(original: str) -> str:
    name = Path((original or "").replace("\\", "/")).name
    name = "".join(c for c in name if c not in '"\r\n;').strip() or "video"
    return f"compressed_{name}"


def video_reference(path: Path, request: TranscodeRequest, original_name: str) -> dict:
    """Describe the encoded output without embedding its bytes."""
    return {
        "filename": attachment_filename(original_name),
        "content_type": request.content_type,
        "size": path.stat().st_size,
    }


def comparison_payload(before: VideoMetadata, after: VideoMetadata, video_ref: dict) -> dict:
    return {
        "prev_bitrate": before.bitrate,
        "prev_fps": before.fps,
        "recent_bitrate": after.bitrate,
        "recent_fps": after.fps,
        "video": video_ref,
    }


def _background(on_complete: Optional[Cleanup]) -> Optional[BackgroundTask]:
    return BackgroundTask(on_complete) if on_complete else None


def json_response(payload: dict, on_complete: Optional[Cleanup] = None, status_code: int = 200) -> JSONResponse:
    return JSONResponse(payload, status_code=status_code, background=_background(on_complete))


def error_response(exc: CompressorError, on_complete: Optional[Cleanup] = None) -> JSONResponse:
    payload = exc.to_dict()
    if not app_config.EXPOSE_ERROR_DETAILS:
        payload.pop("details", None)
    return JSONResponse(payload, status_code=exc.status_code, background=_background(on_complete))


def _send_chunks(job: TranscodeJob, chunk_size: int, on_complete: Optional[Cleanup]) -> Iterator[bytes]:
    try:
        yield from job.iter_chunks(chunk_size)
    except ScratchIOError as e:
        logger.error("Send failed for job %s: %s", job.job_id, e.message)
        raise SendError("Could not send compressed video", details=e.message) from e
    finally:
        # Runs after the last chunk was handed over, or when the client goes away
        if on_complete:
            on_complete()


def file_response(
    job: TranscodeJob,
    original_name: str,
    on_complete: Optional[Cleanup] = None,
    chunk_size: int = app_config.STREAM_CHUNK_SIZE,
) -> StreamingResponse:
    """Stream a finished job's output as an attachment; cleanup runs once the body is sent."""
    size = job.result().stat().st_size
    headers = {
        "Content-Length": str(size),
        "Content-Disposition": f'attachment; filename="{attachment_filename(original_name)}"',
    }
    return StreamingResponse(
        _send_chunks(job, chunk_size, on_complete),
        media_type=job.request.content_type,
        headers=headers,
        background=_background(on_complete),
    )
