"""API routes for probing and compressing uploaded videos."""
import asyncio
import logging
from pathlib import Path
from typing import Optional

from fastapi import APIRouter, File, Form, Request, UploadFile

from app import config as app_config
from app.transcoding.errors import CompressorError, ScratchIOError, UploadMissing, UploadTooLarge
from app.transcoding.models import TranscodeRequest, UploadedVideo
from app.transcoding.probe import MetadataProber
from app.transcoding.responses import (
    basic_details_payload,
    comparison_payload,
    details_payload,
    error_response,
    file_response,
    json_response,
    video_reference,
)
from app.transcoding.scratch import ScratchFileManager, ScratchSession
from app.transcoding.service import TranscodeOrchestrator

logger = logging.getLogger("compressor.api")
router = APIRouter(prefix="/api", tags=["compressor"])


def _scratch(request: Request) -> ScratchFileManager:
    return request.app.state.scratch


def _prober(request: Request) -> MetadataProber:
    return request.app.state.prober


def _orchestrator(request: Request) -> TranscodeOrchestrator:
    return request.app.state.orchestrator


async def _read_upload(video: Optional[UploadFile]) -> UploadedVideo:
    """Read the multipart file into memory, enforcing the size limit."""
    if video is None or not video.filename:
        raise UploadMissing()
    max_bytes = app_config.MAX_VIDEO_SIZE_BYTES
    buf = bytearray()
    while chunk := await video.read(1024 * 1024):
        buf.extend(chunk)
        if len(buf) > max_bytes:
            raise UploadTooLarge(f"File too large (max {app_config.MAX_VIDEO_SIZE_MB} MB)")
    if not buf:
        raise UploadMissing("Uploaded file is empty.")
    return UploadedVideo(bytes(buf), video.filename, video.content_type or "application/octet-stream")


async def _write_input(session: ScratchSession, upload: UploadedVideo) -> Path:
    return await asyncio.to_thread(session.write, "input", upload.data, upload.suffix)


def _unexpected(action: str, e: Exception) -> CompressorError:
    logger.exception("%s failed: %s", action, e)
    return CompressorError(f"{action} failed")


@router.get("/health")
def health():
    return {"status": "ok"}


@router.get("/limits")
def get_limits():
    """Return upload limits for the client."""
    return {
        "max_video_size_mb": app_config.MAX_VIDEO_SIZE_MB,
        "max_video_size_bytes": app_config.MAX_VIDEO_SIZE_BYTES,
    }


@router.get("/formats")
def get_formats(request: Request):
    """Container formats the engine can write, captured at startup."""
    return {"formats": list(request.app.state.formats)}


async def _probe_upload(request: Request, video: Optional[UploadFile], basic: bool):
    upload = await _read_upload(video)
    session = _scratch(request).session()
    response = None
    try:
        input_path = await _write_input(session, upload)
        meta = await asyncio.to_thread(_prober(request).probe, input_path)
        payload = basic_details_payload(meta) if basic else details_payload(meta)
        response = json_response(payload, on_complete=session.close)
    except CompressorError as e:
        logger.warning("Details request for %s failed: %s", upload.filename, e.message)
        response = error_response(e, on_complete=session.close)
    except Exception as e:
        response = error_response(_unexpected("Probe", e), on_complete=session.close)
    finally:
        # Cancelled before any response took over the scratch files
        if response is None:
            session.close()
    return response


@router.post("/details")
async def video_details(request: Request, video: Optional[UploadFile] = File(None)):
    """Probe an uploaded video and return its container and stream metadata."""
    return await _probe_upload(request, video, basic=False)


@router.post("/details/basic")
async def video_details_basic(request: Request, video: Optional[UploadFile] = File(None)):
    """Probe an uploaded video and return only bitrate and frame rate."""
    return await _probe_upload(request, video, basic=True)


async def _transcode_upload(
    request: Request,
    session: ScratchSession,
    upload: UploadedVideo,
    params: TranscodeRequest,
    probe_first: bool,
):
    """Write input, optionally probe it, transcode. Returns (input_meta, finished_job)."""
    input_path = await _write_input(session, upload)
    before = None
    if probe_first:
        before = await asyncio.to_thread(_prober(request).probe, input_path)
    output_path = session.allocate("output", f".{params.format}")
    job = _orchestrator(request).submit(
        input_path,
        params,
        output_path=output_path,
        duration=before.duration if before else None,
    )
    logger.info("Compressing %s (job %s, fps=%s bitrate=%s size=%sx%s format=%s)",
                upload.filename, job.job_id[:8], params.fps, params.bitrate,
                params.width, params.height, params.format)
    await asyncio.wrap_future(job.future)
    return before, job


@router.post("/compress")
async def compress_video(
    request: Request,
    video: Optional[UploadFile] = File(None),
    fps: Optional[str] = Form(None),
    bitrate: Optional[str] = Form(None),
    width: Optional[str] = Form(None),
    height: Optional[str] = Form(None),
    format: Optional[str] = Form(None),
):
    """Transcode an uploaded video and return the encoded bytes as an attachment."""
    upload = await _read_upload(video)
    params = TranscodeRequest.from_form(fps, bitrate, width, height, format)
    session = _scratch(request).session()
    response = None
    try:
        _, job = await _transcode_upload(request, session, upload, params, probe_first=False)
        try:
            response = file_response(job, upload.filename, on_complete=session.close)
        except OSError as e:
            raise ScratchIOError(f"Could not read output file: {e.strerror or e}")
    except CompressorError as e:
        logger.warning("Compress request for %s failed: %s", upload.filename, e.message)
        response = error_response(e, on_complete=session.close)
    except Exception as e:
        response = error_response(_unexpected("Compression", e), on_complete=session.close)
    finally:
        if response is None:
            session.close()
    return response


@router.post("/compress/compare")
async def compress_video_compare(
    request: Request,
    video: Optional[UploadFile] = File(None),
    fps: Optional[str] = Form(None),
    bitrate: Optional[str] = Form(None),
    width: Optional[str] = Form(None),
    height: Optional[str] = Form(None),
    format: Optional[str] = Form(None),
):
    """Transcode an uploaded video and return before/after bitrate and frame rate."""
    upload = await _read_upload(video)
    params = TranscodeRequest.from_form(fps, bitrate, width, height, format)
    session = _scratch(request).session()
    response = None
    try:
        before, job = await _transcode_upload(request, session, upload, params, probe_first=True)
        after = await asyncio.to_thread(_prober(request).probe, job.output_path)
        try:
            ref = video_reference(job.output_path, params, upload.filename)
        except OSError as e:
            raise ScratchIOError(f"Could not read output file: {e.strerror or e}")
        response = json_response(comparison_payload(before, after, ref), on_complete=session.close)
    except CompressorError as e:
        logger.warning("Compare request for %s failed: %s", upload.filename, e.message)
        response = error_response(e, on_complete=session.close)
    except Exception as e:
        response = error_response(_unexpected("Compression", e), on_complete=session.close)
    finally:
        if response is None:
            session.close()
    return response
