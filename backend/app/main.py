"""FastAPI application entry point."""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from app import config as app_config
from app.api.routes import router
from app.transcoding.errors import CompressorError
from app.transcoding.ffmpeg import list_muxers
from app.transcoding.probe import MetadataProber
from app.transcoding.responses import error_response
from app.transcoding.scratch import ScratchFileManager
from app.transcoding.service import TranscodeOrchestrator

logging.getLogger("uvicorn").setLevel(logging.INFO)
logger = logging.getLogger("compressor.main")


def discover_formats() -> tuple[str, ...]:
    """Container formats /api/compress accepts and the engine can write; all configured ones if the engine can't be asked."""
    configured = tuple(sorted(app_config.VIDEO_OUTPUT_FORMATS))
    try:
        muxers = set(list_muxers(app_config.FFMPEG_PATH, timeout=app_config.PROBE_TIMEOUT))
    except CompressorError as e:
        logger.warning("Could not list engine formats (%s); falling back to configured formats", e.message)
        return configured
    formats = tuple(name for name in configured if app_config.VIDEO_OUTPUT_FORMATS[name] in muxers)
    if not formats:
        logger.warning("Engine reports none of the configured muxers; falling back to configured formats")
    return formats or configured


@asynccontextmanager
async def lifespan(app: FastAPI):
    scratch = ScratchFileManager(
        app_config.SCRATCH_DIR,
        attempts=app_config.REMOVE_ATTEMPTS,
        backoff=app_config.REMOVE_BACKOFF_SECONDS,
    )
    app.state.scratch = scratch
    app.state.prober = MetadataProber(app_config.FFPROBE_PATH, timeout=app_config.PROBE_TIMEOUT)
    app.state.orchestrator = TranscodeOrchestrator(
        scratch,
        ffmpeg_path=app_config.FFMPEG_PATH,
        timeout=app_config.TRANSCODE_TIMEOUT,
        max_workers=app_config.MAX_WORKERS,
    )
    app.state.formats = discover_formats()
    logger.info("Compressor API started (%s engine formats, scratch dir %s)", len(app.state.formats), scratch.base_dir)
    yield
    app.state.orchestrator.shutdown()
    logger.info("Compressor API shutting down")


app = FastAPI(
    title="Video Compressor API",
    description="Transcode uploaded videos with ffmpeg and report their metadata.",
    version="1.0.0",
    lifespan=lifespan,
)
app.add_middleware(
    CORSMiddleware,
    allow_origins=app_config.CORS_ORIGINS if app_config.CORS_ORIGINS else ["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(CompressorError)
async def compressor_error_handler(request: Request, exc: CompressorError):
    """Errors raised before any scratch file exists, e.g. a missing upload."""
    return error_response(exc)


app.include_router(router)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("app.main:app", host=app_config.HOST, port=app_config.PORT, reload=True)
