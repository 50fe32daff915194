from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager
from typing import Dict, Optional

import httpx
from fastapi import APIRouter, Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from omegaconf import DictConfig

from .configuration import is_storage_configured, make_runtime_config
from .errors import MediaRelayError, ValidationError
from .fetcher import RemoteFetcher
from .job_manager import JobManager
from .middleware import BodySizeLimitMiddleware
from .models import (
    BurnCaptionsRequest,
    BurnCaptionsResponse,
    DeleteVideoResponse,
    ErrorResponse,
    RandomVideoResponse,
    SaveUrlRequest,
    SaveUrlResponse,
    TrimRequest,
    TrimResponse,
    VideoListResponse,
    VideoToMp3Request,
    VideoToMp3Response,
)
from .s3_service import R2Storage, create_s3_client
from .transcoder import TranscodeExecutor

logger = logging.getLogger(__name__)

SERVICE_NAME = "Media Relay Server"

ERROR_RESPONSES = {
    400: {"model": ErrorResponse, "description": "Missing or invalid request fields"},
    500: {"model": ErrorResponse, "description": "Fetch, transform or storage failure"},
}

router = APIRouter(responses=ERROR_RESPONSES)


@asynccontextmanager
async def lifespan(app: FastAPI):
    config: DictConfig = app.state.config
    if not is_storage_configured(config):
        logger.warning("Storage is not fully configured; uploads will fail until R2_* variables are set")

    http_client = httpx.AsyncClient(
        follow_redirects=False,
        timeout=httpx.Timeout(float(config.fetch.timeout), connect=float(config.fetch.connect_timeout)),
    )
    storage = R2Storage.from_config(create_s3_client(config), config)
    fetcher = RemoteFetcher(
        http_client,
        max_redirects=int(config.fetch.max_redirects),
        chunk_size=int(config.fetch.chunk_size),
    )
    app.state.storage = storage
    app.state.job_manager = JobManager(config, fetcher, TranscodeExecutor(config.transcode.ffmpeg_path), storage)
    try:
        yield
    finally:
        await http_client.aclose()


def _validation_message(exc: RequestValidationError) -> str:
    missing = []
    for error in exc.errors():
        loc = error.get("loc", ())
        if error.get("type") in {"missing", "string_too_short"} and len(loc) > 1:
            missing.append(str(loc[-1]))
    if missing:
        return f"{', '.join(missing)} required"
    first = exc.errors()[0] if exc.errors() else {}
    return f"Invalid request: {first.get('msg', 'malformed body')}"


async def handle_request_validation(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(status_code=400, content=ErrorResponse(error=_validation_message(exc)).model_dump())


async def handle_media_relay_error(request: Request, exc: MediaRelayError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=ErrorResponse(error=exc.message).model_dump())


async def handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(f"{request.method} {request.url.path} crashed: {exc}")
    return JSONResponse(status_code=500, content=ErrorResponse(error=str(exc) or "Internal server error").model_dump())


def create_app(config: Optional[DictConfig] = None) -> FastAPI:
    config = config if config is not None else make_runtime_config()
    application = FastAPI(title="Media Relay API", version="0.1.0", lifespan=lifespan)
    application.state.config = config

    application.add_middleware(BodySizeLimitMiddleware, max_body_bytes=int(config.server.max_body_bytes))
    application.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )
    application.add_exception_handler(RequestValidationError, handle_request_validation)
    application.add_exception_handler(MediaRelayError, handle_media_relay_error)
    application.add_exception_handler(Exception, handle_unexpected_error)
    application.include_router(router)
    return application


def get_job_manager(request: Request) -> JobManager:
    return request.app.state.job_manager


def get_storage(request: Request) -> R2Storage:
    return request.app.state.storage


@router.get("/health")
def healthcheck() -> Dict[str, str]:
    return {"status": "ok", "service": SERVICE_NAME}


@router.post("/burn-captions", response_model=BurnCaptionsResponse)
async def burn_captions(payload: BurnCaptionsRequest, manager: JobManager = Depends(get_job_manager)) -> BurnCaptionsResponse:
    return await manager.burn_captions(payload.video_url, payload.srt, payload.video_name)


@router.post("/video-to-mp3", response_model=VideoToMp3Response)
async def video_to_mp3(payload: VideoToMp3Request, manager: JobManager = Depends(get_job_manager)) -> VideoToMp3Response:
    return await manager.video_to_mp3(payload.video_url, payload.folder)


@router.post("/save-url-to-r2", response_model=SaveUrlResponse)
async def save_url_to_r2(payload: SaveUrlRequest, manager: JobManager = Depends(get_job_manager)) -> SaveUrlResponse:
    return await manager.save_url(payload.url, payload.folder, payload.filename)


@router.post("/trim-and-save-to-r2", response_model=TrimResponse)
async def trim_and_save_to_r2(payload: TrimRequest, manager: JobManager = Depends(get_job_manager)) -> TrimResponse:
    return await manager.trim_and_save(payload.url, payload.folder, payload.filename, payload.audio_duration)


@router.get("/list-videos", response_model=VideoListResponse)
async def list_videos(prefix: str = "", storage: R2Storage = Depends(get_storage)) -> VideoListResponse:
    videos = await storage.list_videos(prefix)
    return VideoListResponse(count=len(videos), videos=videos)


@router.get("/random-video", response_model=RandomVideoResponse)
async def random_video(prefix: str = "", storage: R2Storage = Depends(get_storage)) -> RandomVideoResponse:
    video = await storage.random_video(prefix)
    return RandomVideoResponse(key=video.key, url=video.url)


@router.delete("/delete-video", response_model=DeleteVideoResponse)
async def delete_video(key: Optional[str] = None, storage: R2Storage = Depends(get_storage)) -> DeleteVideoResponse:
    if not key:
        raise ValidationError("key required")
    await storage.delete(key)
    return DeleteVideoResponse(key=key)


app = create_app()


def run() -> None:
    """Console entry point: ``media-relay-server``."""
    import uvicorn

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    uvicorn.run(app, host=os.environ.get("HOST", "0.0.0.0"), port=int(os.environ.get("PORT", "3000")))
