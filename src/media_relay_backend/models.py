from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class JobStatus(str, Enum):
    CREATED = "created"
    FETCHING_SOURCE = "fetching_source"
    TRANSFORMING = "transforming"
    PUBLISHING = "publishing"
    DONE = "done"
    FAILED = "failed"


class TransformKind(str, Enum):
    CAPTION_BURN = "caption-burn"
    AUDIO_EXTRACT = "audio-extract"
    TRIM = "trim"
    RELAY = "relay"


class JobEvent(BaseModel):
    timestamp: datetime
    message: str


class CamelModel(BaseModel):
    """Wire models use camelCase field names; Python code uses snake_case."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class BurnCaptionsRequest(CamelModel):
    video_url: str = Field(min_length=1)
    srt: str = Field(min_length=1)
    video_name: str = Field(min_length=1)


class BurnCaptionsResponse(CamelModel):
    success: bool = True
    video_url: str
    video_name: str


class VideoToMp3Request(CamelModel):
    video_url: str = Field(min_length=1)
    folder: Optional[str] = None


class VideoToMp3Response(CamelModel):
    success: bool = True
    mp3_url: str
    mp3_name: str
    duration_seconds: Optional[float] = None
    end_time: Optional[str] = None


class SaveUrlRequest(CamelModel):
    url: str = Field(min_length=1)
    folder: Optional[str] = None
    filename: Optional[str] = None


class SaveUrlResponse(CamelModel):
    success: bool = True
    r2_url: str
    key: str


class TrimRequest(CamelModel):
    url: str = Field(min_length=1)
    folder: Optional[str] = None
    filename: Optional[str] = None
    # 0 means no target, same as omitting the field
    audio_duration: Optional[float] = Field(default=None, ge=0)


class TrimResponse(CamelModel):
    success: bool = True
    r2_url: str
    key: str
    duration_original: float
    duration_trimmed: float


class StoredVideo(CamelModel):
    key: str
    url: str
    size: int = 0
    last_modified: Optional[datetime] = None


class VideoListResponse(CamelModel):
    success: bool = True
    count: int
    videos: List[StoredVideo]


class RandomVideoResponse(CamelModel):
    success: bool = True
    key: str
    url: str


class DeleteVideoResponse(CamelModel):
    success: bool = True
    key: str


class ErrorResponse(CamelModel):
    success: bool = False
    error: str
