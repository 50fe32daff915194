"""
Per-request orchestration of media transform jobs.

Every API call that touches media runs as one job with the lifecycle
``created -> fetching_source -> transforming -> publishing -> done | failed``:

- Temporary paths are allocated up front, before anything can fail
- The source is downloaded, transformed with ffmpeg and published to storage
- A failure in any stage skips the remaining ones
- Every temporary path is released exactly once, whatever the outcome

Jobs are not persisted or shared between requests. The JobManager only holds
injected collaborators (fetcher, executor, storage) and configuration.
"""

from __future__ import annotations

import logging
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterator, Optional
from uuid import uuid4

from omegaconf import DictConfig, OmegaConf

from .configuration import resolve_temp_dir
from .diagnostics import format_timestamp, parse_duration, parse_metadata_tags
from .errors import MediaTooShortError, TranscodeFailed
from .fetcher import RemoteFetcher
from .models import (
    BurnCaptionsResponse,
    JobEvent,
    JobStatus,
    SaveUrlResponse,
    TransformKind,
    TrimResponse,
    VideoToMp3Response,
)
from .s3_service import R2Storage
from .transcoder import (
    CaptionStyle,
    TranscodeExecutor,
    build_audio_extract_args,
    build_caption_burn_args,
    build_probe_args,
    build_trim_args,
)
from .utils import clean_title, ensure_directory, filename_from_url, join_key, sanitize_key, split_extension

logger = logging.getLogger(__name__)

MAX_NAME_LENGTH = 120


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class TempResource:
    """A job-owned temporary file. Releasing a missing file is not an error."""

    path: Path
    role: str

    @property
    def exists(self) -> bool:
        return self.path.exists()

    def release(self) -> None:
        self.path.unlink(missing_ok=True)


@dataclass
class TranscodeJob:
    """
    State of one request's fetch/transform/publish execution.

    Attributes:
        id: Unique job identifier (hex UUID)
        kind: Transform performed by the job
        source_url: Caller-supplied source locator
        name: Caller-supplied logical name, returned unchanged
        params: Transform parameters as received
        created_ns: Allocation timestamp used to name temporary files
        status: Current lifecycle state
        resources: Temporary files owned by the job, keyed by role
        events: Chronological lifecycle events
        result_url: Public URL once published
        error: Error message if the job failed
    """

    id: str
    kind: TransformKind
    source_url: str
    name: str
    params: Dict[str, Any]
    created_ns: int
    status: JobStatus = JobStatus.CREATED
    resources: Dict[str, TempResource] = field(default_factory=dict)
    events: list[JobEvent] = field(default_factory=list)
    result_url: Optional[str] = None
    error: Optional[str] = None
    released: bool = False

    @property
    def tag(self) -> str:
        return self.id[:8]

    def allocate(self, temp_dir: Path, role: str, suffix: str) -> Path:
        path = temp_dir / f"{role}_{self.created_ns}_{self.tag}{suffix}"
        self.resources[role] = TempResource(path=path, role=role)
        return path

    def release_resources(self) -> int:
        """
        Delete every temporary file the job owns, once.

        Failures are logged and swallowed so cleanup can never fail a request.

        Returns:
            Number of resources processed (0 when already released)
        """
        if self.released:
            return 0
        self.released = True
        for resource in self.resources.values():
            if not resource.exists:
                continue
            try:
                resource.release()
                logger.debug(f"[{self.tag}] Removed {resource.role} file {resource.path}")
            except OSError as exc:
                logger.warning(f"[{self.tag}] Could not remove {resource.role} file {resource.path}: {exc}")
        return len(self.resources)


class JobManager:
    """
    Runs media jobs end to end.

    One coroutine per transform kind; each returns the API response model on
    success and raises a ``MediaRelayError`` on failure. No stage is retried.
    """

    def __init__(
        self,
        config: DictConfig,
        fetcher: RemoteFetcher,
        executor: TranscodeExecutor,
        storage: R2Storage,
    ) -> None:
        self.config = config
        self.fetcher = fetcher
        self.executor = executor
        self.storage = storage
        self.temp_dir = ensure_directory(resolve_temp_dir(config))
        self.caption_style = CaptionStyle.from_config(OmegaConf.to_container(config.caption_style))
        self.transform_timeout = float(config.transcode.transform_timeout)
        self.probe_timeout = float(config.transcode.probe_timeout)

    @property
    def ffmpeg(self) -> str:
        return self.executor.ffmpeg_path

    # ------------------------------------------------------------------
    # Lifecycle helpers
    # ------------------------------------------------------------------

    def _new_job(self, kind: TransformKind, source_url: str, name: str, **params: Any) -> TranscodeJob:
        job = TranscodeJob(
            id=uuid4().hex,
            kind=kind,
            source_url=source_url,
            name=name,
            params=params,
            created_ns=time.time_ns(),
        )
        self._append_event(job, f"Job registered ({kind.value}).")
        return job

    def _append_event(self, job: TranscodeJob, message: str) -> None:
        job.events.append(JobEvent(timestamp=_utcnow(), message=message))
        logger.info(f"[{job.tag}] {message}")

    def _transition(self, job: TranscodeJob, status: JobStatus, message: str) -> None:
        job.status = status
        self._append_event(job, message)

    @contextmanager
    def _lifecycle(self, job: TranscodeJob) -> Iterator[TranscodeJob]:
        try:
            yield job
        except BaseException as exc:
            job.status = JobStatus.FAILED
            job.error = str(exc) or exc.__class__.__name__
            self._append_event(job, f"Job failed: {job.error}")
            raise
        finally:
            job.release_resources()

    def _finish(self, job: TranscodeJob, url: str) -> None:
        job.result_url = url
        self._transition(job, JobStatus.DONE, f"Published to {url}")

    async def _probe_duration(self, job: TranscodeJob, path: Path) -> tuple[Optional[float], Dict[str, str]]:
        result = await self.executor.run(build_probe_args(self.ffmpeg, path), timeout=self.probe_timeout, probe=True)
        duration = parse_duration(result.output)
        self._append_event(job, f"Probed {path.name}: duration={duration}")
        return duration, parse_metadata_tags(result.output)

    def _relay_key(
        self,
        job: TranscodeJob,
        url: str,
        folder: Optional[str],
        filename: Optional[str],
        default_ext: str = "",
    ) -> str:
        url_stem, url_ext = split_extension(filename_from_url(url))
        stem, ext = split_extension(filename) if filename else (url_stem, url_ext)
        ext = sanitize_key(ext or url_ext) or default_ext
        safe_stem = sanitize_key(stem)[:MAX_NAME_LENGTH].strip("-") or f"file-{job.created_ns // 1_000_000}"
        return join_key(folder, f"{safe_stem}{ext}")

    @staticmethod
    def _source_suffix(url: str, filename: Optional[str], default: str = ".mp4") -> str:
        for candidate in (filename or "", filename_from_url(url)):
            ext = sanitize_key(split_extension(candidate)[1])
            if ext:
                return ext
        return default

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def burn_captions(self, video_url: str, srt: str, video_name: str) -> BurnCaptionsResponse:
        """
        Burn SRT captions into a video and publish it under ``captioned/``.

        The video is letterboxed into the configured portrait frame and the
        captions use the fixed caption style profile.
        """
        job = self._new_job(TransformKind.CAPTION_BURN, video_url, video_name)
        source = job.allocate(self.temp_dir, "input", ".mp4")
        subtitle = job.allocate(self.temp_dir, "subtitle", ".srt")
        output = job.allocate(self.temp_dir, "output", ".mp4")

        with self._lifecycle(job):
            self._transition(job, JobStatus.FETCHING_SOURCE, "Downloading source video.")
            await self.fetcher.fetch(video_url, source)
            subtitle.write_text(srt, encoding="utf-8")

            self._transition(job, JobStatus.TRANSFORMING, "Burning captions.")
            argv = build_caption_burn_args(
                self.ffmpeg, source, subtitle, output, self.caption_style, self.config.caption_video
            )
            await self.executor.run(argv, timeout=self.transform_timeout)

            stem, ext = split_extension(video_name)
            base = stem if ext in self.storage.video_extensions else video_name
            safe_base = sanitize_key(base)[:MAX_NAME_LENGTH].strip("-") or f"video-{job.created_ns // 1_000_000}"
            key = f"captioned/{safe_base}_captioned.mp4"

            self._transition(job, JobStatus.PUBLISHING, f"Uploading {key}.")
            url = await self.storage.publish(output, key, "video/mp4")
            self._finish(job, url)

        return BurnCaptionsResponse(video_url=url, video_name=video_name)

    async def video_to_mp3(self, video_url: str, folder: Optional[str] = None) -> VideoToMp3Response:
        """
        Extract the audio track of a video as a fixed-bitrate MP3.

        The MP3 is named after the source's title (or description) tag, cleaned
        with the configured title heuristics, falling back to the source
        filename. The duration reported is probed from the MP3 itself.
        """
        job = self._new_job(TransformKind.AUDIO_EXTRACT, video_url, folder or "", folder=folder)
        source = job.allocate(self.temp_dir, "input", self._source_suffix(video_url, None))
        output = job.allocate(self.temp_dir, "output", ".mp3")

        with self._lifecycle(job):
            self._transition(job, JobStatus.FETCHING_SOURCE, "Downloading source video.")
            await self.fetcher.fetch(video_url, source)

            self._transition(job, JobStatus.TRANSFORMING, "Extracting audio.")
            argv = build_audio_extract_args(
                self.ffmpeg, source, output, self.config.audio.bitrate, self.config.audio.sample_rate
            )
            await self.executor.run(argv, timeout=self.transform_timeout)
            duration, tags = await self._probe_duration(job, output)

            titles = self.config.titles
            raw_title = (
                tags.get("title")
                or tags.get("description")
                or tags.get("comment")
                or split_extension(filename_from_url(video_url))[0]
            )
            name = clean_title(raw_title, list(titles.strip_prefixes), dict(titles.replacements))
            name = name[:MAX_NAME_LENGTH].strip("-") or f"audio-{job.created_ns // 1_000_000}"
            mp3_name = f"{name}.mp3"
            key = join_key(folder, mp3_name)

            self._transition(job, JobStatus.PUBLISHING, f"Uploading {key}.")
            url = await self.storage.publish(output, key, "audio/mpeg")
            self._finish(job, url)

        return VideoToMp3Response(
            mp3_url=url,
            mp3_name=mp3_name,
            duration_seconds=round(duration, 3) if duration is not None else None,
            end_time=format_timestamp(duration) if duration is not None else None,
        )

    async def save_url(self, url: str, folder: Optional[str] = None, filename: Optional[str] = None) -> SaveUrlResponse:
        """Copy a remote file into storage without transforming it."""
        job = self._new_job(TransformKind.RELAY, url, filename or "", folder=folder)
        source = job.allocate(self.temp_dir, "input", self._source_suffix(url, filename, default=""))

        with self._lifecycle(job):
            self._transition(job, JobStatus.FETCHING_SOURCE, "Downloading source.")
            await self.fetcher.fetch(url, source)

            key = self._relay_key(job, url, folder, filename)
            self._transition(job, JobStatus.PUBLISHING, f"Uploading {key}.")
            public_url = await self.storage.publish(source, key)
            self._finish(job, public_url)

        return SaveUrlResponse(r2_url=public_url, key=key)

    async def trim_and_save(
        self,
        url: str,
        folder: Optional[str] = None,
        filename: Optional[str] = None,
        audio_duration: Optional[float] = None,
    ) -> TrimResponse:
        """
        Trim a clip losslessly and publish it.

        The target length is ``min(audio_duration, duration - tail_margin)``,
        or ``duration - default_tail`` when no audio duration is given. Sources
        shorter than ``trim.min_duration`` fail before anything is uploaded.
        """
        trim = self.config.trim
        job = self._new_job(TransformKind.TRIM, url, filename or "", folder=folder, audio_duration=audio_duration)
        suffix = self._source_suffix(url, filename)
        source = job.allocate(self.temp_dir, "input", suffix)
        output = job.allocate(self.temp_dir, "output", suffix)

        with self._lifecycle(job):
            self._transition(job, JobStatus.FETCHING_SOURCE, "Downloading source clip.")
            await self.fetcher.fetch(url, source)

            self._transition(job, JobStatus.TRANSFORMING, "Probing and trimming.")
            duration, _ = await self._probe_duration(job, source)
            if duration is None:
                raise TranscodeFailed("Could not determine source duration")
            if duration < float(trim.min_duration):
                raise MediaTooShortError(duration, float(trim.min_duration))

            if audio_duration:
                target = min(float(audio_duration), duration - float(trim.tail_margin))
            else:
                target = duration - float(trim.default_tail)
            await self.executor.run(build_trim_args(self.ffmpeg, source, output, target), timeout=self.transform_timeout)

            key = self._relay_key(job, url, folder, filename, default_ext=suffix)
            self._transition(job, JobStatus.PUBLISHING, f"Uploading {key}.")
            public_url = await self.storage.publish(output, key)
            self._finish(job, public_url)

        return TrimResponse(
            r2_url=public_url,
            key=key,
            duration_original=round(duration, 3),
            duration_trimmed=round(target, 3),
        )
