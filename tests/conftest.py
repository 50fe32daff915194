"""
Pytest configuration and fixtures for Media Relay Backend tests.
"""

import os
from pathlib import Path
from typing import Callable, List, Optional

import pytest
from fastapi.testclient import TestClient

# Set test environment variables before importing the app
os.environ["R2_ENDPOINT"] = "https://account.r2.example.com"
os.environ["R2_ACCESS_KEY_ID"] = "test-key-id"
os.environ["R2_SECRET_ACCESS_KEY"] = "test-secret"
os.environ["R2_BUCKET"] = "test-bucket"
os.environ["R2_PUBLIC_BASE_URL"] = "https://media.example.com"

from media_relay_backend.configuration import make_runtime_config
from media_relay_backend.errors import MediaRelayError
from media_relay_backend.job_manager import JobManager
from media_relay_backend.main import app, get_job_manager, get_storage
from media_relay_backend.s3_service import build_public_url
from media_relay_backend.transcoder import ExecResult

PUBLIC_BASE = "https://media.example.com"

PROBE_TEMPLATE = """ffmpeg version 6.1 Copyright (c) 2000-2023 the FFmpeg developers
Input #0, mov,mp4,m4a,3gp,3g2,mj2, from '{path}':
  Metadata:
    major_brand     : isom
{tags}  Duration: {duration}, start: 0.000000, bitrate: 1205 kb/s
  Stream #0:0[0x1](und): Video: h264 (High), yuv420p, 1080x1920, 30 fps
    Metadata:
      handler_name    : VideoHandler
At least one output file must be specified
"""


def probe_output(duration: str = "00:00:10.00", **tags: str) -> str:
    tag_lines = "".join(f"    {key:<16}: {value}\n" for key, value in tags.items())
    return PROBE_TEMPLATE.format(path="/tmp/input.mp4", tags=tag_lines, duration=duration)


class FakeFetcher:
    """Writes fixed bytes to the destination, or raises a configured error."""

    def __init__(self, content: bytes = b"source-bytes", error: Optional[Exception] = None):
        self.content = content
        self.error = error
        self.calls: List[tuple] = []

    async def fetch(self, url: str, dest_path: Path) -> str:
        self.calls.append((url, dest_path))
        if self.error is not None:
            raise self.error
        dest_path.write_bytes(self.content)
        return url


class FakeExecutor:
    """
    Stands in for ffmpeg: probes return ``probe_text`` with exit code 1,
    transforms write ``output_bytes`` to the last argument.
    """

    def __init__(self, probe_text: str = "", output_bytes: bytes = b"output-bytes"):
        self.ffmpeg_path = "ffmpeg"
        self.probe_text = probe_text
        self.output_bytes = output_bytes
        self.transform_error: Optional[Exception] = None
        self.calls: List[dict] = []
        self.on_run: Optional[Callable[[List[str]], None]] = None

    async def run(self, argv, timeout: float, probe: bool = False) -> ExecResult:
        self.calls.append({"argv": list(argv), "timeout": timeout, "probe": probe})
        if self.on_run is not None:
            self.on_run(list(argv))
        if probe:
            return ExecResult(returncode=1, output=self.probe_text)
        if self.transform_error is not None:
            raise self.transform_error
        Path(argv[-1]).write_bytes(self.output_bytes)
        return ExecResult(returncode=0, output="")

    @property
    def transforms(self) -> List[dict]:
        return [call for call in self.calls if not call["probe"]]


class FakeStorage:
    """Records uploads instead of talking to an object store."""

    video_extensions = (".mp4", ".mov", ".m4v", ".webm", ".mkv", ".avi")

    def __init__(self, error: Optional[MediaRelayError] = None):
        self.error = error
        self.uploads: List[dict] = []

    async def publish(self, source, key: str, content_type: Optional[str] = None) -> str:
        if self.error is not None:
            raise self.error
        data = source if isinstance(source, bytes) else Path(source).read_bytes()
        self.uploads.append({"key": key, "content_type": content_type, "data": data})
        return build_public_url(PUBLIC_BASE, key)


@pytest.fixture
def temp_dir(tmp_path) -> Path:
    path = tmp_path / "jobs"
    path.mkdir()
    return path


@pytest.fixture
def config(temp_dir):
    return make_runtime_config({"transcode": {"temp_dir": str(temp_dir)}})


@pytest.fixture
def fetcher():
    return FakeFetcher()


@pytest.fixture
def executor():
    return FakeExecutor(probe_text=probe_output())


@pytest.fixture
def storage():
    return FakeStorage()


@pytest.fixture
def manager(config, fetcher, executor, storage):
    return JobManager(config, fetcher, executor, storage)


@pytest.fixture
def client(manager, storage):
    """Create a test client whose routes use the fake-backed job manager."""
    app.dependency_overrides[get_job_manager] = lambda: manager
    app.dependency_overrides[get_storage] = lambda: storage
    yield TestClient(app)
    app.dependency_overrides.clear()
