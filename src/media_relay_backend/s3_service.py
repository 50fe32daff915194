"""
S3-compatible object storage for published media.

This module provides functionality for:
- Building the boto3 client for an S3-compatible endpoint (e.g. Cloudflare R2)
- Uploading job outputs under caller-determined keys
- Building public URLs that keep the key's folder structure navigable
- Listing, picking and deleting stored videos

The client is created once by the application lifespan and injected into
``R2Storage``; nothing in this module holds process-wide state. boto3 is
blocking, so every call runs in a worker thread.
"""

from __future__ import annotations

import asyncio
import logging
import random
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Union
from urllib.parse import quote

import boto3
from boto3.exceptions import Boto3Error
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError
from omegaconf import DictConfig

from .errors import NotFoundError, StorageError
from .models import StoredVideo

logger = logging.getLogger(__name__)

DEFAULT_CONTENT_TYPE = "application/octet-stream"

CONTENT_TYPES: Dict[str, str] = {
    ".mp4": "video/mp4",
    ".m4v": "video/x-m4v",
    ".mov": "video/quicktime",
    ".webm": "video/webm",
    ".mkv": "video/x-matroska",
    ".avi": "video/x-msvideo",
    ".mp3": "audio/mpeg",
    ".m4a": "audio/mp4",
    ".aac": "audio/aac",
    ".wav": "audio/wav",
    ".ogg": "audio/ogg",
    ".opus": "audio/opus",
    ".flac": "audio/flac",
    ".srt": "application/x-subrip",
    ".vtt": "text/vtt",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
    ".gif": "image/gif",
    ".webp": "image/webp",
    ".json": "application/json",
    ".txt": "text/plain",
}


def content_type_for(name: str) -> str:
    """Infer a MIME type from a filename or key extension."""
    return CONTENT_TYPES.get(Path(name).suffix.lower(), DEFAULT_CONTENT_TYPE)


def build_public_url(base_url: str, key: str) -> str:
    """
    Join a public base URL and an object key.

    Each ``/``-delimited segment is percent-encoded on its own, so folder
    separators survive while spaces and reserved characters are encoded.

    Example:
        >>> build_public_url("https://cdn.example.com", "a/b c.mp4")
        'https://cdn.example.com/a/b%20c.mp4'
    """
    encoded = "/".join(quote(segment, safe="") for segment in key.split("/"))
    return f"{base_url.rstrip('/')}/{encoded}"


def create_s3_client(config: DictConfig):
    """
    Create the boto3 S3 client described by ``config.storage``.

    Returns:
        boto3 S3 client bound to the configured endpoint
    """
    storage = config.storage
    return boto3.client(
        "s3",
        endpoint_url=storage.endpoint or None,
        aws_access_key_id=storage.access_key_id or None,
        aws_secret_access_key=storage.secret_access_key or None,
        region_name=storage.region,
        config=Config(signature_version="s3v4", retries={"max_attempts": 1, "mode": "standard"}),
    )


class R2Storage:
    """
    Publishes objects to one bucket and lists what is already there.

    Attributes:
        bucket: Target bucket name
        public_base_url: Base URL under which objects are publicly readable
    """

    def __init__(
        self,
        client: Any,
        bucket: str,
        public_base_url: str,
        excluded_prefixes: Iterable[str] = ("captioned/",),
        video_extensions: Iterable[str] = (".mp4", ".mov", ".m4v", ".webm", ".mkv", ".avi"),
    ) -> None:
        self._client = client
        self.bucket = bucket
        self.public_base_url = public_base_url
        self.excluded_prefixes = tuple(excluded_prefixes)
        self.video_extensions = tuple(ext.lower() for ext in video_extensions)

    @classmethod
    def from_config(cls, client: Any, config: DictConfig) -> "R2Storage":
        storage = config.storage
        return cls(
            client,
            bucket=storage.bucket,
            public_base_url=storage.public_base_url,
            excluded_prefixes=list(storage.excluded_prefixes),
            video_extensions=list(storage.video_extensions),
        )

    def public_url(self, key: str) -> str:
        return build_public_url(self.public_base_url, key)

    async def publish(
        self,
        source: Union[bytes, Path],
        key: str,
        content_type: Optional[str] = None,
    ) -> str:
        """
        Upload bytes or a local file under ``key``.

        Args:
            source: Raw bytes or a path to a local file
            key: Object key (slash-delimited path within the bucket)
            content_type: MIME type; inferred from the key extension when omitted

        Returns:
            Public URL of the uploaded object

        Raises:
            StorageError: If the backing store rejects the upload
        """
        content_type = content_type or content_type_for(key)
        logger.info(f"Uploading to {self.bucket}/{key} ({content_type})")
        try:
            if isinstance(source, (bytes, bytearray)):
                await asyncio.to_thread(
                    self._client.put_object,
                    Bucket=self.bucket,
                    Key=key,
                    Body=bytes(source),
                    ContentType=content_type,
                )
            else:
                await asyncio.to_thread(
                    self._client.upload_file,
                    str(source),
                    self.bucket,
                    key,
                    ExtraArgs={"ContentType": content_type},
                )
        except (ClientError, BotoCoreError, Boto3Error) as exc:
            logger.error(f"Upload failed for {key}: {exc}")
            raise StorageError(f"Upload failed for {key}: {exc}") from exc
        logger.info(f"Upload successful: {self.bucket}/{key}")
        return self.public_url(key)

    def _is_listed_video(self, key: str) -> bool:
        if any(key.startswith(prefix) for prefix in self.excluded_prefixes):
            return False
        return Path(key).suffix.lower() in self.video_extensions

    def _list_objects(self, prefix: str) -> List[Dict[str, Any]]:
        paginator = self._client.get_paginator("list_objects_v2")
        params: Dict[str, Any] = {"Bucket": self.bucket}
        if prefix:
            params["Prefix"] = prefix
        objects: List[Dict[str, Any]] = []
        for page in paginator.paginate(**params):
            objects.extend(page.get("Contents", []))
        return objects

    async def list_videos(self, prefix: str = "") -> List[StoredVideo]:
        """
        List stored videos under ``prefix``, oldest first.

        Keys under an excluded prefix (the captioned outputs) and keys without a
        video extension are skipped.
        """
        try:
            objects = await asyncio.to_thread(self._list_objects, prefix)
        except (ClientError, BotoCoreError, Boto3Error) as exc:
            raise StorageError(f"Listing failed for prefix {prefix!r}: {exc}") from exc

        videos = [
            StoredVideo(
                key=obj["Key"],
                url=self.public_url(obj["Key"]),
                size=int(obj.get("Size", 0)),
                last_modified=obj.get("LastModified"),
            )
            for obj in objects
            if self._is_listed_video(obj["Key"])
        ]
        videos.sort(key=lambda video: video.last_modified.timestamp() if video.last_modified else 0.0)
        return videos

    async def random_video(self, prefix: str = "") -> StoredVideo:
        videos = await self.list_videos(prefix)
        if not videos:
            raise NotFoundError(f"No videos found under prefix {prefix!r}")
        return random.choice(videos)

    async def delete(self, key: str) -> None:
        logger.info(f"Deleting {self.bucket}/{key}")
        try:
            await asyncio.to_thread(self._client.delete_object, Bucket=self.bucket, Key=key)
        except (ClientError, BotoCoreError, Boto3Error) as exc:
            raise StorageError(f"Delete failed for {key}: {exc}") from exc
