"""
Tests for object storage publishing and listing.
"""

from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest
from boto3.exceptions import S3UploadFailedError
from botocore.exceptions import ClientError

from media_relay_backend.errors import NotFoundError, StorageError
from media_relay_backend.s3_service import R2Storage, build_public_url, content_type_for


def client_error(operation: str) -> ClientError:
    return ClientError({"Error": {"Code": "NoSuchBucket", "Message": "The bucket does not exist"}}, operation)


@pytest.fixture
def s3_client():
    return MagicMock()


@pytest.fixture
def r2(s3_client):
    return R2Storage(s3_client, "bucket", "https://cdn.example.com/")


class TestPublicUrl:
    def test_segments_are_encoded_separately(self):
        assert build_public_url("https://cdn.example.com", "a/b c.mp4") == "https://cdn.example.com/a/b%20c.mp4"

    def test_trailing_slash_on_base(self):
        assert build_public_url("https://cdn.example.com/", "x.mp3") == "https://cdn.example.com/x.mp3"

    def test_reserved_characters_in_segment(self):
        assert build_public_url("https://cdn.example.com", "f/a#b?.mp4") == "https://cdn.example.com/f/a%23b%3F.mp4"


@pytest.mark.parametrize(
    "name, expected",
    [
        ("clip.mp4", "video/mp4"),
        ("CLIP.MOV", "video/quicktime"),
        ("folder/audio.mp3", "audio/mpeg"),
        ("noext", "application/octet-stream"),
        ("file.xyz", "application/octet-stream"),
    ],
)
def test_content_type_for(name, expected):
    assert content_type_for(name) == expected


class TestPublish:
    @pytest.mark.asyncio
    async def test_bytes_use_put_object(self, r2, s3_client):
        url = await r2.publish(b"data", "notes/readme.txt")

        assert url == "https://cdn.example.com/notes/readme.txt"
        s3_client.put_object.assert_called_once_with(
            Bucket="bucket", Key="notes/readme.txt", Body=b"data", ContentType="text/plain"
        )

    @pytest.mark.asyncio
    async def test_files_use_upload_file(self, r2, s3_client, tmp_path):
        source = tmp_path / "out.mp4"
        source.write_bytes(b"video")

        url = await r2.publish(source, "captioned/out_captioned.mp4", content_type="video/mp4")

        assert url == "https://cdn.example.com/captioned/out_captioned.mp4"
        s3_client.upload_file.assert_called_once_with(
            str(source), "bucket", "captioned/out_captioned.mp4", ExtraArgs={"ContentType": "video/mp4"}
        )

    @pytest.mark.asyncio
    async def test_client_error_becomes_storage_error(self, r2, s3_client):
        s3_client.put_object.side_effect = client_error("PutObject")

        with pytest.raises(StorageError) as excinfo:
            await r2.publish(b"data", "a.mp4")
        assert "a.mp4" in excinfo.value.message

    @pytest.mark.asyncio
    async def test_upload_failure_becomes_storage_error(self, r2, s3_client, tmp_path):
        source = tmp_path / "out.mp3"
        source.write_bytes(b"audio")
        s3_client.upload_file.side_effect = S3UploadFailedError("Failed to upload")

        with pytest.raises(StorageError):
            await r2.publish(source, "out.mp3")


class TestListing:
    @staticmethod
    def pages(*keys_and_times):
        return [
            {"Contents": [{"Key": key, "Size": 1, "LastModified": when} for key, when in keys_and_times]}
        ]

    @pytest.mark.asyncio
    async def test_sorted_oldest_first_with_exclusions(self, r2, s3_client):
        s3_client.get_paginator.return_value.paginate.return_value = self.pages(
            ("b.mp4", datetime(2024, 5, 1, tzinfo=timezone.utc)),
            ("a.MKV", datetime(2024, 1, 1, tzinfo=timezone.utc)),
            ("captioned/a_captioned.mp4", datetime(2023, 1, 1, tzinfo=timezone.utc)),
            ("song.mp3", datetime(2023, 1, 1, tzinfo=timezone.utc)),
        )

        videos = await r2.list_videos()

        assert [video.key for video in videos] == ["a.MKV", "b.mp4"]
        s3_client.get_paginator.assert_called_once_with("list_objects_v2")
        s3_client.get_paginator.return_value.paginate.assert_called_once_with(Bucket="bucket")

    @pytest.mark.asyncio
    async def test_pages_are_concatenated(self, r2, s3_client):
        when = datetime(2024, 1, 1, tzinfo=timezone.utc)
        s3_client.get_paginator.return_value.paginate.return_value = [
            {"Contents": [{"Key": "one.mp4", "Size": 1, "LastModified": when}]},
            {"Contents": [{"Key": "two.mp4", "Size": 2, "LastModified": when}]},
        ]

        videos = await r2.list_videos("")

        assert {video.key for video in videos} == {"one.mp4", "two.mp4"}

    @pytest.mark.asyncio
    async def test_listing_error(self, r2, s3_client):
        s3_client.get_paginator.return_value.paginate.side_effect = client_error("ListObjectsV2")

        with pytest.raises(StorageError):
            await r2.list_videos()

    @pytest.mark.asyncio
    async def test_random_video_from_empty_bucket(self, r2, s3_client):
        s3_client.get_paginator.return_value.paginate.return_value = [{"KeyCount": 0}]

        with pytest.raises(NotFoundError):
            await r2.random_video()


class TestDelete:
    @pytest.mark.asyncio
    async def test_delete(self, r2, s3_client):
        await r2.delete("videos/a.mp4")
        s3_client.delete_object.assert_called_once_with(Bucket="bucket", Key="videos/a.mp4")

    @pytest.mark.asyncio
    async def test_delete_error(self, r2, s3_client):
        s3_client.delete_object.side_effect = client_error("DeleteObject")

        with pytest.raises(StorageError):
            await r2.delete("videos/a.mp4")
