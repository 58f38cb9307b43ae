from __future__ import annotations

import asyncio

import pytest

from livechat.services.formatting import is_image_message
from livechat.services.media import MAX_IMAGE_BYTES, ChatImageUploader


class RecordingBlob:
    def __init__(self, name: str) -> None:
        self.name = name
        self.uploads: list[tuple[bytes, str | None]] = []

    def upload_from_string(self, data: bytes, content_type: str | None = None) -> None:
        self.uploads.append((data, content_type))


class RecordingBucket:
    name = "demo-bucket"

    def __init__(self) -> None:
        self.blobs: list[RecordingBlob] = []

    def blob(self, name: str) -> RecordingBlob:
        blob = RecordingBlob(name)
        self.blobs.append(blob)
        return blob


def test_upload_stores_under_chat_images_and_returns_download_url() -> None:
    bucket = RecordingBucket()
    uploader = ChatImageUploader(bucket=bucket)

    url = asyncio.run(uploader.upload_chat_image(b"\x89PNG", "my cat!.png", "u1", "image/png"))

    blob = bucket.blobs[0]
    assert blob.name.startswith("chat_images/u1_")
    assert blob.name.endswith("_my_cat_.png")
    assert blob.uploads == [(b"\x89PNG", "image/png")]
    assert url.startswith("https://firebasestorage.googleapis.com/v0/b/demo-bucket/o/chat_images%2Fu1_")
    assert url.endswith("?alt=media")
    assert is_image_message(url)


def test_upload_rejects_empty_and_oversized_images() -> None:
    bucket = RecordingBucket()
    uploader = ChatImageUploader(bucket=bucket)

    with pytest.raises(ValueError):
        asyncio.run(uploader.upload_chat_image(b"", "a.png", "u1"))
    with pytest.raises(ValueError):
        asyncio.run(uploader.upload_chat_image(b"x" * (MAX_IMAGE_BYTES + 1), "a.png", "u1"))
    assert bucket.blobs == []


def test_missing_bucket_configuration_is_an_error() -> None:
    uploader = ChatImageUploader()

    with pytest.raises(RuntimeError):
        asyncio.run(uploader.upload_chat_image(b"data", "a.png", "u1"))
