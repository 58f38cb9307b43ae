from __future__ import annotations

import asyncio
import logging
import re
from typing import Any
from urllib.parse import quote

from google.cloud import storage

from livechat.services.formatting import now_ms

LOGGER = logging.getLogger(__name__)

MAX_IMAGE_BYTES = 5 * 1024 * 1024
_UNSAFE_NAME = re.compile(r"[^A-Za-z0-9._-]+")


class ChatImageUploader:
    """Stores chat images under ``chat_images/`` and returns a download URL."""

    def __init__(self, bucket_name: str | None = None, bucket: Any | None = None) -> None:
        self.bucket_name = bucket_name
        self._bucket = bucket

    @property
    def bucket(self) -> Any:
        if self._bucket is None:
            if not self.bucket_name:
                raise RuntimeError("FIREBASE_STORAGE_BUCKET is not configured")
            self._bucket = storage.Client().bucket(self.bucket_name)
        return self._bucket

    async def upload_chat_image(
        self,
        data: bytes,
        filename: str,
        sender_id: str,
        content_type: str | None = None,
    ) -> str:
        if not data:
            raise ValueError("Image is empty")
        if len(data) > MAX_IMAGE_BYTES:
            raise ValueError("Image is larger than 5MB")

        safe_name = _UNSAFE_NAME.sub("_", filename).strip("_") or "image"
        blob_name = f"chat_images/{sender_id}_{now_ms()}_{safe_name}"
        blob = self.bucket.blob(blob_name)
        await asyncio.to_thread(blob.upload_from_string, data, content_type=content_type)
        LOGGER.info("Uploaded chat image %s (%d bytes)", blob_name, len(data))

        return (
            f"https://firebasestorage.googleapis.com/v0/b/{self.bucket.name}/o/"
            f"{quote(blob_name, safe='')}?alt=media"
        )
