from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Literal

from livechat.services.formatting import DEFAULT_IMAGE_HOST_MARKER


@dataclass
class LiveChatConfig:
    store_backend: Literal["firestore", "memory"] = "memory"
    firestore_project_id: str | None = None
    storage_bucket: str | None = None
    heartbeat_seconds: float = 30.0
    offline_grace_seconds: float = 0.0
    beacon_url: str = "http://127.0.0.1:8040/api/presence/offline"
    beacon_timeout_seconds: float = 2.0
    typing_ttl_seconds: float = 10.0
    image_host_marker: str = DEFAULT_IMAGE_HOST_MARKER

    @classmethod
    def from_env(cls) -> "LiveChatConfig":
        backend = os.getenv("LIVECHAT_STORE_BACKEND", "memory").lower()
        if backend not in {"firestore", "memory"}:
            raise ValueError(f"Unsupported LIVECHAT_STORE_BACKEND '{backend}'")
        return cls(
            store_backend=backend,  # type: ignore[arg-type]
            firestore_project_id=os.getenv("FIRESTORE_PROJECT_ID") or None,
            storage_bucket=os.getenv("FIREBASE_STORAGE_BUCKET") or None,
            heartbeat_seconds=float(os.getenv("PRESENCE_HEARTBEAT_SECONDS", "30")),
            offline_grace_seconds=float(os.getenv("PRESENCE_OFFLINE_GRACE_SECONDS", "0")),
            beacon_url=os.getenv("PRESENCE_BEACON_URL", "http://127.0.0.1:8040/api/presence/offline"),
            beacon_timeout_seconds=float(os.getenv("PRESENCE_BEACON_TIMEOUT_SECONDS", "2.0")),
            typing_ttl_seconds=float(os.getenv("TYPING_TTL_SECONDS", "10")),
            image_host_marker=os.getenv("IMAGE_HOST_MARKER", DEFAULT_IMAGE_HOST_MARKER).lower(),
        )
