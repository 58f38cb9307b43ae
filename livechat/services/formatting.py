from __future__ import annotations

import time
from datetime import UTC, datetime, timedelta
from typing import Any

PHOTO_PLACEHOLDER = "📷 Photo"
IMAGE_EXTENSIONS = (".jpg", ".jpeg", ".png", ".gif", ".webp")
DEFAULT_IMAGE_HOST_MARKER = "firebasestorage"


def now_ms() -> int:
    return int(time.time() * 1000)


def is_image_message(message: str, host_marker: str = DEFAULT_IMAGE_HOST_MARKER) -> bool:
    lowered = message.lower()
    return host_marker in lowered or lowered.endswith(IMAGE_EXTENSIONS)


def display_last_message(message: str | None, host_marker: str = DEFAULT_IMAGE_HOST_MARKER) -> str:
    if not message:
        return ""
    return PHOTO_PLACEHOLDER if is_image_message(message, host_marker) else message


def to_epoch_millis(value: Any) -> int:
    """Best-effort conversion of the date shapes found in stored messages."""
    if value is None or isinstance(value, bool):
        return 0
    if isinstance(value, datetime):
        return int(value.timestamp() * 1000)
    if isinstance(value, (int, float)):
        return int(value)
    if isinstance(value, str):
        try:
            return int(float(value.strip()))
        except ValueError:
            return 0
    seconds = value.get("seconds") if isinstance(value, dict) else getattr(value, "seconds", None)
    if isinstance(seconds, (int, float)) and seconds:
        return int(seconds * 1000)
    return 0


def to_datetime(value: Any) -> datetime | None:
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=UTC)
    millis = to_epoch_millis(value)
    if millis <= 0:
        return None
    return datetime.fromtimestamp(millis / 1000, tz=UTC)


def format_locale_date(value: datetime) -> str:
    local = value.astimezone()
    return f"{local.month}/{local.day}/{local.year}"


def format_relative_time(value: Any, now: datetime | None = None) -> str:
    if not value:
        return ""
    current = now or datetime.now(UTC)
    moment = to_datetime(value) or current

    diff = current - moment
    minutes = int(diff.total_seconds() // 60)
    hours = int(diff.total_seconds() // 3600)
    days = int(diff.total_seconds() // 86400)

    if minutes < 1:
        return "Just now"
    if minutes < 60:
        return f"{minutes}m ago"
    if hours < 24:
        return f"{hours}h ago"
    if days < 7:
        return f"{days}d ago"
    return format_locale_date(moment)


def format_last_seen(value: Any, now: datetime | None = None) -> str:
    if not isinstance(value, datetime):
        return ""
    current = now or datetime.now(UTC)
    moment = value if value.tzinfo else value.replace(tzinfo=UTC)

    diff = current - moment
    minutes = int(diff.total_seconds() // 60)
    hours = int(diff.total_seconds() // 3600)

    if minutes < 1:
        return "just now"
    if minutes < 60:
        return f"{minutes}m ago"
    if hours < 24:
        return f"{hours}h ago"

    yesterday = (current.astimezone() - timedelta(days=1)).date()
    if moment.astimezone().date() == yesterday:
        return "yesterday"
    return format_locale_date(moment)
