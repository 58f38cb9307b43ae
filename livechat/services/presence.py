from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Callable, Literal

from livechat.models.presence import PresenceModel
from livechat.services.beacon import PresenceBeacon
from livechat.services.document_store import (
    SERVER_TIMESTAMP,
    DocumentSnapshot,
    DocumentStore,
    ErrorHandler,
    Subscription,
    guarded,
)
from livechat.services.formatting import format_last_seen, now_ms

LOGGER = logging.getLogger(__name__)

PRESENCE = "presence"
HEARTBEAT_SECONDS = 30.0


def presence_from_snapshot(snap: DocumentSnapshot, now: datetime | None = None) -> PresenceModel:
    if not snap.exists:
        return PresenceModel()
    data = snap.to_dict()
    return PresenceModel(
        online=data.get("online") is True,
        lastSeen=format_last_seen(data.get("lastSeen"), now=now),
        typing=False,
    )


class PresenceTracker:
    def __init__(self, store: DocumentStore) -> None:
        self.store = store

    async def update_online_status(self, user_id: str, online: bool) -> bool:
        try:
            await self.store.set(
                f"{PRESENCE}/{user_id}",
                {"online": online, "lastSeen": SERVER_TIMESTAMP, "lastUpdate": now_ms()},
                merge=True,
            )
            return True
        except Exception:
            LOGGER.exception("Error updating online status for %s", user_id)
            return False

    async def heartbeat(self, user_id: str) -> None:
        await self.store.set(f"{PRESENCE}/{user_id}", {"lastUpdate": now_ms()}, merge=True)

    async def get_presence(self, user_id: str) -> PresenceModel:
        try:
            snap = await self.store.get(f"{PRESENCE}/{user_id}")
        except Exception:
            LOGGER.exception("Error reading presence for %s", user_id)
            return PresenceModel()
        return presence_from_snapshot(snap)

    def subscribe_to_presence(
        self,
        user_id: str,
        on_update: Callable[[PresenceModel], None],
        on_error: ErrorHandler | None = None,
    ) -> Subscription:
        handler = guarded(lambda snap: on_update(presence_from_snapshot(snap)), on_error, "presence")
        try:
            return Subscription(self.store.watch_document(f"{PRESENCE}/{user_id}", handler))
        except Exception as exc:
            LOGGER.exception("Error setting up presence subscription for %s", user_id)
            if on_error is not None:
                on_error(exc)
            return Subscription(None)


class PresenceSession:
    """One user's presence lifecycle in one client.

    Owns at most one heartbeat task. ``start`` and ``stop`` may be called any
    number of times; visibility changes and page unload drive them.
    """

    def __init__(
        self,
        tracker: PresenceTracker,
        user_id: str,
        beacon: PresenceBeacon | None = None,
        heartbeat_seconds: float = HEARTBEAT_SECONDS,
        offline_grace_seconds: float = 0.0,
    ) -> None:
        self.tracker = tracker
        self.user_id = user_id
        self.beacon = beacon
        self.heartbeat_seconds = heartbeat_seconds
        self.offline_grace_seconds = offline_grace_seconds
        self.state: Literal["offline", "online"] = "offline"
        self._heartbeat: asyncio.Task | None = None
        self._pending_offline: asyncio.Task | None = None

    @property
    def heartbeat_active(self) -> bool:
        return self._heartbeat is not None and not self._heartbeat.done()

    async def start(self) -> None:
        self._cancel_pending_offline()
        if not await self.tracker.update_online_status(self.user_id, True):
            return
        self.state = "online"
        self._cancel_heartbeat()
        self._heartbeat = asyncio.get_running_loop().create_task(self._run_heartbeat())

    async def stop(self) -> None:
        self._cancel_pending_offline()
        self._cancel_heartbeat()
        self.state = "offline"
        await self.tracker.update_online_status(self.user_id, False)

    async def on_visibility_change(self, hidden: bool) -> None:
        if not hidden:
            await self.start()
            return
        if self.offline_grace_seconds <= 0:
            await self.stop()
            return
        self._cancel_pending_offline()
        self._pending_offline = asyncio.get_running_loop().create_task(self._offline_after_grace())

    async def on_unload(self) -> None:
        if self.beacon is not None:
            self.beacon.fire(self.user_id)
        await self.stop()

    async def __aenter__(self) -> "PresenceSession":
        await self.start()
        return self

    async def __aexit__(self, *_exc: object) -> None:
        await self.stop()

    async def _run_heartbeat(self) -> None:
        while True:
            await asyncio.sleep(self.heartbeat_seconds)
            try:
                await self.tracker.heartbeat(self.user_id)
            except Exception:
                LOGGER.exception("Heartbeat error for %s, stopping heartbeat", self.user_id)
                return

    async def _offline_after_grace(self) -> None:
        await asyncio.sleep(self.offline_grace_seconds)
        self._pending_offline = None
        await self.stop()

    def _cancel_heartbeat(self) -> None:
        if self._heartbeat is not None and not self._heartbeat.done():
            self._heartbeat.cancel()
        self._heartbeat = None

    def _cancel_pending_offline(self) -> None:
        if self._pending_offline is not None and not self._pending_offline.done():
            self._pending_offline.cancel()
        self._pending_offline = None
