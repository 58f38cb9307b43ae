from __future__ import annotations

import asyncio
import json
from datetime import datetime

import httpx

from livechat.client import LiveChat
from livechat.config import LiveChatConfig
from livechat.models.presence import PresenceModel
from livechat.services.beacon import BeaconConfig, PresenceBeacon
from livechat.services.memory_store import MemoryStore
from livechat.services.presence import PresenceSession, PresenceTracker


def build_session(store: MemoryStore, **kwargs) -> PresenceSession:
    kwargs.setdefault("heartbeat_seconds", 0.01)
    return PresenceSession(PresenceTracker(store), "u1", **kwargs)


def test_going_online_and_offline_merges_into_existing_record() -> None:
    store = MemoryStore()
    store.documents["presence/u1"] = {"device": "web"}
    session = build_session(store)

    async def scenario() -> tuple[dict, dict]:
        await session.start()
        online = store.documents["presence/u1"]
        await session.stop()
        return online, store.documents["presence/u1"]

    online, offline = asyncio.run(scenario())
    assert online["online"] is True
    assert online["device"] == "web"
    assert isinstance(online["lastSeen"], datetime)
    assert isinstance(online["lastUpdate"], int)
    assert offline["online"] is False
    assert offline["device"] == "web"
    assert session.state == "offline"


def test_heartbeat_refreshes_last_update_while_online() -> None:
    store = MemoryStore()
    session = build_session(store)

    async def scenario() -> tuple[int, int, bool]:
        await session.start()
        first = store.documents["presence/u1"]["lastUpdate"]
        await asyncio.sleep(0.05)
        second = store.documents["presence/u1"]["lastUpdate"]
        active = session.heartbeat_active
        await session.stop()
        return first, second, active

    first, second, active = asyncio.run(scenario())
    assert second > first
    assert active is True
    assert session.heartbeat_active is False
    assert store.documents["presence/u1"]["online"] is False


def test_heartbeat_failure_stops_the_timer() -> None:
    store = MemoryStore()
    session = build_session(store)

    async def scenario() -> bool:
        await session.start()
        store.fail_writes = True
        await asyncio.sleep(0.05)
        active = session.heartbeat_active
        store.fail_writes = False
        await session.stop()
        return active

    assert asyncio.run(scenario()) is False


def test_start_twice_keeps_a_single_heartbeat() -> None:
    session = build_session(MemoryStore())

    async def scenario() -> tuple[bool, bool]:
        await session.start()
        first = session._heartbeat
        await session.start()
        await asyncio.sleep(0)
        replaced = first is not session._heartbeat
        cancelled = first.cancelled()
        await session.stop()
        return replaced, cancelled

    replaced, cancelled = asyncio.run(scenario())
    assert replaced
    assert cancelled


def test_visibility_changes_flip_presence() -> None:
    store = MemoryStore()
    session = build_session(store)

    async def scenario() -> list[tuple[bool, bool]]:
        seen = []
        await session.start()
        await session.on_visibility_change(hidden=True)
        seen.append((store.documents["presence/u1"]["online"], session.heartbeat_active))
        await session.on_visibility_change(hidden=False)
        seen.append((store.documents["presence/u1"]["online"], session.heartbeat_active))
        await session.stop()
        return seen

    assert asyncio.run(scenario()) == [(False, False), (True, True)]


def test_offline_grace_period_defers_the_flip() -> None:
    store = MemoryStore()
    session = build_session(store, offline_grace_seconds=0.05)

    async def scenario() -> list[bool]:
        seen = []
        await session.start()
        await session.on_visibility_change(hidden=True)
        seen.append(store.documents["presence/u1"]["online"])
        await session.on_visibility_change(hidden=False)
        await asyncio.sleep(0.08)
        seen.append(store.documents["presence/u1"]["online"])
        await session.on_visibility_change(hidden=True)
        await asyncio.sleep(0.08)
        seen.append(store.documents["presence/u1"]["online"])
        return seen

    assert asyncio.run(scenario()) == [True, True, False]
    assert session.heartbeat_active is False


def test_unload_sends_beacon_and_writes_offline() -> None:
    store = MemoryStore()
    captured: list[dict] = []

    def handler(request: httpx.Request) -> httpx.Response:
        captured.append(json.loads(request.content))
        return httpx.Response(200, json={"status": "ok"})

    beacon = PresenceBeacon(
        BeaconConfig("http://chat.local/api/presence/offline"),
        transport=httpx.MockTransport(handler),
    )
    session = build_session(store, beacon=beacon)

    async def scenario() -> None:
        await session.start()
        await session.on_unload()
        await beacon.drain()

    asyncio.run(scenario())
    assert captured[0]["userId"] == "u1"
    assert captured[0]["online"] is False
    assert captured[0]["timestamp"] > 0
    assert store.documents["presence/u1"]["online"] is False


def test_beacon_failure_is_not_raised() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    beacon = PresenceBeacon(BeaconConfig("http://chat.local/offline"), transport=httpx.MockTransport(handler))

    assert asyncio.run(beacon.send("u1")) is False


def test_subscribe_to_presence_reports_changes_until_unsubscribed() -> None:
    store = MemoryStore()
    tracker = PresenceTracker(store)
    updates: list[PresenceModel] = []

    async def scenario() -> None:
        subscription = tracker.subscribe_to_presence("u2", updates.append)
        await tracker.update_online_status("u2", True)
        subscription()
        subscription()
        await tracker.update_online_status("u2", False)

    asyncio.run(scenario())
    assert len(updates) == 2
    assert updates[0] == PresenceModel(online=False, lastSeen="", typing=False)
    assert updates[1].online is True
    assert updates[1].lastSeen == "just now"
    assert store.listener_count() == 0


def test_failing_presence_handler_goes_to_on_error() -> None:
    store = MemoryStore()
    tracker = PresenceTracker(store)
    errors: list[Exception] = []

    def explode(_presence: PresenceModel) -> None:
        raise RuntimeError("render failed")

    async def scenario() -> None:
        subscription = tracker.subscribe_to_presence("u2", explode, errors.append)
        await tracker.update_online_status("u2", True)
        subscription()

    asyncio.run(scenario())
    assert len(errors) == 2
    assert all(isinstance(exc, RuntimeError) for exc in errors)


def test_update_online_status_failure_returns_false() -> None:
    store = MemoryStore(fail_writes=True)

    assert asyncio.run(PresenceTracker(store).update_online_status("u1", True)) is False


def test_session_from_service_wiring_as_context_manager() -> None:
    store = MemoryStore()
    live = LiveChat(LiveChatConfig(heartbeat_seconds=0.01), store=store)

    async def scenario() -> tuple[bool, bool]:
        async with live.presence_session("u1") as session:
            online = store.documents["presence/u1"]["online"]
            active = session.heartbeat_active
        return online, active

    online, active = asyncio.run(scenario())
    assert online is True
    assert active is True
    assert store.documents["presence/u1"]["online"] is False


def test_failed_online_write_starts_no_heartbeat() -> None:
    store = MemoryStore(fail_writes=True)
    session = build_session(store)

    async def scenario() -> tuple[str, bool]:
        await session.start()
        return session.state, session.heartbeat_active

    assert asyncio.run(scenario()) == ("offline", False)
    assert "presence/u1" not in store.documents
