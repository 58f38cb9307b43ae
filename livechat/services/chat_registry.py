from __future__ import annotations

import asyncio
import hashlib
import logging
from typing import Any, Callable

from livechat.models.chat import ParticipantProfile
from livechat.services.document_store import (
    SERVER_TIMESTAMP,
    DocumentExists,
    DocumentSnapshot,
    DocumentStore,
    ErrorHandler,
    FieldFilter,
    Subscription,
    guarded,
)
from livechat.services.formatting import now_ms, to_epoch_millis
from livechat.services.message_stream import CHATS

LOGGER = logging.getLogger(__name__)

TYPING_TTL_SECONDS = 10.0
PROFILE_FIELDS = ("firstName", "lastName", "userName", "profilePhoto")


def pair_key(user_a: str, user_b: str) -> str:
    return "#".join(sorted([user_a, user_b]))


def private_chat_id(user_a: str, user_b: str) -> str:
    # chat ids travel in URL paths, where "#" would start a fragment
    digest = hashlib.sha1(pair_key(user_a, user_b).encode("utf-8")).hexdigest()
    return f"priv_{digest[:24]}"


def participant_profile(chat: dict[str, Any], user_id: str) -> dict[str, str]:
    """Display fields for one participant.

    The ``profiles`` map is preferred; chats created before it existed only
    carry the ``users`` array.
    """
    merged = {name: "" for name in PROFILE_FIELDS}
    users = chat.get("users")
    if isinstance(users, list):
        for entry in users:
            if isinstance(entry, dict) and entry.get("id") == user_id:
                merged.update({name: str(entry.get(name) or "") for name in PROFILE_FIELDS})
                break
    profiles = chat.get("profiles")
    if isinstance(profiles, dict) and isinstance(profiles.get(user_id), dict):
        for name in PROFILE_FIELDS:
            value = profiles[user_id].get(name)
            if value:
                merged[name] = str(value)
    return merged


def build_chat_document(
    user_a: str,
    user_b: str,
    profile_a: ParticipantProfile | None = None,
    profile_b: ParticipantProfile | None = None,
) -> dict[str, Any]:
    snapshot_a = (profile_a or ParticipantProfile()).model_dump()
    snapshot_b = (profile_b or ParticipantProfile()).model_dump()
    return {
        "lastMessage": "",
        "lastMessageTime": SERVER_TIMESTAMP,
        "lastSender": "",
        "chat_disabled": False,
        "userIds": [user_a, user_b],
        "pairKey": pair_key(user_a, user_b),
        "users": [{"id": user_a, **snapshot_a}, {"id": user_b, **snapshot_b}],
        "profiles": {user_a: snapshot_a, user_b: snapshot_b},
        f"last_read_{user_a}": 0,
        f"last_read_{user_b}": 0,
    }


class ChatRegistry:
    def __init__(self, store: DocumentStore, typing_ttl_seconds: float = TYPING_TTL_SECONDS) -> None:
        self.store = store
        self.typing_ttl_seconds = typing_ttl_seconds

    async def get_or_create_chat(
        self,
        user_id: str,
        other_user_id: str,
        profile: ParticipantProfile | None = None,
        other_profile: ParticipantProfile | None = None,
    ) -> str:
        if not user_id or not other_user_id or user_id == other_user_id:
            raise ValueError("A chat needs two distinct participants")

        chat_id = private_chat_id(user_id, other_user_id)
        try:
            existing = await self._find_chat(user_id, other_user_id, chat_id)
            if existing is not None:
                return existing

            try:
                await self.store.create(
                    f"{CHATS}/{chat_id}",
                    build_chat_document(user_id, other_user_id, profile, other_profile),
                )
                LOGGER.info("Created chat %s", chat_id)
            except DocumentExists:
                LOGGER.info("Chat %s was created concurrently, reusing it", chat_id)
            return chat_id
        except Exception:
            LOGGER.exception("Error getting or creating chat for %s and %s", user_id, other_user_id)
            raise

    async def get_chat(self, chat_id: str) -> DocumentSnapshot:
        return await self.store.get(f"{CHATS}/{chat_id}")

    async def _find_chat(self, user_id: str, other_user_id: str, chat_id: str) -> str | None:
        snap = await self.store.get(f"{CHATS}/{chat_id}")
        if snap.exists:
            return chat_id

        by_key = await self.store.query(
            CHATS,
            (FieldFilter("pairKey", "==", pair_key(user_id, other_user_id)),),
            limit=1,
        )
        if by_key:
            return by_key[0].id

        # chats written before pairKey existed
        legacy = await self.store.query(CHATS, (FieldFilter("userIds", "array_contains", user_id),))
        for doc in legacy:
            if other_user_id in (doc.to_dict().get("userIds") or []):
                return doc.id
        return None

    async def refresh_profile_in_chats(self, user_id: str, profile: ParticipantProfile) -> int:
        """Bring the user's own snapshot up to date in every chat they are in."""
        try:
            chats = await self.store.query(CHATS, (FieldFilter("userIds", "array_contains", user_id),))
        except Exception:
            LOGGER.exception("Error loading chats to refresh profile of %s", user_id)
            return 0

        updated = 0
        for chat in chats:
            current = participant_profile(chat.to_dict(), user_id)
            changes: dict[str, Any] = {}
            if profile.profilePhoto and current["profilePhoto"] != profile.profilePhoto:
                changes[f"profiles.{user_id}.profilePhoto"] = profile.profilePhoto
            for name in ("userName", "firstName", "lastName"):
                value = getattr(profile, name)
                if value and not current[name]:
                    changes[f"profiles.{user_id}.{name}"] = value
            if not changes:
                continue
            try:
                await self.store.update(f"{CHATS}/{chat.id}", changes)
                updated += 1
            except Exception:
                LOGGER.exception("Error refreshing profile of %s in chat %s", user_id, chat.id)
        return updated

    async def update_typing_status(self, chat_id: str, user_id: str, is_typing: bool) -> bool:
        expires = now_ms() + int(self.typing_ttl_seconds * 1000) if is_typing else 0
        try:
            await self.store.update(
                f"{CHATS}/{chat_id}",
                {f"typing_{user_id}": is_typing, f"typing_expires_{user_id}": expires},
            )
            return True
        except Exception:
            LOGGER.exception("Error updating typing status in chat %s", chat_id)
            return False

    def subscribe_to_typing_status(
        self,
        chat_id: str,
        other_user_id: str,
        on_update: Callable[[bool], None],
        on_error: ErrorHandler | None = None,
    ) -> Subscription:
        expiry: list[asyncio.TimerHandle] = []
        deliver = guarded(on_update, on_error, "typing")

        def _clear_expiry() -> None:
            while expiry:
                expiry.pop().cancel()

        def _handle(snap: DocumentSnapshot) -> None:
            _clear_expiry()
            if not snap.exists:
                return
            data = snap.to_dict()
            typing = data.get(f"typing_{other_user_id}") is True
            expires = to_epoch_millis(data.get(f"typing_expires_{other_user_id}"))
            if typing and expires:
                remaining = (expires - now_ms()) / 1000
                if remaining <= 0:
                    typing = False
                else:
                    expiry.append(loop.call_later(remaining, deliver, False))
            deliver(typing)

        try:
            loop = asyncio.get_running_loop()
            cancel = self.store.watch_document(f"{CHATS}/{chat_id}", guarded(_handle, on_error, "typing"))
        except Exception as exc:
            LOGGER.exception("Error setting up typing subscription for chat %s", chat_id)
            if on_error is not None:
                on_error(exc)
            return Subscription(None)

        def _unsubscribe() -> None:
            _clear_expiry()
            cancel()

        return Subscription(_unsubscribe)
