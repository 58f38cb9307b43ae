from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from functools import partial
from typing import Callable

from livechat.models.chat import ConversationModel
from livechat.services.block_registry import BlockRegistry
from livechat.services.chat_registry import participant_profile
from livechat.services.document_store import (
    DocumentSnapshot,
    DocumentStore,
    ErrorHandler,
    FieldFilter,
    Unsubscribe,
    guarded,
)
from livechat.services.formatting import (
    DEFAULT_IMAGE_HOST_MARKER,
    display_last_message,
    format_relative_time,
    to_epoch_millis,
)
from livechat.services.message_stream import CHATS, count_unread, message_from_snapshot, messages_path
from livechat.services.presence import PRESENCE

LOGGER = logging.getLogger(__name__)


def _other_participant(chat: dict, user_id: str) -> str:
    user_ids = chat.get("userIds") or []
    return next((uid for uid in user_ids if isinstance(uid, str) and uid != user_id), "")


def _is_online(snap: DocumentSnapshot) -> bool:
    return snap.exists and snap.to_dict().get("online") is True


class ConversationProjector:
    """Builds the inbox view: one entry per chat, seen from one user."""

    def __init__(
        self,
        store: DocumentStore,
        blocks: BlockRegistry,
        image_host_marker: str = DEFAULT_IMAGE_HOST_MARKER,
    ) -> None:
        self.store = store
        self.blocks = blocks
        self.image_host_marker = image_host_marker

    async def project_chat(
        self,
        user_id: str,
        chat: DocumentSnapshot,
        presence: dict[str, bool],
        on_counterpart: Callable[[str], None] | None = None,
        now: datetime | None = None,
    ) -> ConversationModel | None:
        data = chat.to_dict()
        other_id = _other_participant(data, user_id)
        if not other_id:
            return None

        status = await self.blocks.check_block_status(user_id, other_id)
        if status.isBlockedByOther:
            return None

        if on_counterpart is not None:
            on_counterpart(other_id)

        last_read = to_epoch_millis(data.get(f"last_read_{user_id}"))
        try:
            docs = await self.store.query(messages_path(chat.id), order_by="date", descending=True)
            messages = [message_from_snapshot(doc) for doc in docs]
        except Exception:
            LOGGER.exception("Error loading messages of chat %s for unread count", chat.id)
            messages = []
        unread = count_unread(messages, user_id, last_read, participants={user_id, other_id})

        profile = participant_profile(data, other_id)
        return ConversationModel(
            id=chat.id,
            userName=profile["userName"] or profile["firstName"] or "Unknown User",
            userAvatar=profile["profilePhoto"],
            lastMessage=display_last_message(data.get("lastMessage"), self.image_host_marker),
            timestamp=format_relative_time(data.get("lastMessageTime"), now=now),
            unread=unread > 0,
            unreadCount=unread,
            online=presence.get(other_id, False),
            otherUserId=other_id,
        )

    async def project(
        self,
        user_id: str,
        chats: list[DocumentSnapshot],
        presence: dict[str, bool],
        on_counterpart: Callable[[str], None] | None = None,
    ) -> list[ConversationModel]:
        results = await asyncio.gather(
            *(self.project_chat(user_id, chat, presence, on_counterpart) for chat in chats)
        )
        return [item for item in results if item is not None]

    async def project_once(self, user_id: str) -> list[ConversationModel]:
        try:
            chats = await self.store.query(CHATS, (FieldFilter("userIds", "array_contains", user_id),))
            presence: dict[str, bool] = {}
            for other_id in {_other_participant(chat.to_dict(), user_id) for chat in chats}:
                if other_id:
                    presence[other_id] = _is_online(await self.store.get(f"{PRESENCE}/{other_id}"))
            return await self.project(user_id, chats, presence)
        except Exception:
            LOGGER.exception("Error projecting conversations for %s", user_id)
            return []

    def subscribe(
        self,
        user_id: str,
        on_update: Callable[[list[ConversationModel]], None],
        on_error: ErrorHandler | None = None,
    ) -> "ConversationSubscription":
        subscription = ConversationSubscription(self, user_id, on_update, on_error)
        subscription.start()
        return subscription


class ConversationSubscription:
    """Live inbox for one user.

    Listens to the user's chats and, lazily, to the presence of each
    counterpart (one listener per distinct user). Every change recomputes the
    whole list; results of superseded recomputations are dropped.
    """

    def __init__(
        self,
        projector: ConversationProjector,
        user_id: str,
        on_update: Callable[[list[ConversationModel]], None],
        on_error: ErrorHandler | None = None,
    ) -> None:
        self.projector = projector
        self.user_id = user_id
        self.on_error = on_error
        self.closed = False
        self._deliver = guarded(on_update, on_error, "conversations")
        self._chats: list[DocumentSnapshot] = []
        self._presence: dict[str, bool] = {}
        self._presence_subs: dict[str, Unsubscribe] = {}
        self._chat_unsub: Unsubscribe | None = None
        self._generation = 0
        self._tasks: set[asyncio.Task] = set()

    @property
    def presence_listener_count(self) -> int:
        return len(self._presence_subs)

    def start(self) -> None:
        try:
            self._chat_unsub = self.projector.store.watch_query(
                CHATS,
                guarded(self._on_chats, self.on_error, "chats"),
                filters=(FieldFilter("userIds", "array_contains", self.user_id),),
            )
        except Exception as exc:
            LOGGER.exception("Error setting up chat subscription for %s", self.user_id)
            self._report(exc)
            self.closed = True

    def __call__(self) -> None:
        self.close()

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        if self._chat_unsub is not None:
            self._chat_unsub()
            self._chat_unsub = None
        for unsubscribe in self._presence_subs.values():
            unsubscribe()
        self._presence_subs.clear()
        self._presence.clear()
        self._chats = []
        for task in self._tasks:
            task.cancel()

    async def flush(self) -> None:
        """Wait until no recomputation is pending."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def _report(self, exc: Exception) -> None:
        if self.on_error is not None:
            guarded(self.on_error, None, "conversations error")(exc)

    def _on_chats(self, docs: list[DocumentSnapshot]) -> None:
        self._chats = docs
        self._schedule()

    def _on_presence(self, other_id: str, snap: DocumentSnapshot) -> None:
        if self.closed:
            return
        self._presence[other_id] = _is_online(snap)
        self._schedule()

    def _ensure_presence(self, other_id: str) -> None:
        if self.closed or other_id in self._presence_subs:
            return
        self._presence_subs[other_id] = lambda: None
        try:
            self._presence_subs[other_id] = self.projector.store.watch_document(
                f"{PRESENCE}/{other_id}",
                guarded(partial(self._on_presence, other_id), self.on_error, "presence"),
            )
        except Exception:
            LOGGER.exception("Error subscribing to presence of %s", other_id)
            del self._presence_subs[other_id]

    def _schedule(self) -> None:
        if self.closed:
            return
        self._generation += 1
        task = asyncio.get_running_loop().create_task(self._refresh(self._generation))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _refresh(self, generation: int) -> None:
        try:
            conversations = await self.projector.project(
                self.user_id, list(self._chats), self._presence, self._ensure_presence
            )
        except Exception as exc:
            LOGGER.exception("Error projecting conversations for %s", self.user_id)
            self._report(exc)
            return
        if self.closed or generation != self._generation:
            return
        self._deliver(conversations)
