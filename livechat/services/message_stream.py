from __future__ import annotations

import logging
from typing import Any, Callable, Iterable

from livechat.models.error import CHAT_NOT_FOUND, USER_BLOCKED
from livechat.models.message import ChatMessageModel, MentionModel, OperationResult
from livechat.services.block_registry import BlockRegistry
from livechat.services.document_store import (
    SERVER_TIMESTAMP,
    DocumentSnapshot,
    DocumentStore,
    ErrorHandler,
    Subscription,
    guarded,
)
from livechat.services.formatting import (
    DEFAULT_IMAGE_HOST_MARKER,
    display_last_message,
    now_ms,
    to_epoch_millis,
)

LOGGER = logging.getLogger(__name__)

CHATS = "chats"


def messages_path(chat_id: str) -> str:
    return f"{CHATS}/{chat_id}/messages"


def room_messages_path(show_id: str) -> str:
    return f"{CHATS}/{show_id}/room_messages"


def _mentions(raw: Any) -> list[MentionModel]:
    if not isinstance(raw, list):
        return []
    cleaned: list[MentionModel] = []
    for item in raw:
        if isinstance(item, dict) and item.get("id"):
            cleaned.append(MentionModel(id=str(item["id"]), name=str(item.get("name", ""))))
    return cleaned


def message_from_snapshot(snap: DocumentSnapshot) -> ChatMessageModel:
    data = snap.to_dict()
    date = data.get("date")
    return ChatMessageModel(
        id=snap.id,
        message=str(data.get("message") or ""),
        date=str(to_epoch_millis(date)) if date is not None else "0",
        sender=str(data.get("sender") or ""),
        senderName=str(data.get("senderName") or ""),
        senderProfileUrl=str(data.get("senderProfileUrl") or ""),
        seen=data.get("seen") is True,
        mentions=_mentions(data.get("mentions")),
    )


def normalize_room_message(snap: DocumentSnapshot) -> ChatMessageModel:
    """Room messages come from several writers with different field names."""
    data = snap.to_dict()

    if data.get("date"):
        timestamp = to_epoch_millis(data["date"])
    else:
        timestamp = to_epoch_millis(data.get("timestamp"))

    return ChatMessageModel(
        id=snap.id,
        message=str(data.get("message") or ""),
        sender=str(data.get("sender") or data.get("senderId") or ""),
        senderName=str(data.get("senderName") or data.get("name") or "Unknown"),
        senderProfileUrl=str(data.get("senderProfileUrl") or data.get("image_url") or ""),
        date=str(timestamp),
        seen=data.get("seen") is True,
        mentions=_mentions(data.get("mentions")),
    )


def sort_by_date(messages: list[ChatMessageModel]) -> list[ChatMessageModel]:
    return sorted(messages, key=lambda item: to_epoch_millis(item.date))


def is_unread(message: ChatMessageModel, reader_id: str, last_read: int) -> bool:
    return message.sender != reader_id and to_epoch_millis(message.date) > last_read and not message.seen


def count_unread(
    messages: Iterable[ChatMessageModel],
    reader_id: str,
    last_read: int,
    participants: set[str] | None = None,
) -> int:
    total = 0
    for message in messages:
        if participants is not None and message.sender not in participants:
            continue
        if is_unread(message, reader_id, last_read):
            total += 1
    return total


class MessageStream:
    def __init__(
        self,
        store: DocumentStore,
        blocks: BlockRegistry,
        image_host_marker: str = DEFAULT_IMAGE_HOST_MARKER,
    ) -> None:
        self.store = store
        self.blocks = blocks
        self.image_host_marker = image_host_marker

    def subscribe_to_messages(
        self,
        chat_id: str,
        on_update: Callable[[list[ChatMessageModel]], None],
        on_error: ErrorHandler | None = None,
    ) -> Subscription:
        def _deliver(docs: list[DocumentSnapshot]) -> None:
            on_update([message_from_snapshot(doc) for doc in docs])

        handler = guarded(_deliver, on_error, "messages")
        try:
            return Subscription(self.store.watch_query(messages_path(chat_id), handler, order_by="date"))
        except Exception as exc:
            LOGGER.exception("Error setting up messages subscription for chat %s", chat_id)
            if on_error is not None:
                on_error(exc)
            return Subscription(None)

    def subscribe_to_room_messages(
        self,
        show_id: str,
        on_update: Callable[[list[ChatMessageModel]], None],
        on_error: ErrorHandler | None = None,
    ) -> Subscription:
        def _deliver(docs: list[DocumentSnapshot]) -> None:
            on_update(sort_by_date([normalize_room_message(doc) for doc in docs]))

        handler = guarded(_deliver, on_error, "room messages")
        try:
            return Subscription(self.store.watch_query(room_messages_path(show_id), handler))
        except Exception as exc:
            LOGGER.exception("Error setting up room messages subscription for show %s", show_id)
            if on_error is not None:
                on_error(exc)
            return Subscription(None)

    async def list_messages(self, chat_id: str) -> list[ChatMessageModel]:
        docs = await self.store.query(messages_path(chat_id), order_by="date")
        return [message_from_snapshot(doc) for doc in docs]

    async def list_room_messages(self, show_id: str) -> list[ChatMessageModel]:
        docs = await self.store.query(room_messages_path(show_id))
        return sort_by_date([normalize_room_message(doc) for doc in docs])

    async def send_message(
        self,
        chat_id: str,
        message: str,
        sender_id: str,
        sender_name: str,
        sender_profile_url: str = "",
    ) -> OperationResult:
        try:
            chat_path = f"{CHATS}/{chat_id}"
            chat = await self.store.get(chat_path)
            if not chat.exists:
                return OperationResult(success=False, error=CHAT_NOT_FOUND)

            user_ids = chat.to_dict().get("userIds") or []
            other_id = next((uid for uid in user_ids if uid != sender_id), None)
            if other_id:
                status = await self.blocks.check_block_status(sender_id, other_id)
                if status.hasBlockedOther or status.isBlockedByOther:
                    LOGGER.info("Rejected message from %s in chat %s: blocked", sender_id, chat_id)
                    return OperationResult(success=False, error=USER_BLOCKED)

            message_id = await self.store.add(
                messages_path(chat_id),
                {
                    "message": message,
                    "sender": sender_id,
                    "senderName": sender_name,
                    "senderProfileUrl": sender_profile_url,
                    "date": str(now_ms()),
                    "seen": False,
                },
            )

            chat_update: dict[str, Any] = {
                "lastMessage": display_last_message(message, self.image_host_marker),
                "lastMessageTime": SERVER_TIMESTAMP,
                "lastSender": sender_id,
            }
            # only the sender's own entry, so a concurrent write by the other side survives
            if sender_profile_url:
                chat_update[f"profiles.{sender_id}.profilePhoto"] = sender_profile_url
            await self.store.update(chat_path, chat_update)
            return OperationResult(success=True, id=message_id)
        except Exception as exc:
            LOGGER.exception("Error sending message to chat %s", chat_id)
            return OperationResult(success=False, error=str(exc))

    async def send_room_message(
        self,
        show_id: str,
        message: str,
        sender_id: str,
        sender_name: str,
        sender_profile_url: str = "",
        mentions: Iterable[MentionModel | dict] = (),
    ) -> OperationResult:
        try:
            message_id = await self.store.add(
                room_messages_path(show_id),
                {
                    "message": message,
                    "sender": sender_id,
                    "senderName": sender_name,
                    "senderProfileUrl": sender_profile_url,
                    "date": str(now_ms()),
                    "seen": False,
                    "mentions": [
                        item.model_dump() if isinstance(item, MentionModel) else dict(item)
                        for item in mentions
                    ],
                },
            )
            return OperationResult(success=True, id=message_id)
        except Exception as exc:
            LOGGER.exception("Error sending room message to show %s", show_id)
            return OperationResult(success=False, error=str(exc))

    async def mark_messages_as_read(self, chat_id: str, user_id: str) -> OperationResult:
        try:
            await self.store.update(f"{CHATS}/{chat_id}", {f"last_read_{user_id}": now_ms()})
            return OperationResult(success=True)
        except Exception as exc:
            LOGGER.exception("Error marking messages as read in chat %s", chat_id)
            return OperationResult(success=False, error=str(exc))

    async def unread_count(self, chat_id: str, reader_id: str) -> int:
        try:
            chat = await self.store.get(f"{CHATS}/{chat_id}")
            if not chat.exists:
                return 0
            data = chat.to_dict()
            participants = set(data.get("userIds") or [])
            messages = await self.list_messages(chat_id)
        except Exception:
            LOGGER.exception("Error counting unread messages in chat %s", chat_id)
            return 0
        last_read = to_epoch_millis(data.get(f"last_read_{reader_id}"))
        return count_unread(messages, reader_id, last_read, participants or None)
