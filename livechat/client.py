from __future__ import annotations

import logging

from livechat.config import LiveChatConfig
from livechat.services.beacon import BeaconConfig, PresenceBeacon
from livechat.services.block_registry import BlockRegistry
from livechat.services.chat_registry import ChatRegistry
from livechat.services.conversations import ConversationProjector
from livechat.services.document_store import DocumentStore
from livechat.services.media import ChatImageUploader
from livechat.services.memory_store import MemoryStore
from livechat.services.message_stream import MessageStream
from livechat.services.presence import PresenceSession, PresenceTracker

LOGGER = logging.getLogger(__name__)


def build_store(config: LiveChatConfig) -> DocumentStore:
    if config.store_backend == "firestore":
        from livechat.services.firestore_store import FirestoreStore

        LOGGER.info("Using Firestore store (project=%s)", config.firestore_project_id or "default")
        return FirestoreStore(project=config.firestore_project_id)
    LOGGER.info("Using in-memory store")
    return MemoryStore()


class LiveChat:
    """Every chat service wired against one store."""

    def __init__(self, config: LiveChatConfig, store: DocumentStore | None = None) -> None:
        self.config = config
        self.store = store or build_store(config)
        self.blocks = BlockRegistry(self.store)
        self.presence = PresenceTracker(self.store)
        self.messages = MessageStream(self.store, self.blocks, config.image_host_marker)
        self.chats = ChatRegistry(self.store, config.typing_ttl_seconds)
        self.conversations = ConversationProjector(self.store, self.blocks, config.image_host_marker)
        self.uploader = ChatImageUploader(bucket_name=config.storage_bucket)
        self.beacon = PresenceBeacon(BeaconConfig(config.beacon_url, config.beacon_timeout_seconds))

    def presence_session(self, user_id: str) -> PresenceSession:
        return PresenceSession(
            self.presence,
            user_id,
            beacon=self.beacon,
            heartbeat_seconds=self.config.heartbeat_seconds,
            offline_grace_seconds=self.config.offline_grace_seconds,
        )

    def close(self) -> None:
        self.store.close()
