from __future__ import annotations

import asyncio
import logging

from livechat.models.presence import BlockStatusModel
from livechat.services.document_store import ArrayRemove, ArrayUnion, DocumentSnapshot, DocumentStore

LOGGER = logging.getLogger(__name__)

BLOCKED_USERS = "blocked_users"


def _blocked_ids(snap: DocumentSnapshot) -> list[str]:
    blocked = snap.to_dict().get("blockedUsers")
    if not isinstance(blocked, list):
        return []
    return [item for item in blocked if isinstance(item, str)]


class BlockRegistry:
    """Per-user sets of blocked user ids.

    Blocking is one-directional: A blocking B says nothing about B's set, so
    any permission decision has to read both records.
    """

    def __init__(self, store: DocumentStore) -> None:
        self.store = store

    async def block_user(self, self_id: str, target_id: str) -> bool:
        try:
            await self.store.set(
                f"{BLOCKED_USERS}/{self_id}",
                {"blockedUsers": ArrayUnion((target_id,))},
                merge=True,
            )
            return True
        except Exception:
            LOGGER.exception("Error blocking user %s for %s", target_id, self_id)
            return False

    async def unblock_user(self, self_id: str, target_id: str) -> bool:
        try:
            await self.store.set(
                f"{BLOCKED_USERS}/{self_id}",
                {"blockedUsers": ArrayRemove((target_id,))},
                merge=True,
            )
            return True
        except Exception:
            LOGGER.exception("Error unblocking user %s for %s", target_id, self_id)
            return False

    async def list_blocked_users(self, self_id: str) -> list[str]:
        try:
            snap = await self.store.get(f"{BLOCKED_USERS}/{self_id}")
        except Exception:
            LOGGER.exception("Error reading block list for %s", self_id)
            return []
        return _blocked_ids(snap)

    async def check_block_status(self, self_id: str, other_id: str) -> BlockStatusModel:
        try:
            own, other = await asyncio.gather(
                self.store.get(f"{BLOCKED_USERS}/{self_id}"),
                self.store.get(f"{BLOCKED_USERS}/{other_id}"),
            )
        except Exception:
            LOGGER.exception("Error checking block status between %s and %s", self_id, other_id)
            return BlockStatusModel()

        return BlockStatusModel(
            hasBlockedOther=other_id in _blocked_ids(own),
            isBlockedByOther=self_id in _blocked_ids(other),
        )
