from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field

import httpx

from livechat.services.formatting import now_ms

LOGGER = logging.getLogger(__name__)


@dataclass
class BeaconConfig:
    url: str
    timeout_seconds: float = 2.0


@dataclass
class PresenceBeacon:
    """Fire-and-forget POST that marks a user offline when a page goes away."""

    config: BeaconConfig
    transport: httpx.AsyncBaseTransport | None = None
    _inflight: set[asyncio.Task] = field(default_factory=set)

    async def send(self, user_id: str) -> bool:
        payload = {"userId": user_id, "online": False, "timestamp": now_ms()}
        try:
            async with httpx.AsyncClient(timeout=self.config.timeout_seconds, transport=self.transport) as client:
                response = await client.post(self.config.url, json=payload)
                response.raise_for_status()
        except httpx.HTTPError as exc:
            LOGGER.warning("Offline beacon for %s failed (%s)", user_id, exc)
            return False
        return True

    def fire(self, user_id: str) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(self.send(user_id))
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)
        return task

    async def drain(self) -> None:
        if self._inflight:
            await asyncio.gather(*self._inflight, return_exceptions=True)
