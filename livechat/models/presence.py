from __future__ import annotations

from pydantic import BaseModel


class PresenceModel(BaseModel):
    online: bool = False
    lastSeen: str = ""
    typing: bool = False


class PresenceRequest(BaseModel):
    online: bool


class OfflineBeacon(BaseModel):
    userId: str
    online: bool = False
    timestamp: int = 0


class BlockStatusModel(BaseModel):
    hasBlockedOther: bool = False
    isBlockedByOther: bool = False


class BlockRequest(BaseModel):
    userId: str
    targetUserId: str
