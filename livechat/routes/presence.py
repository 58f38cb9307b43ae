from __future__ import annotations

import logging

from fastapi import APIRouter, Request
from pydantic import ValidationError

from livechat.models.error import error_response
from livechat.models.presence import OfflineBeacon, PresenceModel, PresenceRequest

LOGGER = logging.getLogger(__name__)

router = APIRouter()
beacon_router = APIRouter()


@beacon_router.post("/api/presence/offline")
async def presence_offline(request: Request) -> dict:
    # navigator.sendBeacon posts a JSON string as text/plain
    body = await request.body()
    try:
        beacon = OfflineBeacon.model_validate_json(body or b"{}")
    except ValidationError as exc:
        return error_response(400, "BadRequest", f"Invalid offline beacon: {exc.error_count()} error(s)")

    live = request.app.state.live
    if not await live.presence.update_online_status(beacon.userId, False):
        return error_response(502, "StoreUnavailable", "Could not record offline status")
    LOGGER.info("Offline beacon received for %s", beacon.userId)
    return {"status": "ok"}


@router.post("/presence/{user_id}")
async def set_presence(request: Request, user_id: str, payload: PresenceRequest) -> dict:
    live = request.app.state.live
    if not await live.presence.update_online_status(user_id, payload.online):
        return error_response(502, "StoreUnavailable", "Could not update presence")
    return {"status": "ok", "online": payload.online}


@router.get("/presence/{user_id}", response_model=PresenceModel)
async def get_presence(request: Request, user_id: str) -> PresenceModel:
    return await request.app.state.live.presence.get_presence(user_id)
