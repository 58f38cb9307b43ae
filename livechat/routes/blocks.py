from __future__ import annotations

from fastapi import APIRouter, Request

from livechat.models.error import error_response
from livechat.models.presence import BlockRequest, BlockStatusModel

router = APIRouter()


@router.post("/blocks")
async def block_user(request: Request, payload: BlockRequest) -> dict:
    if payload.userId == payload.targetUserId:
        return error_response(400, "BadRequest", "Users cannot block themselves")
    live = request.app.state.live
    if not await live.blocks.block_user(payload.userId, payload.targetUserId):
        return error_response(502, "StoreUnavailable", "Failed to block user")
    return {"blocked": True}


@router.delete("/blocks/{user_id}/{target_id}")
async def unblock_user(request: Request, user_id: str, target_id: str) -> dict:
    live = request.app.state.live
    if not await live.blocks.unblock_user(user_id, target_id):
        return error_response(502, "StoreUnavailable", "Failed to unblock user")
    return {"blocked": False}


@router.get("/blocks/{user_id}")
async def list_blocked(request: Request, user_id: str) -> dict:
    return {"value": await request.app.state.live.blocks.list_blocked_users(user_id)}


@router.get("/blocks/{user_id}/{other_id}", response_model=BlockStatusModel)
async def block_status(request: Request, user_id: str, other_id: str) -> BlockStatusModel:
    return await request.app.state.live.blocks.check_block_status(user_id, other_id)
