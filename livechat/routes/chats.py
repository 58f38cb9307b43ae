from __future__ import annotations

import asyncio
import logging

from fastapi import APIRouter, Request, WebSocket, WebSocketDisconnect

from livechat.models.chat import (
    ConversationListResponse,
    ConversationModel,
    CreateChatRequest,
    CreateChatResponse,
    ParticipantProfile,
    ReadRequest,
    TypingRequest,
)
from livechat.models.error import error_response, result_error_response

LOGGER = logging.getLogger(__name__)

router = APIRouter()


@router.post("/chats", response_model=CreateChatResponse)
async def get_or_create_chat(request: Request, payload: CreateChatRequest) -> CreateChatResponse:
    live = request.app.state.live
    try:
        chat_id = await live.chats.get_or_create_chat(
            payload.userId, payload.otherUserId, payload.profile, payload.otherProfile
        )
    except ValueError as exc:
        return error_response(400, "BadRequest", str(exc))
    except Exception:
        return error_response(502, "StoreUnavailable", "Failed to create or fetch chat")
    return CreateChatResponse(chatId=chat_id)


@router.post("/chats/{chat_id}/read")
async def mark_read(request: Request, chat_id: str, payload: ReadRequest) -> dict:
    result = await request.app.state.live.messages.mark_messages_as_read(chat_id, payload.userId)
    if not result.success:
        return result_error_response(result)
    return {"status": "ok"}


@router.put("/chats/{chat_id}/typing")
async def set_typing(request: Request, chat_id: str, payload: TypingRequest) -> dict:
    live = request.app.state.live
    if not await live.chats.update_typing_status(chat_id, payload.userId, payload.isTyping):
        return error_response(502, "StoreUnavailable", "Failed to update typing status")
    return {"status": "ok", "isTyping": payload.isTyping}


@router.get("/users/{user_id}/conversations", response_model=ConversationListResponse)
async def list_conversations(request: Request, user_id: str) -> ConversationListResponse:
    conversations = await request.app.state.live.conversations.project_once(user_id)
    return ConversationListResponse(value=conversations)


@router.post("/users/{user_id}/profile")
async def refresh_profile(request: Request, user_id: str, payload: ParticipantProfile) -> dict:
    updated = await request.app.state.live.chats.refresh_profile_in_chats(user_id, payload)
    return {"updated": updated}


@router.websocket("/users/{user_id}/conversations/ws")
async def conversations_feed(websocket: WebSocket, user_id: str) -> None:
    await websocket.accept()
    live = websocket.app.state.live
    updates: asyncio.Queue[list[ConversationModel]] = asyncio.Queue()
    subscription = live.conversations.subscribe(user_id, updates.put_nowait)

    async def _pump() -> None:
        while True:
            conversations = await updates.get()
            await websocket.send_json(
                ConversationListResponse(value=conversations).model_dump(mode="json")
            )

    pump = asyncio.create_task(_pump())
    try:
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        LOGGER.info("Conversation feed for %s closed", user_id)
    finally:
        pump.cancel()
        subscription()
