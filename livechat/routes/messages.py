from __future__ import annotations

import logging

from fastapi import APIRouter, Query, Request

from livechat.models.error import error_response, result_error_response
from livechat.models.message import (
    MessageListResponse,
    OperationResult,
    SendMessageRequest,
    SendRoomMessageRequest,
)

LOGGER = logging.getLogger(__name__)

router = APIRouter()


@router.get("/chats/{chat_id}/messages", response_model=MessageListResponse)
async def list_chat_messages(request: Request, chat_id: str) -> MessageListResponse:
    live = request.app.state.live
    chat = await live.chats.get_chat(chat_id)
    if not chat.exists:
        return error_response(404, "ItemNotFound", f"Chat '{chat_id}' was not found")
    return MessageListResponse(value=await live.messages.list_messages(chat_id))


@router.post("/chats/{chat_id}/messages", response_model=OperationResult, status_code=201)
async def send_chat_message(request: Request, chat_id: str, payload: SendMessageRequest) -> OperationResult:
    result = await request.app.state.live.messages.send_message(
        chat_id, payload.message, payload.senderId, payload.senderName, payload.senderProfileUrl
    )
    if not result.success:
        return result_error_response(result)
    return result


@router.post("/chats/{chat_id}/images", response_model=OperationResult, status_code=201)
async def send_chat_image(
    request: Request,
    chat_id: str,
    sender_id: str = Query(alias="senderId"),
    sender_name: str = Query(default="", alias="senderName"),
    sender_profile_url: str = Query(default="", alias="senderProfileUrl"),
    filename: str = Query(default="image.jpg"),
) -> OperationResult:
    live = request.app.state.live
    data = await request.body()
    try:
        url = await live.uploader.upload_chat_image(
            data, filename, sender_id, request.headers.get("content-type")
        )
    except ValueError as exc:
        return error_response(400, "BadRequest", str(exc))
    except Exception:
        LOGGER.exception("Error uploading image for chat %s", chat_id)
        return error_response(502, "StorageUnavailable", "Failed to upload image")

    result = await live.messages.send_message(chat_id, url, sender_id, sender_name, sender_profile_url)
    if not result.success:
        return result_error_response(result)
    return result


@router.get("/chats/{chat_id}/unread/{user_id}")
async def unread_count(request: Request, chat_id: str, user_id: str) -> dict:
    return {"unreadCount": await request.app.state.live.messages.unread_count(chat_id, user_id)}


@router.get("/rooms/{show_id}/messages", response_model=MessageListResponse)
async def list_room_messages(request: Request, show_id: str) -> MessageListResponse:
    return MessageListResponse(value=await request.app.state.live.messages.list_room_messages(show_id))


@router.post("/rooms/{show_id}/messages", response_model=OperationResult, status_code=201)
async def send_room_message(request: Request, show_id: str, payload: SendRoomMessageRequest) -> OperationResult:
    result = await request.app.state.live.messages.send_room_message(
        show_id,
        payload.message,
        payload.senderId,
        payload.senderName,
        payload.senderProfileUrl,
        payload.mentions,
    )
    if not result.success:
        return result_error_response(result)
    return result
