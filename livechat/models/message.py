from __future__ import annotations

from pydantic import BaseModel, Field


class MentionModel(BaseModel):
    id: str
    name: str


class ChatMessageModel(BaseModel):
    id: str
    message: str = ""
    date: str = "0"
    sender: str = ""
    senderName: str = ""
    senderProfileUrl: str = ""
    seen: bool = False
    mentions: list[MentionModel] = Field(default_factory=list)


class SendMessageRequest(BaseModel):
    senderId: str
    senderName: str = ""
    senderProfileUrl: str = ""
    message: str = Field(min_length=1)


class SendRoomMessageRequest(SendMessageRequest):
    mentions: list[MentionModel] = Field(default_factory=list)


class MessageListResponse(BaseModel):
    value: list[ChatMessageModel] = Field(default_factory=list)


class OperationResult(BaseModel):
    success: bool
    error: str | None = None
    id: str | None = None
