from __future__ import annotations

from pydantic import BaseModel, Field


class ParticipantProfile(BaseModel):
    firstName: str = ""
    lastName: str = ""
    userName: str = ""
    profilePhoto: str = ""


class CreateChatRequest(BaseModel):
    userId: str
    otherUserId: str
    profile: ParticipantProfile | None = None
    otherProfile: ParticipantProfile | None = None


class CreateChatResponse(BaseModel):
    chatId: str


class ConversationModel(BaseModel):
    id: str
    userName: str
    userAvatar: str = ""
    lastMessage: str = ""
    timestamp: str = ""
    unread: bool = False
    unreadCount: int = 0
    online: bool = False
    otherUserId: str = ""


class ConversationListResponse(BaseModel):
    value: list[ConversationModel] = Field(default_factory=list)


class TypingRequest(BaseModel):
    userId: str
    isTyping: bool


class ReadRequest(BaseModel):
    userId: str
