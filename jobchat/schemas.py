from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from jobchat import config
from jobchat.models import ChatMessage


# Largest id a signed 64-bit INTEGER column can hold.
MAX_ID = 2**63 - 1


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class InitiateChatRequest(CamelModel):
    candidate_id: int = Field(..., ge=1, le=MAX_ID)


class ChatMessageIn(CamelModel):
    chat_room_id: int = Field(..., ge=1, le=MAX_ID)
    content: str = Field(..., max_length=config.MAX_MESSAGE_LENGTH)

    @field_validator("content")
    @classmethod
    def content_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("Message content must not be blank")
        return value


class ChatMessageOut(CamelModel):
    id: int
    chat_room_id: int
    sender_id: int
    content: str
    timestamp: datetime
    is_read: bool

    @classmethod
    def from_message(cls, message: ChatMessage) -> "ChatMessageOut":
        return cls(
            id=message.id,
            chat_room_id=message.chat_room_id,
            sender_id=message.sender_id,
            content=message.content,
            timestamp=message.created_at,
            is_read=message.is_read,
        )


class ChatRoomSummary(CamelModel):
    id: int
    recruiter_id: int
    recruiter_name: str
    candidate_id: int
    candidate_name: str
    last_message: Optional[str] = None
    last_message_timestamp: Optional[datetime] = None
    unread_count: int = 0


class UnreadCount(BaseModel):
    count: int


class ClientFrame(BaseModel):
    """One inbound WebSocket frame."""

    command: str
    destination: Optional[str] = None
    id: Optional[str] = None
    body: Optional[dict] = None


def dump(model: BaseModel) -> dict:
    return model.model_dump(mode="json", by_alias=True)
