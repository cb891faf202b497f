from datetime import datetime, timezone
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from persona_chat.utils.content import MESSAGE_TYPES


class MessageOut(BaseModel):
    """A chat message as returned to clients. Provisional messages carry a str id."""

    model_config = ConfigDict(from_attributes=True)

    id: int | str
    conversation_id: Optional[str] = None
    user_id: str
    influencer_id: str
    sender: str
    type: str = "text"
    content: str
    created_at: datetime
    read_at: Optional[datetime] = None
    is_temp: bool = False

    @field_validator("created_at", "read_at")
    @classmethod
    def assume_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        # Naive timestamps (SQLite rows, some clients) are UTC.
        if v is not None and v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v


class SendMessageRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    influencer_id: str = Field(alias="influencerId", min_length=1)
    content: Optional[str] = None
    type: str = "text"
    media: Optional[str] = None
    wants_audio: bool = Field(default=False, alias="wantsAudio")

    @model_validator(mode="after")
    def require_content_or_media(self):
        if self.type not in MESSAGE_TYPES:
            raise ValueError(f"type must be one of {', '.join(MESSAGE_TYPES)}")
        has_text = bool(self.content and self.content.strip())
        if not has_text and not self.media:
            raise ValueError("content is required")
        return self


class SendMessageResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user_message: MessageOut = Field(alias="userMessage")
    ai_message: MessageOut = Field(alias="aiMessage")


class FastSendMessageResponse(SendMessageResponse):
    is_fast_mode: bool = Field(default=True, alias="isFastMode")


class BackgroundSaveRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    influencer_id: str = Field(alias="influencerId", min_length=1)
    user_message: MessageOut = Field(alias="userMessage")
    ai_message: MessageOut = Field(alias="aiMessage")


class BackgroundSaveResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: bool
    error: Optional[str] = None
    user_message: Optional[MessageOut] = Field(default=None, alias="userMessage")
    ai_message: Optional[MessageOut] = Field(default=None, alias="aiMessage")
    duplicate: Optional[bool] = None


class InitializeConversationRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    influencer_id: str = Field(alias="influencerId", min_length=1)


class InitializeConversationResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    conversation_id: str = Field(alias="conversationId")
    tokens: int
    is_new: bool = Field(alias="isNew")


class ConversationSummary(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    conversation_id: str = Field(alias="conversationId")
    influencer_id: str = Field(alias="influencerId")
    influencer_name: str = Field(alias="influencerName")
    avatar_url: Optional[str] = Field(default=None, alias="avatarUrl")
    tokens: int
    last_message: Optional[MessageOut] = Field(default=None, alias="lastMessage")
    unread_count: int = Field(default=0, alias="unreadCount")


class MessagePage(BaseModel):
    messages: List[MessageOut]
    limit: int
    offset: int
    has_more: bool = Field(alias="hasMore")

    model_config = ConfigDict(populate_by_name=True)
