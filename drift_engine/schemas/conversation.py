from pydantic import BaseModel, Field
from uuid import UUID
from datetime import datetime
from typing import Optional

from drift_engine.models.enums import ConversationType, ParticipantState


class ConversationCreate(BaseModel):
    other_user_id: UUID
    type: ConversationType = ConversationType.DATING
    activity_id: Optional[UUID] = None


class MessageCreate(BaseModel):
    content: str = Field(min_length=1)
    client_message_id: Optional[str] = Field(None, max_length=64)


class MessageResponse(BaseModel):
    id: UUID
    conversation_id: UUID
    sender_id: UUID
    content: str
    client_message_id: Optional[str] = None
    created_at: datetime

    model_config = {"from_attributes": True}


class ParticipantStateResponse(BaseModel):
    conversation_id: UUID
    user_id: UUID
    state: ParticipantState
    hidden_at: Optional[datetime] = None
    left_at: Optional[datetime] = None
    last_read_at: Optional[datetime] = None
    is_muted: bool = False

    model_config = {"from_attributes": True}


class ConversationResponse(BaseModel):
    id: UUID
    type: ConversationType
    other_user_id: UUID
    state: ParticipantState
    unread: bool = False
    unread_count: int = 0
    last_message: Optional[MessageResponse] = None
    last_message_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime
    created: bool = False


class UnreadTotalResponse(BaseModel):
    unread_conversations: int
