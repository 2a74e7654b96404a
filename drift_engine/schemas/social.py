from pydantic import BaseModel, Field
from uuid import UUID
from datetime import datetime
from typing import Optional

from drift_engine.models.enums import FriendRequestStatus
from drift_engine.schemas.profile import ProfileSummary


class FriendRequestCreate(BaseModel):
    addressee_id: UUID
    message: Optional[str] = Field(None, max_length=500)


class FriendRequestRespond(BaseModel):
    accept: bool


class FriendRequestResponse(BaseModel):
    id: UUID
    requester_id: UUID
    addressee_id: UUID
    status: FriendRequestStatus
    message: Optional[str] = None
    created_at: datetime
    responded_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class FriendResponse(BaseModel):
    profile: ProfileSummary
    friends_since: Optional[datetime] = None


class BlockResponse(BaseModel):
    blocker_id: UUID
    blocked_id: UUID
    created_at: datetime

    model_config = {"from_attributes": True}
