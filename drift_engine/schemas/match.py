from pydantic import BaseModel
from uuid import UUID
from datetime import datetime
from typing import Optional

from drift_engine.models.enums import Mode, SwipeDirection
from drift_engine.schemas.profile import ProfileSummary


class SwipeCreate(BaseModel):
    target_id: UUID
    direction: SwipeDirection = SwipeDirection.RIGHT
    mode: Mode = Mode.DATING


class MatchResponse(BaseModel):
    match_id: UUID
    mode: Mode
    other_user_id: UUID
    other_profile: Optional[ProfileSummary] = None
    matched_at: datetime
    conversation_id: Optional[UUID] = None


class SwipeResponse(BaseModel):
    status: str
    direction: SwipeDirection
    is_mutual_match: bool
    match: Optional[MatchResponse] = None


class UserIdList(BaseModel):
    user_ids: list[UUID]
