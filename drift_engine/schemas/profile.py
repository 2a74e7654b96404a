from pydantic import BaseModel, Field, model_validator
from uuid import UUID
from datetime import datetime
from typing import Optional

from drift_engine.models.enums import LookingFor


class ProfileCreate(BaseModel):
    user_id: Optional[UUID] = None
    email: str = Field(min_length=3, max_length=320)
    display_name: str = Field(min_length=1, max_length=80)
    age: Optional[int] = Field(None, ge=18, le=100)
    bio: Optional[str] = Field(None, max_length=1000)
    latitude: Optional[float] = Field(None, ge=-90, le=90)
    longitude: Optional[float] = Field(None, ge=-180, le=180)
    hide_location: bool = False
    interests: list[str] = []
    looking_for: LookingFor = LookingFor.BOTH
    verified: bool = False
    preferred_min_age: Optional[int] = Field(None, ge=18, le=100)
    preferred_max_age: Optional[int] = Field(None, ge=18, le=100)
    preferred_max_distance_miles: Optional[int] = Field(None, ge=1, le=12500)

    @model_validator(mode="after")
    def _check_coordinates(self) -> "ProfileCreate":
        if (self.latitude is None) != (self.longitude is None):
            raise ValueError("latitude and longitude must be provided together")
        return self


class ProfileUpdate(BaseModel):
    display_name: Optional[str] = Field(None, min_length=1, max_length=80)
    age: Optional[int] = Field(None, ge=18, le=100)
    bio: Optional[str] = Field(None, max_length=1000)
    latitude: Optional[float] = Field(None, ge=-90, le=90)
    longitude: Optional[float] = Field(None, ge=-180, le=180)
    hide_location: Optional[bool] = None
    interests: Optional[list[str]] = None
    looking_for: Optional[LookingFor] = None
    verified: Optional[bool] = None
    onboarding_completed: Optional[bool] = None
    preferred_min_age: Optional[int] = Field(None, ge=18, le=100)
    preferred_max_age: Optional[int] = Field(None, ge=18, le=100)
    preferred_max_distance_miles: Optional[int] = Field(None, ge=1, le=12500)


class ProfileResponse(BaseModel):
    user_id: UUID
    display_name: str
    age: Optional[int]
    bio: Optional[str]
    latitude: Optional[float]
    longitude: Optional[float]
    hide_location: bool
    interests: list[str] = []
    looking_for: LookingFor
    verified: bool
    onboarding_completed: bool
    preferred_min_age: Optional[int]
    preferred_max_age: Optional[int]
    preferred_max_distance_miles: Optional[int]
    last_active_at: Optional[datetime]
    created_at: datetime
    is_active: bool

    model_config = {"from_attributes": True}


class ProfileSummary(BaseModel):
    """What another user may see of a profile in feeds and lists."""

    user_id: UUID
    display_name: str
    age: Optional[int] = None
    bio: Optional[str] = None
    interests: list[str] = []
    looking_for: LookingFor
    verified: bool = False
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    distance_miles: Optional[float] = None
    last_active_at: Optional[datetime] = None

    @classmethod
    def from_profile(cls, profile, distance_miles: float | None = None) -> "ProfileSummary":
        reveal = not profile.hide_location
        return cls(
            user_id=profile.user_id,
            display_name=profile.display_name,
            age=profile.age,
            bio=profile.bio,
            interests=list(profile.interests or []),
            looking_for=profile.looking_for,
            verified=profile.verified,
            latitude=profile.latitude if reveal else None,
            longitude=profile.longitude if reveal else None,
            distance_miles=round(distance_miles, 1) if distance_miles is not None else None,
            last_active_at=profile.last_active_at,
        )


class CandidateFeedResponse(BaseModel):
    profiles: list[ProfileSummary]
    exhausted: bool
    next_offset: Optional[int] = None
    recycled: bool = False
