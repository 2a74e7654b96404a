"""
Drift Engine - Profile model.

One profile per user.  Consumed read-only by the discovery feed; mutated only
through ``ProfileService``.  Profiles are soft-deactivated, never deleted.
"""

import uuid
from datetime import datetime

from sqlalchemy import JSON, Boolean, Float, ForeignKey, Index, Integer, String, Uuid
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from drift_engine.database import Base, UTCDateTime, utcnow
from drift_engine.models.enums import LookingFor, enum_column


class Profile(Base):
    __tablename__ = "profiles"
    __table_args__ = (
        Index("ix_profiles_discovery", "is_active", "looking_for", "last_active_at"),
    )

    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True
    )
    display_name: Mapped[str] = mapped_column(String, nullable=False)
    age: Mapped[int | None] = mapped_column(Integer, nullable=True)
    bio: Mapped[str | None] = mapped_column(String, nullable=True)
    latitude: Mapped[float | None] = mapped_column(Float, nullable=True)
    longitude: Mapped[float | None] = mapped_column(Float, nullable=True)
    hide_location: Mapped[bool] = mapped_column(
        Boolean, default=False, server_default="0", nullable=False
    )
    interests: Mapped[list] = mapped_column(
        JSON().with_variant(JSONB, "postgresql"),
        default=list,
        nullable=False,
        comment="Array of interest tags",
    )
    looking_for: Mapped[LookingFor] = mapped_column(
        enum_column(LookingFor), default=LookingFor.BOTH, nullable=False
    )
    verified: Mapped[bool] = mapped_column(
        Boolean, default=False, server_default="0", nullable=False
    )
    onboarding_completed: Mapped[bool] = mapped_column(
        Boolean, default=True, server_default="1", nullable=False
    )

    # ── Dating preferences ─────────────────────────────────────────
    preferred_min_age: Mapped[int | None] = mapped_column(Integer, nullable=True)
    preferred_max_age: Mapped[int | None] = mapped_column(Integer, nullable=True)
    preferred_max_distance_miles: Mapped[int | None] = mapped_column(Integer, nullable=True)

    last_active_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime, default=utcnow, nullable=False
    )
    updated_at: Mapped[datetime | None] = mapped_column(
        UTCDateTime, onupdate=utcnow, nullable=True
    )
    is_active: Mapped[bool] = mapped_column(
        Boolean, default=True, server_default="1", nullable=False
    )

    def __repr__(self) -> str:
        return f"<Profile {self.display_name!r} user_id={self.user_id} looking_for={self.looking_for}>"
