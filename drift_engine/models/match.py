"""
Drift Engine - Swipe and Match models.

``Swipe`` is the directional fact.  ``Match`` is the pair's like ledger keyed
by the canonical pair plus mode: each side's like timestamp lives on the same
row, so the store serialises the two directions on one unique key and the
mutual-like check-and-set happens in a single conditional write.
"""

import uuid
from datetime import datetime

from sqlalchemy import CheckConstraint, ForeignKey, Index, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from drift_engine.database import Base, UTCDateTime, utcnow
from drift_engine.models.enums import Mode, SwipeDirection, enum_column


class Match(Base):
    __tablename__ = "matches"
    __table_args__ = (
        UniqueConstraint("user_lo_id", "user_hi_id", "mode", name="uq_match_pair_mode"),
        CheckConstraint("user_lo_id <> user_hi_id", name="ck_match_not_self"),
        Index("ix_matches_lo_matched", "user_lo_id", "matched_at"),
        Index("ix_matches_hi_matched", "user_hi_id", "matched_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=uuid.uuid4
    )
    # Canonical pair: user_lo_id sorts before user_hi_id
    user_lo_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    user_hi_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    mode: Mapped[Mode] = mapped_column(enum_column(Mode), nullable=False)
    lo_liked_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    hi_liked_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    matched_at: Mapped[datetime | None] = mapped_column(
        UTCDateTime, nullable=True, comment="Set once, never cleared"
    )
    matched_by_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, nullable=True, comment="User whose like completed the match"
    )
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime, default=utcnow, nullable=False
    )

    @property
    def is_match(self) -> bool:
        return self.matched_at is not None

    def other_user_id(self, user_id: uuid.UUID) -> uuid.UUID:
        return self.user_hi_id if user_id == self.user_lo_id else self.user_lo_id

    def __repr__(self) -> str:
        return (
            f"<Match {self.user_lo_id} <-> {self.user_hi_id} "
            f"mode={self.mode} matched={self.is_match}>"
        )


class Swipe(Base):
    __tablename__ = "swipes"
    __table_args__ = (
        UniqueConstraint("swiper_id", "target_id", "mode", name="uq_swipe_pair_mode"),
        Index("ix_swipes_target_mode", "target_id", "mode"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=uuid.uuid4
    )
    swiper_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    target_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    mode: Mapped[Mode] = mapped_column(enum_column(Mode), nullable=False)
    direction: Mapped[SwipeDirection] = mapped_column(
        enum_column(SwipeDirection), nullable=False, comment="left / right / up"
    )
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime, default=utcnow, nullable=False
    )
    updated_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    def __repr__(self) -> str:
        return f"<Swipe {self.swiper_id} -> {self.target_id} mode={self.mode} dir={self.direction}>"
