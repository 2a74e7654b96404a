"""
Drift Engine - Friend request and Block models.
"""

import uuid
from datetime import datetime

from sqlalchemy import (
    CheckConstraint,
    ForeignKey,
    Index,
    String,
    UniqueConstraint,
    Uuid,
    and_,
    exists,
    or_,
)
from sqlalchemy.orm import Mapped, mapped_column

from drift_engine.database import Base, UTCDateTime, utcnow
from drift_engine.models.enums import FriendRequestStatus, enum_column


class FriendRequest(Base):
    """One row per unordered pair; direction lives in requester/addressee."""

    __tablename__ = "friend_requests"
    __table_args__ = (
        UniqueConstraint("user_lo_id", "user_hi_id", name="uq_friend_request_pair"),
        CheckConstraint("requester_id <> addressee_id", name="ck_friend_request_not_self"),
        Index("ix_friend_requests_addressee_status", "addressee_id", "status"),
        Index("ix_friend_requests_requester_status", "requester_id", "status"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=uuid.uuid4
    )
    user_lo_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    user_hi_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    requester_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    addressee_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    status: Mapped[FriendRequestStatus] = mapped_column(
        enum_column(FriendRequestStatus),
        default=FriendRequestStatus.PENDING,
        nullable=False,
    )
    message: Mapped[str | None] = mapped_column(
        String, nullable=True, comment="Becomes the first message on acceptance"
    )
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime, default=utcnow, nullable=False
    )
    updated_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    responded_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    def other_user_id(self, user_id: uuid.UUID) -> uuid.UUID:
        return self.addressee_id if user_id == self.requester_id else self.requester_id

    def __repr__(self) -> str:
        return f"<FriendRequest {self.requester_id} -> {self.addressee_id} status={self.status}>"


class Block(Base):
    __tablename__ = "blocks"
    __table_args__ = (
        CheckConstraint("blocker_id <> blocked_id", name="ck_block_not_self"),
        Index("ix_blocks_blocked", "blocked_id"),
    )

    blocker_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True
    )
    blocked_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True
    )
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime, default=utcnow, nullable=False
    )

    def __repr__(self) -> str:
        return f"<Block {self.blocker_id} -x-> {self.blocked_id}>"


def blocked_between(user_a, user_b):
    """EXISTS clause true when either user has blocked the other.

    Arguments may be UUIDs or column expressions, so the clause can be
    correlated into feed and listing queries.
    """
    return exists().where(
        or_(
            and_(Block.blocker_id == user_a, Block.blocked_id == user_b),
            and_(Block.blocker_id == user_b, Block.blocked_id == user_a),
        )
    )
