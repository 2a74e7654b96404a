"""
Drift Engine - Conversation, participant visibility state and Message models.

A conversation row is shared by exactly two users.  Everything that differs
per user (hidden / left / read markers) lives on ``ConversationParticipant``,
so the same row presents independent state to each side.
"""

import uuid
from datetime import datetime

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    ForeignKey,
    Index,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from drift_engine.database import Base, UTCDateTime, utcnow
from drift_engine.models.enums import ConversationType, ParticipantState, enum_column


class Conversation(Base):
    __tablename__ = "conversations"
    __table_args__ = (
        UniqueConstraint("user_lo_id", "user_hi_id", "type", name="uq_conversation_pair_type"),
        CheckConstraint("user_lo_id <> user_hi_id", name="ck_conversation_not_self"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=uuid.uuid4
    )
    type: Mapped[ConversationType] = mapped_column(
        enum_column(ConversationType), nullable=False
    )
    user_lo_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    user_hi_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    activity_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime, default=utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime, default=utcnow, nullable=False
    )
    last_message_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    # ── Relationships ──────────────────────────────────────────────
    participants: Mapped[list["ConversationParticipant"]] = relationship(
        "ConversationParticipant",
        back_populates="conversation",
        lazy="selectin",
        cascade="all, delete-orphan",
    )

    @property
    def participant_ids(self) -> tuple[uuid.UUID, uuid.UUID]:
        return (self.user_lo_id, self.user_hi_id)

    def has_participant(self, user_id: uuid.UUID) -> bool:
        return user_id in self.participant_ids

    def other_user_id(self, user_id: uuid.UUID) -> uuid.UUID:
        return self.user_hi_id if user_id == self.user_lo_id else self.user_lo_id

    def __repr__(self) -> str:
        return f"<Conversation {self.id} type={self.type} {self.user_lo_id} <-> {self.user_hi_id}>"


class ConversationParticipant(Base):
    __tablename__ = "conversation_participants"
    __table_args__ = (
        Index("ix_participants_user", "user_id", "left_at", "hidden_at"),
    )

    conversation_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("conversations.id", ondelete="CASCADE"), primary_key=True
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True
    )
    joined_at: Mapped[datetime] = mapped_column(
        UTCDateTime, default=utcnow, nullable=False
    )
    hidden_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    left_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    last_read_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    history_cleared_at: Mapped[datetime | None] = mapped_column(
        UTCDateTime,
        nullable=True,
        comment="Messages at or before this instant stay gone after re-entry",
    )
    is_muted: Mapped[bool] = mapped_column(
        Boolean, default=False, server_default="0", nullable=False
    )

    conversation: Mapped[Conversation] = relationship(
        "Conversation", back_populates="participants"
    )

    @property
    def state(self) -> ParticipantState:
        if self.left_at is not None:
            return ParticipantState.LEFT
        if self.hidden_at is not None:
            return ParticipantState.HIDDEN
        return ParticipantState.ACTIVE

    def __repr__(self) -> str:
        return f"<ConversationParticipant {self.user_id} in {self.conversation_id} state={self.state.value}>"


class Message(Base):
    __tablename__ = "messages"
    __table_args__ = (
        UniqueConstraint(
            "conversation_id",
            "sender_id",
            "client_message_id",
            name="uq_message_client_id",
        ),
        Index("ix_messages_conversation_created", "conversation_id", "created_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=uuid.uuid4
    )
    conversation_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("conversations.id", ondelete="CASCADE"), nullable=False
    )
    sender_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    content: Mapped[str] = mapped_column(Text, nullable=False)
    client_message_id: Mapped[str | None] = mapped_column(
        String(64), nullable=True, comment="Idempotency key supplied by the sender"
    )
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime, default=utcnow, nullable=False
    )

    def __repr__(self) -> str:
        return f"<Message {self.id} in {self.conversation_id} from {self.sender_id}>"
