"""
Drift Engine - Conversation Store & Visibility State Machine

One ``conversations`` row per (canonical pair, type).  Each participant has a
``conversation_participants`` row carrying independent visibility state:

    Active --hide--> Hidden --unhide--> Active
    Active | Hidden --leave--> Left            (terminal for the leaver)

A Left participant re-enters as Active only when the other side sends a new
message or the leaver explicitly asks for the conversation again; messages
from before the leave stay hidden for them (``history_cleared_at``).

Concurrency:
  * creation is ``INSERT ... ON CONFLICT DO NOTHING`` on the unique pair key
    followed by a read, so N concurrent callers converge on one row;
  * state changes and sends lock the rows they mutate (``FOR UPDATE`` on
    PostgreSQL; SQLite serialises writers on its own).
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable

import structlog
from sqlalchemy import and_, case, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from drift_engine.config import get_settings
from drift_engine.database import dialect_insert, utcnow
from drift_engine.errors import NotFoundError, StateError, ValidationError
from drift_engine.models.conversation import (
    Conversation,
    ConversationParticipant,
    Message,
)
from drift_engine.models.enums import ConversationType, ParticipantState
from drift_engine.models.social import blocked_between
from drift_engine.schemas.events import Topic
from drift_engine.services.realtime import stage_event
from drift_engine.utils.pairs import canonical_pair

logger = structlog.get_logger("drift.conversation_service")

VISIBLE = "visible"
HIDDEN = "hidden"


@dataclass
class ConversationView:
    """A conversation as one participant sees it."""

    conversation: Conversation
    participant: ConversationParticipant
    other_user_id: uuid.UUID
    unread_count: int = 0
    last_message: Message | None = None
    created: bool = False

    @property
    def state(self) -> ParticipantState:
        return self.participant.state

    @property
    def unread(self) -> bool:
        return self.unread_count > 0


class ConversationService:
    """Conversation lifecycle, messaging and per-participant visibility."""

    def __init__(self) -> None:
        self.max_message_length = get_settings().MAX_MESSAGE_LENGTH

    # ══════════════════════════════════════════════════════════════════════
    # Creation
    # ══════════════════════════════════════════════════════════════════════

    async def fetch_or_create(
        self,
        db: AsyncSession,
        requester_id: uuid.UUID,
        other_id: uuid.UUID,
        conversation_type: ConversationType,
        activity_id: uuid.UUID | None = None,
    ) -> tuple[Conversation, bool]:
        """Return the conversation for the pair and type, creating it if absent.

        Idempotent: an existing row is returned unmodified, except that a
        requester who had Left re-enters it as Active.

        Returns
        -------
        tuple[Conversation, bool]
            The conversation and whether this call created it.
        """
        return await self.ensure_conversation(
            db,
            requester_id,
            other_id,
            conversation_type,
            activity_id=activity_id,
            reenter=(requester_id,),
        )

    async def ensure_conversation(
        self,
        db: AsyncSession,
        user_a: uuid.UUID,
        user_b: uuid.UUID,
        conversation_type: ConversationType,
        *,
        activity_id: uuid.UUID | None = None,
        reenter: Iterable[uuid.UUID] = (),
    ) -> tuple[Conversation, bool]:
        """Create-if-absent shared by matching, friendships and direct requests.

        ``reenter`` lists participants whose Left state is cleared.  Ledger
        self-healing passes nothing, so repairing a conversation never undoes
        somebody's leave.
        """
        if user_a == user_b:
            raise ValidationError("A conversation needs two distinct users.", code="self_conversation")

        lo, hi = canonical_pair(user_a, user_b)
        now = utcnow()
        log = logger.bind(user_lo=str(lo), user_hi=str(hi), type=conversation_type.value)

        insert_stmt = (
            dialect_insert(db, Conversation)
            .values(
                id=uuid.uuid4(),
                type=conversation_type,
                user_lo_id=lo,
                user_hi_id=hi,
                activity_id=activity_id,
                created_at=now,
                updated_at=now,
            )
            .on_conflict_do_nothing(index_elements=["user_lo_id", "user_hi_id", "type"])
            .returning(Conversation.id)
        )
        created_id = (await db.execute(insert_stmt)).scalar_one_or_none()
        created = created_id is not None

        # Participant rows are (re)asserted on every call so a partially
        # written pair heals itself.
        conversation_id = created_id or await self._conversation_id(db, lo, hi, conversation_type)
        for user_id in (lo, hi):
            await db.execute(
                dialect_insert(db, ConversationParticipant)
                .values(conversation_id=conversation_id, user_id=user_id, joined_at=now)
                .on_conflict_do_nothing(index_elements=["conversation_id", "user_id"])
            )

        conversation = (
            await db.execute(
                select(Conversation)
                .where(
                    Conversation.user_lo_id == lo,
                    Conversation.user_hi_id == hi,
                    Conversation.type == conversation_type,
                )
                .execution_options(populate_existing=True)
            )
        ).scalar_one()

        if created:
            log.info("conversation_created", conversation_id=str(conversation.id))
            for user_id in (lo, hi):
                stage_event(
                    db,
                    user_id=user_id,
                    topic=Topic.CONVERSATIONS,
                    entity_type="conversation",
                    entity_id=conversation.id,
                    change_kind="created",
                )
            return conversation, True

        for user_id in set(reenter):
            participant = await self._lock_participant(db, conversation.id, user_id)
            if participant.left_at is not None:
                self._reenter(participant, now)
                log.info("conversation_reentered", conversation_id=str(conversation.id), user_id=str(user_id))
                stage_event(
                    db,
                    user_id=user_id,
                    topic=Topic.CONVERSATIONS,
                    entity_type="conversation",
                    entity_id=conversation.id,
                    change_kind="reentered",
                )
        await db.flush()
        return conversation, False

    # ══════════════════════════════════════════════════════════════════════
    # Visibility transitions
    # ══════════════════════════════════════════════════════════════════════

    async def hide(
        self, db: AsyncSession, conversation_id: uuid.UUID, user_id: uuid.UUID
    ) -> ConversationParticipant:
        """Active -> Hidden.  Hiding an already hidden conversation is a no-op."""
        participant = await self._lock_participant(db, conversation_id, user_id)
        if participant.state is ParticipantState.LEFT:
            raise StateError("You left this conversation.", code="conversation_left")
        if participant.state is ParticipantState.ACTIVE:
            participant.hidden_at = utcnow()
            await self._state_changed(db, participant, "hidden")
        return participant

    async def unhide(
        self, db: AsyncSession, conversation_id: uuid.UUID, user_id: uuid.UUID
    ) -> ConversationParticipant:
        """Hidden -> Active.  Unhiding an active conversation is a no-op."""
        participant = await self._lock_participant(db, conversation_id, user_id)
        if participant.state is ParticipantState.LEFT:
            raise StateError("You left this conversation.", code="conversation_left")
        if participant.state is ParticipantState.HIDDEN:
            participant.hidden_at = None
            await self._state_changed(db, participant, "unhidden")
        return participant

    async def leave(
        self, db: AsyncSession, conversation_id: uuid.UUID, user_id: uuid.UUID
    ) -> ConversationParticipant:
        """Active | Hidden -> Left.  Only the leaver's view changes."""
        participant = await self._lock_participant(db, conversation_id, user_id)
        if participant.state is not ParticipantState.LEFT:
            participant.left_at = utcnow()
            participant.hidden_at = None
            await self._state_changed(db, participant, "left")
        return participant

    async def mute(
        self, db: AsyncSession, conversation_id: uuid.UUID, user_id: uuid.UUID
    ) -> ConversationParticipant:
        """Silence notifications.  Orthogonal to visibility and unread."""
        return await self._set_muted(db, conversation_id, user_id, True)

    async def unmute(
        self, db: AsyncSession, conversation_id: uuid.UUID, user_id: uuid.UUID
    ) -> ConversationParticipant:
        return await self._set_muted(db, conversation_id, user_id, False)

    async def _set_muted(
        self,
        db: AsyncSession,
        conversation_id: uuid.UUID,
        user_id: uuid.UUID,
        muted: bool,
    ) -> ConversationParticipant:
        participant = await self._lock_participant(db, conversation_id, user_id)
        if participant.state is ParticipantState.LEFT:
            raise StateError("You left this conversation.", code="conversation_left")
        if participant.is_muted != muted:
            participant.is_muted = muted
            await self._state_changed(db, participant, "muted" if muted else "unmuted")
        return participant

    # ══════════════════════════════════════════════════════════════════════
    # Messaging
    # ══════════════════════════════════════════════════════════════════════

    async def send_message(
        self,
        db: AsyncSession,
        conversation_id: uuid.UUID,
        sender_id: uuid.UUID,
        content: str,
        client_message_id: str | None = None,
    ) -> Message:
        """Append a message from ``sender_id``.

        Rules
        -----
        * the sender must be a participant and must not have Left;
        * a block in either direction refuses the message;
        * a recipient who had Left is re-activated (only the recipient);
        * a Hidden recipient stays Hidden but accrues unread messages;
        * retrying with the same ``client_message_id`` returns the original.
        """
        log = logger.bind(conversation_id=str(conversation_id), sender_id=str(sender_id))

        content = (content or "").strip()
        if not content:
            raise ValidationError("Message content cannot be empty.", code="empty_message")
        if len(content) > self.max_message_length:
            raise ValidationError(
                f"Message exceeds {self.max_message_length} characters.",
                code="message_too_long",
            )

        # The conversation row lock serialises concurrent sends per conversation.
        conversation = await db.get(Conversation, conversation_id, with_for_update=True)
        if conversation is None or not conversation.has_participant(sender_id):
            raise NotFoundError(f"Conversation {conversation_id} not found.")

        if client_message_id:
            existing = (
                await db.execute(
                    select(Message).where(
                        Message.conversation_id == conversation_id,
                        Message.sender_id == sender_id,
                        Message.client_message_id == client_message_id,
                    )
                )
            ).scalar_one_or_none()
            if existing is not None:
                log.info("send_message_replayed", message_id=str(existing.id))
                return existing

        sender = await self._lock_participant(db, conversation_id, sender_id)
        if sender.state is ParticipantState.LEFT:
            raise StateError("You left this conversation.", code="conversation_left")

        recipient_id = conversation.other_user_id(sender_id)
        if (await db.execute(select(blocked_between(sender_id, recipient_id)))).scalar():
            raise StateError("Messaging is not available with this user.", code="blocked")

        now = utcnow()
        message = Message(
            conversation_id=conversation_id,
            sender_id=sender_id,
            content=content,
            client_message_id=client_message_id,
            created_at=now,
        )
        db.add(message)

        conversation.updated_at = now
        conversation.last_message_at = now
        sender.last_read_at = now

        recipient = await self._lock_participant(db, conversation_id, recipient_id)
        reentered = recipient.left_at is not None
        if reentered:
            self._reenter(recipient, now)

        await db.flush()

        for user_id in (sender_id, recipient_id):
            stage_event(
                db,
                user_id=user_id,
                topic=Topic.CONVERSATIONS,
                entity_type="message",
                entity_id=message.id,
                change_kind="created",
            )

        log.info("message_sent", message_id=str(message.id), recipient_reentered=reentered)
        return message

    async def mark_read(
        self, db: AsyncSession, conversation_id: uuid.UUID, user_id: uuid.UUID
    ) -> ConversationParticipant:
        """Opening a conversation: ``last_read_at = now`` for this user only."""
        participant = await self._lock_participant(db, conversation_id, user_id)
        if participant.state is ParticipantState.LEFT:
            raise StateError("You left this conversation.", code="conversation_left")
        now = utcnow()
        if participant.last_read_at is None or participant.last_read_at < now:
            participant.last_read_at = now
        await self._state_changed(db, participant, "read")
        return participant

    async def list_messages(
        self,
        db: AsyncSession,
        conversation_id: uuid.UUID,
        user_id: uuid.UUID,
        *,
        limit: int = 50,
        before: datetime | None = None,
    ) -> list[Message]:
        """Messages visible to ``user_id``, oldest first.

        ``before`` pages backwards through history; messages the user cleared
        by leaving are never returned.
        """
        participant = await db.get(ConversationParticipant, (conversation_id, user_id))
        if participant is None:
            raise NotFoundError(f"Conversation {conversation_id} not found.")
        if participant.state is ParticipantState.LEFT:
            raise StateError("You left this conversation.", code="conversation_left")

        stmt = select(Message).where(Message.conversation_id == conversation_id)
        if participant.history_cleared_at is not None:
            stmt = stmt.where(Message.created_at > participant.history_cleared_at)
        if before is not None:
            stmt = stmt.where(Message.created_at < before)
        stmt = stmt.order_by(Message.created_at.desc(), Message.id.desc()).limit(limit)

        rows = list((await db.execute(stmt)).scalars().all())
        rows.reverse()
        return rows

    # ══════════════════════════════════════════════════════════════════════
    # Listing & unread
    # ══════════════════════════════════════════════════════════════════════

    async def list_conversations(
        self,
        db: AsyncSession,
        user_id: uuid.UUID,
        view: str = VISIBLE,
    ) -> list[ConversationView]:
        """Conversations in the user's ``visible`` (Active) or ``hidden`` list.

        Left conversations appear in neither; conversations with a blocked
        counterpart are withheld from both.
        """
        if view not in (VISIBLE, HIDDEN):
            raise ValidationError(f"Unknown conversation view {view!r}.")

        stmt = self._participation_query(user_id)
        if view == VISIBLE:
            stmt = stmt.where(ConversationParticipant.hidden_at.is_(None))
        else:
            stmt = stmt.where(ConversationParticipant.hidden_at.is_not(None))
        stmt = stmt.order_by(Conversation.updated_at.desc(), Conversation.id)

        pairs = (await db.execute(stmt)).all()
        if not pairs:
            return []

        conversation_ids = [conversation.id for conversation, _ in pairs]
        unread = await self._unread_counts(db, user_id, conversation_ids)
        latest = await self._latest_messages(db, [participant for _, participant in pairs])

        views = [
            ConversationView(
                conversation=conversation,
                participant=participant,
                other_user_id=conversation.other_user_id(user_id),
                unread_count=unread.get(conversation.id, 0),
                last_message=latest.get(conversation.id),
            )
            for conversation, participant in pairs
        ]
        logger.debug("list_conversations", user_id=str(user_id), view=view, count=len(views))
        return views

    async def get_view(
        self, db: AsyncSession, conversation_id: uuid.UUID, user_id: uuid.UUID
    ) -> ConversationView:
        conversation = await db.get(Conversation, conversation_id)
        if conversation is None or not conversation.has_participant(user_id):
            raise NotFoundError(f"Conversation {conversation_id} not found.")
        participant = await db.get(ConversationParticipant, (conversation_id, user_id))
        if participant is None:
            raise NotFoundError(f"Conversation {conversation_id} not found.")
        unread = await self._unread_counts(db, user_id, [conversation_id])
        latest = await self._latest_messages(db, [participant])
        return ConversationView(
            conversation=conversation,
            participant=participant,
            other_user_id=conversation.other_user_id(user_id),
            unread_count=unread.get(conversation_id, 0),
            last_message=latest.get(conversation_id),
        )

    async def is_unread(
        self, db: AsyncSession, conversation_id: uuid.UUID, user_id: uuid.UUID
    ) -> bool:
        counts = await self._unread_counts(db, user_id, [conversation_id])
        return counts.get(conversation_id, 0) > 0

    async def unread_total(self, db: AsyncSession, user_id: uuid.UUID) -> int:
        """Number of unread conversations across the visible and hidden lists."""
        rows = (await db.execute(self._participation_query(user_id))).all()
        if not rows:
            return 0
        counts = await self._unread_counts(db, user_id, [c.id for c, _ in rows])
        return sum(1 for count in counts.values() if count > 0)

    # ══════════════════════════════════════════════════════════════════════
    # Internals
    # ══════════════════════════════════════════════════════════════════════

    @staticmethod
    def _other_user_column(user_id: uuid.UUID):
        return case(
            (Conversation.user_lo_id == user_id, Conversation.user_hi_id),
            else_=Conversation.user_lo_id,
        )

    def _participation_query(self, user_id: uuid.UUID):
        """Conversations the user has not Left, minus blocked counterparts."""
        return (
            select(Conversation, ConversationParticipant)
            .join(
                ConversationParticipant,
                and_(
                    ConversationParticipant.conversation_id == Conversation.id,
                    ConversationParticipant.user_id == user_id,
                ),
            )
            .where(
                ConversationParticipant.left_at.is_(None),
                ~blocked_between(user_id, self._other_user_column(user_id)),
            )
        )

    @staticmethod
    async def _unread_counts(
        db: AsyncSession,
        user_id: uuid.UUID,
        conversation_ids: list[uuid.UUID],
    ) -> dict[uuid.UUID, int]:
        """Messages from the other participant newer than the user's read marker."""
        participant = ConversationParticipant
        stmt = (
            select(Message.conversation_id, func.count(Message.id))
            .join(
                participant,
                and_(
                    participant.conversation_id == Message.conversation_id,
                    participant.user_id == user_id,
                ),
            )
            .where(
                Message.conversation_id.in_(conversation_ids),
                Message.sender_id != user_id,
                or_(
                    participant.last_read_at.is_(None),
                    Message.created_at > participant.last_read_at,
                ),
                or_(
                    participant.history_cleared_at.is_(None),
                    Message.created_at > participant.history_cleared_at,
                ),
            )
            .group_by(Message.conversation_id)
        )
        return {conversation_id: count for conversation_id, count in (await db.execute(stmt)).all()}

    @staticmethod
    async def _latest_messages(
        db: AsyncSession,
        participants: list[ConversationParticipant],
    ) -> dict[uuid.UUID, Message]:
        latest: dict[uuid.UUID, Message] = {}
        for participant in participants:
            stmt = select(Message).where(Message.conversation_id == participant.conversation_id)
            if participant.history_cleared_at is not None:
                stmt = stmt.where(Message.created_at > participant.history_cleared_at)
            stmt = stmt.order_by(Message.created_at.desc(), Message.id.desc()).limit(1)
            message = (await db.execute(stmt)).scalar_one_or_none()
            if message is not None:
                latest[participant.conversation_id] = message
        return latest

    @staticmethod
    async def _conversation_id(
        db: AsyncSession,
        lo: uuid.UUID,
        hi: uuid.UUID,
        conversation_type: ConversationType,
    ) -> uuid.UUID:
        return (
            await db.execute(
                select(Conversation.id).where(
                    Conversation.user_lo_id == lo,
                    Conversation.user_hi_id == hi,
                    Conversation.type == conversation_type,
                )
            )
        ).scalar_one()

    @staticmethod
    async def _lock_participant(
        db: AsyncSession, conversation_id: uuid.UUID, user_id: uuid.UUID
    ) -> ConversationParticipant:
        participant = (
            await db.execute(
                select(ConversationParticipant)
                .where(
                    ConversationParticipant.conversation_id == conversation_id,
                    ConversationParticipant.user_id == user_id,
                )
                .with_for_update()
                .execution_options(populate_existing=True)
            )
        ).scalar_one_or_none()
        if participant is None:
            raise NotFoundError(f"Conversation {conversation_id} not found.")
        return participant

    @staticmethod
    def _reenter(participant: ConversationParticipant, now: datetime) -> None:
        """Left -> Active, keeping everything before the leave out of view."""
        left_at = participant.left_at
        if left_at is not None and (
            participant.history_cleared_at is None or participant.history_cleared_at < left_at
        ):
            participant.history_cleared_at = left_at
        participant.left_at = None
        participant.hidden_at = None
        participant.joined_at = now

    @staticmethod
    async def _state_changed(
        db: AsyncSession, participant: ConversationParticipant, change_kind: str
    ) -> None:
        await db.flush()
        # Only the acting user's own devices care; the other side's view is unchanged.
        stage_event(
            db,
            user_id=participant.user_id,
            topic=Topic.CONVERSATIONS,
            entity_type="conversation",
            entity_id=participant.conversation_id,
            change_kind=change_kind,
        )
        logger.info(
            "participant_state_changed",
            conversation_id=str(participant.conversation_id),
            user_id=str(participant.user_id),
            change=change_kind,
            state=participant.state.value,
        )
