"""
Drift Engine - Relationship Ledger: swipes and mutual-like detection

``Swipe`` rows are the directional facts, one per (swiper, target, mode),
upserted with last-write-wins on direction.

``Match`` rows are the pair's like ledger, one per (canonical pair, mode).
Each swipe performs a single conditional write on that row:

    INSERT ... ON CONFLICT (user_lo_id, user_hi_id, mode) DO UPDATE
        SET <my side>_liked_at = now | NULL,
            matched_at = CASE WHEN matched_at IS NULL
                               AND <their side>_liked_at IS NOT NULL
                              THEN now ELSE matched_at END
    RETURNING *

The store serialises writers on the conflicting row, so two concurrent
opposite likes always see each other: exactly one of them sets
``matched_at`` (and learns it did, because the returned value is its own
``now``), never zero and never two.  Only that caller runs the follow-up
steps (ensure conversation, notify both sides).  Every step is idempotent,
so a retried or half-finished swipe is repaired by ``reconcile_pair`` or by
the next ``list_matches``.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass

import structlog
from sqlalchemy import and_, case, literal, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from drift_engine.database import UTCDateTime, dialect_insert, utcnow
from drift_engine.errors import NotFoundError, StateError, ValidationError
from drift_engine.models.conversation import Conversation, ConversationParticipant
from drift_engine.models.enums import LIKE_DIRECTIONS, ConversationType, Mode, SwipeDirection
from drift_engine.models.match import Match, Swipe
from drift_engine.models.profile import Profile
from drift_engine.models.social import blocked_between
from drift_engine.schemas.events import Topic
from drift_engine.schemas.profile import ProfileSummary
from drift_engine.services.conversation_service import ConversationService
from drift_engine.services.realtime import stage_event
from drift_engine.utils.pairs import canonical_pair

logger = structlog.get_logger("drift.ledger_service")


@dataclass
class MatchView:
    match: Match
    other_user_id: uuid.UUID
    other_profile: ProfileSummary | None = None
    conversation: Conversation | None = None


@dataclass
class SwipeOutcome:
    """Result of ``record_swipe``.

    ``match`` is set when the swipe is a like and the pair is matched after
    it.  ``completed`` is True only for the one call that created the match.
    """

    swipe: Swipe
    match: MatchView | None = None
    completed: bool = False

    @property
    def is_mutual_match(self) -> bool:
        return self.match is not None


class LedgerService:
    """Swipe recording, match detection and ledger reads."""

    def __init__(self, conversation_service: ConversationService | None = None) -> None:
        self.conversations = conversation_service or ConversationService()

    # ══════════════════════════════════════════════════════════════════════
    # record_swipe
    # ══════════════════════════════════════════════════════════════════════

    async def record_swipe(
        self,
        db: AsyncSession,
        actor_id: uuid.UUID,
        target_id: uuid.UUID,
        direction: SwipeDirection,
        mode: Mode,
    ) -> SwipeOutcome:
        """Record ``actor``'s swipe on ``target`` and detect a mutual like.

        Parameters
        ----------
        db:
            Session owning the unit of work.  Callers should run this inside
            ``run_transaction`` so transient failures replay the whole swipe.
        actor_id, target_id:
            Swiping user and the user swiped on.  Must differ.
        direction:
            ``left`` clears the actor's like; ``right`` / ``up`` set it.
        mode:
            Relationship namespace; dating and friends never interact.

        Returns
        -------
        SwipeOutcome
            The stored swipe plus the match (with the other participant's
            profile) when the pair is matched after this like.
        """
        log = logger.bind(
            actor_id=str(actor_id),
            target_id=str(target_id),
            mode=mode.value,
            direction=direction.value,
        )

        if actor_id == target_id:
            raise ValidationError("You cannot swipe on yourself.", code="self_swipe")

        target = await db.get(Profile, target_id)
        if target is None or not target.is_active:
            raise NotFoundError(f"Profile {target_id} not found.")

        if (await db.execute(select(blocked_between(actor_id, target_id)))).scalar():
            raise StateError("This profile is not available.", code="blocked")

        now = utcnow()
        swipe = await self._upsert_swipe(db, actor_id, target_id, direction, mode, now)
        pair_row = await self._write_pair(db, actor_id, target_id, direction, mode, now)

        if direction.is_like:
            stage_event(
                db,
                user_id=target_id,
                topic=Topic.SWIPES,
                entity_type="swipe",
                entity_id=swipe.id,
                change_kind="liked",
            )

        if not (direction.is_like and pair_row.is_match):
            log.info("swipe_recorded", matched=False)
            return SwipeOutcome(swipe=swipe)

        completed = pair_row.matched_at == now and pair_row.matched_by_id == actor_id
        conversation, _ = await self.conversations.ensure_conversation(
            db,
            actor_id,
            target_id,
            ConversationType.for_mode(mode),
            reenter=(actor_id, target_id) if completed else (),
        )

        if completed:
            for user_id in (actor_id, target_id):
                stage_event(
                    db,
                    user_id=user_id,
                    topic=Topic.MATCHES,
                    entity_type="match",
                    entity_id=pair_row.id,
                    change_kind="created",
                )
            log.info("match_created", match_id=str(pair_row.id), conversation_id=str(conversation.id))
        else:
            log.info("swipe_recorded", matched=True, match_id=str(pair_row.id))

        return SwipeOutcome(
            swipe=swipe,
            completed=completed,
            match=MatchView(
                match=pair_row,
                other_user_id=target_id,
                other_profile=ProfileSummary.from_profile(target),
                conversation=conversation,
            ),
        )

    async def _upsert_swipe(
        self,
        db: AsyncSession,
        actor_id: uuid.UUID,
        target_id: uuid.UUID,
        direction: SwipeDirection,
        mode: Mode,
        now,
    ) -> Swipe:
        insert_stmt = dialect_insert(db, Swipe).values(
            id=uuid.uuid4(),
            swiper_id=actor_id,
            target_id=target_id,
            mode=mode,
            direction=direction,
            created_at=now,
        )
        stmt = (
            insert_stmt.on_conflict_do_update(
                index_elements=["swiper_id", "target_id", "mode"],
                set_={"direction": insert_stmt.excluded.direction, "updated_at": now},
            )
            .returning(Swipe)
            .execution_options(populate_existing=True)
        )
        return (await db.execute(stmt)).scalar_one()

    async def _write_pair(
        self,
        db: AsyncSession,
        actor_id: uuid.UUID,
        target_id: uuid.UUID,
        direction: SwipeDirection,
        mode: Mode,
        now,
    ) -> Match:
        """The conditional write that makes mutual-like detection race-safe."""
        lo, hi = canonical_pair(actor_id, target_id)
        actor_is_lo = actor_id == lo
        mine = "lo_liked_at" if actor_is_lo else "hi_liked_at"
        theirs = Match.hi_liked_at if actor_is_lo else Match.lo_liked_at
        liked_at = now if direction.is_like else None

        insert_stmt = dialect_insert(db, Match).values(
            id=uuid.uuid4(),
            user_lo_id=lo,
            user_hi_id=hi,
            mode=mode,
            created_at=now,
            **{mine: liked_at},
        )

        updates: dict = {mine: literal(liked_at, UTCDateTime())}
        if direction.is_like:
            completes = and_(Match.matched_at.is_(None), theirs.is_not(None))
            updates["matched_at"] = case(
                (completes, literal(now, UTCDateTime())), else_=Match.matched_at
            )
            updates["matched_by_id"] = case(
                (completes, literal(actor_id, Match.matched_by_id.type)),
                else_=Match.matched_by_id,
            )

        stmt = (
            insert_stmt.on_conflict_do_update(
                index_elements=["user_lo_id", "user_hi_id", "mode"],
                set_=updates,
            )
            .returning(Match)
            .execution_options(populate_existing=True)
        )
        return (await db.execute(stmt)).scalar_one()

    # ══════════════════════════════════════════════════════════════════════
    # Self-healing
    # ══════════════════════════════════════════════════════════════════════

    async def reconcile_pair(
        self,
        db: AsyncSession,
        user_id: uuid.UUID,
        other_id: uuid.UUID,
        mode: Mode,
    ) -> MatchView | None:
        """Re-derive the pair row from the two swipes and repair side effects.

        Safe to call at any time: a pair that is already consistent is left
        as it is, a mutual like whose match write was lost gets its match,
        and a matched pair missing its conversation gets one.
        """
        log = logger.bind(user_id=str(user_id), other_id=str(other_id), mode=mode.value)
        if user_id == other_id:
            raise ValidationError("A pair needs two distinct users.", code="self_pair")
        lo, hi = canonical_pair(user_id, other_id)

        swipes = (
            await db.execute(
                select(Swipe).where(
                    Swipe.mode == mode,
                    or_(
                        and_(Swipe.swiper_id == lo, Swipe.target_id == hi),
                        and_(Swipe.swiper_id == hi, Swipe.target_id == lo),
                    ),
                )
            )
        ).scalars().all()

        existing = await self._pair_row(db, lo, hi, mode)
        if not swipes and existing is None:
            return None

        like_times = {
            s.swiper_id: (s.updated_at or s.created_at)
            for s in swipes
            if s.direction in LIKE_DIRECTIONS
        }
        lo_liked = like_times.get(lo)
        hi_liked = like_times.get(hi)
        now = utcnow()
        mutual = lo_liked is not None and hi_liked is not None

        insert_stmt = dialect_insert(db, Match).values(
            id=uuid.uuid4(),
            user_lo_id=lo,
            user_hi_id=hi,
            mode=mode,
            lo_liked_at=lo_liked,
            hi_liked_at=hi_liked,
            matched_at=now if mutual else None,
            matched_by_id=user_id if mutual else None,
            created_at=now,
        )
        updates: dict = {
            "lo_liked_at": literal(lo_liked, UTCDateTime()),
            "hi_liked_at": literal(hi_liked, UTCDateTime()),
        }
        if mutual:
            updates["matched_at"] = case(
                (Match.matched_at.is_(None), literal(now, UTCDateTime())),
                else_=Match.matched_at,
            )
            updates["matched_by_id"] = case(
                (Match.matched_at.is_(None), literal(user_id, Match.matched_by_id.type)),
                else_=Match.matched_by_id,
            )

        pair_row = (
            await db.execute(
                insert_stmt.on_conflict_do_update(
                    index_elements=["user_lo_id", "user_hi_id", "mode"],
                    set_=updates,
                )
                .returning(Match)
                .execution_options(populate_existing=True)
            )
        ).scalar_one()

        if not pair_row.is_match:
            log.info("reconcile_pair_unmatched")
            return None

        healed = pair_row.matched_at == now
        conversation, conversation_created = await self.conversations.ensure_conversation(
            db, lo, hi, ConversationType.for_mode(mode)
        )
        if healed:
            for uid in (lo, hi):
                stage_event(
                    db,
                    user_id=uid,
                    topic=Topic.MATCHES,
                    entity_type="match",
                    entity_id=pair_row.id,
                    change_kind="created",
                )
        log.info(
            "reconcile_pair_complete",
            match_id=str(pair_row.id),
            match_healed=healed,
            conversation_healed=conversation_created,
        )

        other = await db.get(Profile, other_id)
        return MatchView(
            match=pair_row,
            other_user_id=other_id,
            other_profile=ProfileSummary.from_profile(other) if other is not None else None,
            conversation=conversation,
        )

    # ══════════════════════════════════════════════════════════════════════
    # Ledger reads
    # ══════════════════════════════════════════════════════════════════════

    async def swiped_ids(
        self, db: AsyncSession, user_id: uuid.UUID, mode: Mode
    ) -> set[uuid.UUID]:
        """Every user ``user_id`` has swiped on in ``mode``, in any direction."""
        rows = await db.execute(
            select(Swipe.target_id).where(Swipe.swiper_id == user_id, Swipe.mode == mode)
        )
        return set(rows.scalars().all())

    async def matched_ids(
        self, db: AsyncSession, user_id: uuid.UUID, mode: Mode
    ) -> set[uuid.UUID]:
        """Counterparts of every completed match ``user_id`` has in ``mode``."""
        rows = await db.execute(
            select(Match.user_lo_id, Match.user_hi_id).where(
                or_(Match.user_lo_id == user_id, Match.user_hi_id == user_id),
                Match.mode == mode,
                Match.matched_at.is_not(None),
            )
        )
        return {hi if lo == user_id else lo for lo, hi in rows.all()}

    async def people_liked_me(
        self, db: AsyncSession, user_id: uuid.UUID, mode: Mode
    ) -> list[ProfileSummary]:
        """Incoming likes the user has not answered yet, newest first."""
        answered = select(Swipe.target_id).where(
            Swipe.swiper_id == user_id, Swipe.mode == mode
        )
        stmt = (
            select(Profile)
            .join(Swipe, Swipe.swiper_id == Profile.user_id)
            .where(
                Swipe.target_id == user_id,
                Swipe.mode == mode,
                Swipe.direction.in_(LIKE_DIRECTIONS),
                Swipe.swiper_id.not_in(answered),
                Profile.is_active.is_(True),
                ~blocked_between(user_id, Swipe.swiper_id),
            )
            .order_by(Swipe.created_at.desc(), Swipe.swiper_id)
        )
        profiles = (await db.execute(stmt)).scalars().all()
        return [ProfileSummary.from_profile(p) for p in profiles]

    async def list_matches(
        self,
        db: AsyncSession,
        user_id: uuid.UUID,
        mode: Mode | None = None,
    ) -> list[MatchView]:
        """Matched pairs for the user, newest first.

        Re-ensures the conversation for every match returned, which repairs
        any match whose conversation write was lost.  Pairs the user has
        unmatched (left the conversation) or blocked are left out.
        """
        stmt = select(Match).where(
            or_(Match.user_lo_id == user_id, Match.user_hi_id == user_id),
            Match.matched_at.is_not(None),
        )
        if mode is not None:
            stmt = stmt.where(Match.mode == mode)
        stmt = stmt.order_by(Match.matched_at.desc(), Match.id)
        matches = (await db.execute(stmt)).scalars().all()

        views: list[MatchView] = []
        for match in matches:
            other_id = match.other_user_id(user_id)
            if (await db.execute(select(blocked_between(user_id, other_id)))).scalar():
                continue
            conversation, _ = await self.conversations.ensure_conversation(
                db, user_id, other_id, ConversationType.for_mode(match.mode)
            )
            mine = await db.get(ConversationParticipant, (conversation.id, user_id))
            if mine is not None and mine.left_at is not None:
                continue
            other = await db.get(Profile, other_id)
            if other is None or not other.is_active:
                continue
            views.append(
                MatchView(
                    match=match,
                    other_user_id=other_id,
                    other_profile=ProfileSummary.from_profile(other),
                    conversation=conversation,
                )
            )

        logger.info("list_matches", user_id=str(user_id), count=len(views))
        return views

    @staticmethod
    async def _pair_row(
        db: AsyncSession, lo: uuid.UUID, hi: uuid.UUID, mode: Mode
    ) -> Match | None:
        return (
            await db.execute(
                select(Match).where(
                    Match.user_lo_id == lo, Match.user_hi_id == hi, Match.mode == mode
                )
            )
        ).scalar_one_or_none()
