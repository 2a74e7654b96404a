"""
Drift Engine - Block/Friend Ledger

Friend requests are stored one row per canonical pair; the row's
requester/addressee record the current direction.  Blocks are directed facts
that are never rewritten, only added or removed.

Exclusion-set queries live here too, since the feed's exclusion set is the
union of the ledger (swiped and matched ids), blocks in either direction
and, in friends mode, existing or pending friendships.
"""

from __future__ import annotations

import uuid

import structlog
from sqlalchemy import and_, delete, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from drift_engine.database import dialect_insert, utcnow
from drift_engine.errors import ConflictError, NotFoundError, StateError, ValidationError
from drift_engine.models.enums import ConversationType, FriendRequestStatus, Mode
from drift_engine.models.profile import Profile
from drift_engine.models.social import Block, FriendRequest, blocked_between
from drift_engine.models.user import User
from drift_engine.schemas.events import Topic
from drift_engine.schemas.profile import ProfileSummary
from drift_engine.schemas.social import FriendResponse
from drift_engine.services.conversation_service import ConversationService
from drift_engine.services.ledger_service import LedgerService
from drift_engine.services.realtime import stage_event
from drift_engine.utils.pairs import canonical_pair

logger = structlog.get_logger("drift.social_service")


class SocialService:
    """Friend requests, blocks and exclusion sets."""

    def __init__(
        self,
        conversation_service: ConversationService | None = None,
        ledger_service: LedgerService | None = None,
    ) -> None:
        self.conversations = conversation_service or ConversationService()
        self.ledger = ledger_service or LedgerService(self.conversations)

    # ══════════════════════════════════════════════════════════════════════
    # Friend requests
    # ══════════════════════════════════════════════════════════════════════

    async def send_friend_request(
        self,
        db: AsyncSession,
        requester_id: uuid.UUID,
        addressee_id: uuid.UUID,
        message: str | None = None,
    ) -> FriendRequest:
        """Ask ``addressee_id`` to be friends.

        Repeats converge on one row per pair:
          * same-direction pending or already accepted: the existing request;
          * pending in the reverse direction: counts as accepting it;
          * previously declined: re-opened as pending from this requester.
        """
        log = logger.bind(requester_id=str(requester_id), addressee_id=str(addressee_id))

        if requester_id == addressee_id:
            raise ValidationError("You cannot befriend yourself.", code="self_request")

        addressee = await db.get(Profile, addressee_id)
        if addressee is None or not addressee.is_active:
            raise NotFoundError(f"Profile {addressee_id} not found.")

        if (await db.execute(select(blocked_between(requester_id, addressee_id)))).scalar():
            raise StateError("Friend requests are not available with this user.", code="blocked")

        message = (message or "").strip() or None

        try:
            request = await self._insert_request(db, requester_id, addressee_id, message)
        except ConflictError as conflict:
            request = await self._resolve_existing(
                db, conflict.existing, requester_id, addressee_id, message
            )
            log.info("friend_request_resolved", friend_request_id=str(request.id), status=request.status.value)
            return request

        stage_event(
            db,
            user_id=addressee_id,
            topic=Topic.FRIEND_REQUESTS,
            entity_type="friend_request",
            entity_id=request.id,
            change_kind="received",
        )
        log.info("friend_request_sent", friend_request_id=str(request.id))
        return request

    async def respond_to_friend_request(
        self,
        db: AsyncSession,
        request_id: uuid.UUID,
        actor_id: uuid.UUID,
        accept: bool,
    ) -> FriendRequest:
        """Accept or decline.  Only the addressee may answer.

        Repeating the same answer is a no-op; changing a settled answer is a
        ``StateError``.
        """
        request = await db.get(FriendRequest, request_id, with_for_update=True)
        if request is None or request.addressee_id != actor_id:
            raise NotFoundError(f"Friend request {request_id} not found.")

        wanted = FriendRequestStatus.ACCEPTED if accept else FriendRequestStatus.DECLINED
        if request.status is wanted:
            if accept:
                # Replays re-assert the conversation in case it was lost.
                await self.conversations.ensure_conversation(
                    db, request.requester_id, request.addressee_id, ConversationType.FRIENDS
                )
            return request
        if request.status is not FriendRequestStatus.PENDING:
            raise StateError(
                f"This request was already {request.status.value}.", code="request_settled"
            )

        if accept:
            return await self._accept(db, request)

        request.status = FriendRequestStatus.DECLINED
        request.responded_at = request.updated_at = utcnow()
        await db.flush()
        stage_event(
            db,
            user_id=request.requester_id,
            topic=Topic.FRIEND_REQUESTS,
            entity_type="friend_request",
            entity_id=request.id,
            change_kind="declined",
        )
        logger.info("friend_request_declined", friend_request_id=str(request.id))
        return request

    async def remove_friend(
        self, db: AsyncSession, user_id: uuid.UUID, other_id: uuid.UUID
    ) -> None:
        """End an accepted friendship.  The conversation is untouched."""
        if user_id == other_id:
            raise ValidationError("You cannot unfriend yourself.")
        lo, hi = canonical_pair(user_id, other_id)
        result = await db.execute(
            delete(FriendRequest).where(
                FriendRequest.user_lo_id == lo,
                FriendRequest.user_hi_id == hi,
                FriendRequest.status == FriendRequestStatus.ACCEPTED,
            )
        )
        if result.rowcount == 0:
            raise NotFoundError("You are not friends with this user.")
        for uid in (user_id, other_id):
            stage_event(
                db,
                user_id=uid,
                topic=Topic.FRIEND_REQUESTS,
                entity_type="friendship",
                entity_id=None,
                change_kind="removed",
            )
        logger.info("friend_removed", user_id=str(user_id), other_id=str(other_id))

    async def _insert_request(
        self,
        db: AsyncSession,
        requester_id: uuid.UUID,
        addressee_id: uuid.UUID,
        message: str | None,
    ) -> FriendRequest:
        """Create the pair's request row, or raise ``ConflictError`` carrying
        the row that already exists."""
        lo, hi = canonical_pair(requester_id, addressee_id)
        now = utcnow()
        created_id = (
            await db.execute(
                dialect_insert(db, FriendRequest)
                .values(
                    id=uuid.uuid4(),
                    user_lo_id=lo,
                    user_hi_id=hi,
                    requester_id=requester_id,
                    addressee_id=addressee_id,
                    status=FriendRequestStatus.PENDING,
                    message=message,
                    created_at=now,
                )
                .on_conflict_do_nothing(index_elements=["user_lo_id", "user_hi_id"])
                .returning(FriendRequest.id)
            )
        ).scalar_one_or_none()

        if created_id is not None:
            return await db.get(FriendRequest, created_id)

        existing = (
            await db.execute(
                select(FriendRequest)
                .where(FriendRequest.user_lo_id == lo, FriendRequest.user_hi_id == hi)
                .with_for_update()
                .execution_options(populate_existing=True)
            )
        ).scalar_one()
        raise ConflictError("A friend request already exists for this pair.", existing=existing)

    async def _resolve_existing(
        self,
        db: AsyncSession,
        request: FriendRequest,
        requester_id: uuid.UUID,
        addressee_id: uuid.UUID,
        message: str | None,
    ) -> FriendRequest:
        if request.status is FriendRequestStatus.ACCEPTED:
            return request

        if request.status is FriendRequestStatus.PENDING:
            if request.requester_id == requester_id:
                return request
            # They already asked us: sending back is saying yes.
            return await self._accept(db, request)

        now = utcnow()
        request.requester_id = requester_id
        request.addressee_id = addressee_id
        request.status = FriendRequestStatus.PENDING
        request.message = message
        request.responded_at = None
        request.updated_at = now
        await db.flush()
        stage_event(
            db,
            user_id=addressee_id,
            topic=Topic.FRIEND_REQUESTS,
            entity_type="friend_request",
            entity_id=request.id,
            change_kind="received",
        )
        return request

    async def _accept(self, db: AsyncSession, request: FriendRequest) -> FriendRequest:
        now = utcnow()
        request.status = FriendRequestStatus.ACCEPTED
        request.responded_at = request.updated_at = now
        await db.flush()

        conversation, _ = await self.conversations.ensure_conversation(
            db,
            request.requester_id,
            request.addressee_id,
            ConversationType.FRIENDS,
            reenter=(request.requester_id, request.addressee_id),
        )
        if request.message:
            await self.conversations.send_message(
                db,
                conversation.id,
                request.requester_id,
                request.message,
                client_message_id=f"friend-request:{request.id}",
            )

        for uid in (request.requester_id, request.addressee_id):
            stage_event(
                db,
                user_id=uid,
                topic=Topic.FRIEND_REQUESTS,
                entity_type="friend_request",
                entity_id=request.id,
                change_kind="accepted",
            )
        logger.info(
            "friend_request_accepted",
            friend_request_id=str(request.id),
            conversation_id=str(conversation.id),
        )
        return request

    # ══════════════════════════════════════════════════════════════════════
    # Blocks
    # ══════════════════════════════════════════════════════════════════════

    async def block_user(
        self, db: AsyncSession, blocker_id: uuid.UUID, blocked_id: uuid.UUID
    ) -> Block:
        """Block ``blocked_id``.  Idempotent.

        Pending friend requests between the pair are declined.  Existing
        conversations are not hidden; callers compose ``hide`` if they want it.
        """
        if blocker_id == blocked_id:
            raise ValidationError("You cannot block yourself.", code="self_block")
        if await db.get(User, blocked_id) is None:
            raise NotFoundError(f"User {blocked_id} not found.")

        now = utcnow()
        await db.execute(
            dialect_insert(db, Block)
            .values(blocker_id=blocker_id, blocked_id=blocked_id, created_at=now)
            .on_conflict_do_nothing(index_elements=["blocker_id", "blocked_id"])
        )

        lo, hi = canonical_pair(blocker_id, blocked_id)
        await db.execute(
            update(FriendRequest)
            .where(
                FriendRequest.user_lo_id == lo,
                FriendRequest.user_hi_id == hi,
                FriendRequest.status == FriendRequestStatus.PENDING,
            )
            .values(status=FriendRequestStatus.DECLINED, responded_at=now, updated_at=now)
        )

        block = await db.get(Block, (blocker_id, blocked_id))
        stage_event(
            db,
            user_id=blocker_id,
            topic=Topic.CONVERSATIONS,
            entity_type="block",
            entity_id=blocked_id,
            change_kind="blocked",
        )
        logger.info("user_blocked", blocker_id=str(blocker_id), blocked_id=str(blocked_id))
        return block

    async def unblock_user(
        self, db: AsyncSession, blocker_id: uuid.UUID, blocked_id: uuid.UUID
    ) -> bool:
        """Remove a block.  Returns False when there was nothing to remove."""
        result = await db.execute(
            delete(Block).where(Block.blocker_id == blocker_id, Block.blocked_id == blocked_id)
        )
        removed = result.rowcount > 0
        if removed:
            stage_event(
                db,
                user_id=blocker_id,
                topic=Topic.CONVERSATIONS,
                entity_type="block",
                entity_id=blocked_id,
                change_kind="unblocked",
            )
        logger.info("user_unblocked", blocker_id=str(blocker_id), blocked_id=str(blocked_id), removed=removed)
        return removed

    async def list_blocked(self, db: AsyncSession, user_id: uuid.UUID) -> list[Block]:
        rows = await db.execute(
            select(Block).where(Block.blocker_id == user_id).order_by(Block.created_at.desc())
        )
        return list(rows.scalars().all())

    # ══════════════════════════════════════════════════════════════════════
    # Exclusion queries
    # ══════════════════════════════════════════════════════════════════════

    async def blocked_exclusion_ids(self, db: AsyncSession, user_id: uuid.UUID) -> set[uuid.UUID]:
        """Users the caller blocked plus users who blocked the caller."""
        blocked = await db.execute(select(Block.blocked_id).where(Block.blocker_id == user_id))
        blockers = await db.execute(select(Block.blocker_id).where(Block.blocked_id == user_id))
        return set(blocked.scalars().all()) | set(blockers.scalars().all())

    async def friend_ids(self, db: AsyncSession, user_id: uuid.UUID) -> set[uuid.UUID]:
        rows = await db.execute(
            select(FriendRequest.requester_id, FriendRequest.addressee_id).where(
                or_(FriendRequest.requester_id == user_id, FriendRequest.addressee_id == user_id),
                FriendRequest.status == FriendRequestStatus.ACCEPTED,
            )
        )
        return {
            addressee if requester == user_id else requester
            for requester, addressee in rows.all()
        }

    async def pending_requests(self, db: AsyncSession, user_id: uuid.UUID) -> list[FriendRequest]:
        """Incoming requests awaiting the user's answer, newest first."""
        rows = await db.execute(
            select(FriendRequest)
            .where(
                FriendRequest.addressee_id == user_id,
                FriendRequest.status == FriendRequestStatus.PENDING,
                ~blocked_between(user_id, FriendRequest.requester_id),
            )
            .order_by(FriendRequest.created_at.desc())
        )
        return list(rows.scalars().all())

    async def sent_requests(self, db: AsyncSession, user_id: uuid.UUID) -> list[FriendRequest]:
        rows = await db.execute(
            select(FriendRequest)
            .where(
                FriendRequest.requester_id == user_id,
                FriendRequest.status == FriendRequestStatus.PENDING,
            )
            .order_by(FriendRequest.created_at.desc())
        )
        return list(rows.scalars().all())

    async def list_friends(self, db: AsyncSession, user_id: uuid.UUID) -> list[FriendResponse]:
        rows = await db.execute(
            select(FriendRequest, Profile)
            .join(
                Profile,
                or_(
                    and_(FriendRequest.requester_id == user_id, Profile.user_id == FriendRequest.addressee_id),
                    and_(FriendRequest.addressee_id == user_id, Profile.user_id == FriendRequest.requester_id),
                ),
            )
            .where(
                FriendRequest.status == FriendRequestStatus.ACCEPTED,
                Profile.is_active.is_(True),
                ~blocked_between(user_id, Profile.user_id),
            )
            .order_by(Profile.display_name, Profile.user_id)
        )
        return [
            FriendResponse(
                profile=ProfileSummary.from_profile(profile),
                friends_since=request.responded_at,
            )
            for request, profile in rows.all()
        ]

    async def build_exclusion_set(
        self,
        db: AsyncSession,
        user_id: uuid.UUID,
        mode: Mode,
        *,
        recycle: bool = False,
    ) -> set[uuid.UUID]:
        """The exclusion set a client would pass to the feed builder.

        ``recycle`` drops the swipe history so passed-on profiles come back;
        matches, blocks and friendships stay excluded.
        """
        excluded = await self.blocked_exclusion_ids(db, user_id)
        excluded |= await self.ledger.matched_ids(db, user_id, mode)
        if not recycle:
            excluded |= await self.ledger.swiped_ids(db, user_id, mode)
        if mode is Mode.FRIENDS:
            excluded |= await self.friend_ids(db, user_id)
            excluded |= {r.addressee_id for r in await self.sent_requests(db, user_id)}
        excluded.discard(user_id)
        return excluded
