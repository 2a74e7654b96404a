"""
Drift Engine - Candidate Feed Builder

Builds the ordered, paginated discovery feed for one (user, mode).

The caller supplies the exclusion set (already swiped, blocked either way,
already friended); the builder only applies it.  A stale or empty set is
fine: swipe recording is idempotent, so a profile that slips through is
harmless.

Ordering is done by the store, so offset pagination is stable and complete:
  1. candidates with a known distance, nearest first;
  2. candidates without one after them;
  3. then most recently active first, ties broken on user id.

Distance is the haversine formula evaluated in SQL, and the dating-mode
maximum distance is a WHERE clause, so LIMIT/OFFSET apply to the final order.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from typing import Iterable

import structlog
from sqlalchemy import null, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from drift_engine.config import get_settings
from drift_engine.database import is_transient_db_error
from drift_engine.errors import NotFoundError, TransientError, ValidationError
from drift_engine.models.enums import LookingFor, Mode
from drift_engine.models.profile import Profile
from drift_engine.models.user import User
from drift_engine.schemas.profile import ProfileSummary
from drift_engine.utils.geo import has_coordinates, haversine_miles_sql

logger = structlog.get_logger("drift.feed_service")


@dataclass
class CandidateFeed:
    """One page of the feed.

    ``exhausted`` is the explicit "no candidates" signal.  It is never set
    for a store failure; those raise ``TransientError`` instead.
    """

    profiles: list[ProfileSummary] = field(default_factory=list)
    exhausted: bool = False
    next_offset: int | None = None


class FeedService:
    """Candidate feed builder."""

    def __init__(self) -> None:
        settings = get_settings()
        self.default_limit: int = settings.FEED_DEFAULT_LIMIT
        self.max_limit: int = settings.FEED_MAX_LIMIT
        self.default_min_age: int = settings.DATING_DEFAULT_MIN_AGE
        self.default_max_age: int = settings.DATING_DEFAULT_MAX_AGE

    async def get_candidates(
        self,
        db: AsyncSession,
        user_id: uuid.UUID,
        mode: Mode,
        exclude_ids: Iterable[uuid.UUID] = (),
        origin_lat: float | None = None,
        origin_lon: float | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> CandidateFeed:
        """Return one page of candidates for ``user_id`` in ``mode``.

        Parameters
        ----------
        db:
            Active async session (snapshot read).
        user_id:
            Requesting user; never appears in their own feed.
        mode:
            ``dating`` keeps candidates looking for dating or both;
            ``friends`` keeps friends or both.
        exclude_ids:
            Ids that must not be returned.  Supplied by the caller.
        origin_lat, origin_lon:
            Where to measure distance from.  Defaults to the requester's
            stored coordinates.
        limit, offset:
            Page window over the deterministic order.

        Returns
        -------
        CandidateFeed
            The page, the exhaustion flag and the next offset (``None`` when
            there is nothing after this page).

        Raises
        ------
        TransientError
            The store could not be read; retry rather than treat as empty.
        """
        limit = self._clamp_limit(limit)
        if offset < 0:
            raise ValidationError("offset must be non-negative.")
        if (origin_lat is None) != (origin_lon is None):
            raise ValidationError("origin_lat and origin_lon must be given together.")

        excluded = set(exclude_ids)
        excluded.discard(user_id)
        log = logger.bind(user_id=str(user_id), mode=mode.value)

        try:
            requester = await db.get(Profile, user_id)
            if requester is None or not requester.is_active:
                raise NotFoundError(f"Profile {user_id} not found.")

            if origin_lat is None and has_coordinates(requester.latitude, requester.longitude):
                origin_lat, origin_lon = requester.latitude, requester.longitude

            # One extra row tells us whether another page exists.
            rows = await self._fetch_page(
                db, requester, mode, excluded, origin_lat, origin_lon, limit + 1, offset
            )
        except SQLAlchemyError as exc:
            if is_transient_db_error(exc):
                log.warning("feed_fetch_failed", error=str(exc))
                raise TransientError("Discovery is temporarily unavailable.") from exc
            raise

        page = rows[:limit]
        has_more = len(rows) > limit

        log.info(
            "feed_built",
            excluded=len(excluded),
            returned=len(page),
            offset=offset,
            has_more=has_more,
        )
        return CandidateFeed(
            profiles=[ProfileSummary.from_profile(p, distance) for p, distance in page],
            exhausted=not page,
            next_offset=offset + len(page) if has_more else None,
        )

    # ── Query ─────────────────────────────────────────────────────────────

    async def _fetch_page(
        self,
        db: AsyncSession,
        requester: Profile,
        mode: Mode,
        excluded: set[uuid.UUID],
        origin_lat: float | None,
        origin_lon: float | None,
        limit: int,
        offset: int,
    ) -> list[tuple[Profile, float | None]]:
        if has_coordinates(origin_lat, origin_lon):
            distance_expr = haversine_miles_sql(
                Profile.latitude, Profile.longitude, origin_lat, origin_lon
            )
        else:
            distance_expr = null()

        stmt = (
            select(Profile, distance_expr.label("distance_miles"))
            .join(User, User.id == Profile.user_id)
            .where(
                Profile.user_id != requester.user_id,
                Profile.is_active.is_(True),
                User.is_active.is_(True),
                Profile.onboarding_completed.is_(True),
                Profile.looking_for.in_(LookingFor.compatible_with(mode)),
            )
        )
        if excluded:
            stmt = stmt.where(Profile.user_id.not_in(list(excluded)))

        if mode is Mode.DATING:
            min_age = requester.preferred_min_age or self.default_min_age
            max_age = requester.preferred_max_age or self.default_max_age
            stmt = stmt.where(
                or_(Profile.age.is_(None), Profile.age.between(min_age, max_age))
            )
            max_distance = requester.preferred_max_distance_miles
            if max_distance is not None and has_coordinates(origin_lat, origin_lon):
                # Candidates without coordinates cannot be measured, so they stay.
                stmt = stmt.where(
                    or_(distance_expr.is_(None), distance_expr <= max_distance)
                )

        ordering = [Profile.last_active_at.desc().nulls_last(), Profile.user_id]
        if has_coordinates(origin_lat, origin_lon):
            ordering.insert(0, distance_expr.asc().nulls_last())
        stmt = stmt.order_by(*ordering).limit(limit).offset(offset)
        return [(profile, miles) for profile, miles in (await db.execute(stmt)).all()]

    def _clamp_limit(self, limit: int | None) -> int:
        if limit is None:
            return self.default_limit
        if limit < 1:
            raise ValidationError("limit must be at least 1.")
        return min(limit, self.max_limit)
