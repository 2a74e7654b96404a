"""
Drift Engine - Discovery API

Serves the candidate feed.  The exclusion set is assembled from the ledger
and the social graph, then merged with any ids the client already holds
locally (profiles it is about to swipe on, for example).
"""

from __future__ import annotations

import uuid
from typing import Optional

import structlog
from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from drift_engine.api.deps import current_user_id, db_session
from drift_engine.models.enums import Mode
from drift_engine.schemas.profile import CandidateFeedResponse
from drift_engine.services.feed_service import FeedService
from drift_engine.services.social_service import SocialService

logger = structlog.get_logger("drift.api.discover")

router = APIRouter()

_feed_service: FeedService | None = None
_social_service: SocialService | None = None


def _get_feed_service() -> FeedService:
    global _feed_service
    if _feed_service is None:
        _feed_service = FeedService()
    return _feed_service


def _get_social_service() -> SocialService:
    global _social_service
    if _social_service is None:
        _social_service = SocialService()
    return _social_service


@router.get(
    "/",
    response_model=CandidateFeedResponse,
    summary="Fetch discovery candidates",
)
async def discover(
    mode: Mode = Query(Mode.DATING, description="dating or friends"),
    lat: Optional[float] = Query(None, ge=-90, le=90, description="Origin latitude"),
    lon: Optional[float] = Query(None, ge=-180, le=180, description="Origin longitude"),
    limit: Optional[int] = Query(None, ge=1, description="Page size (server-capped)"),
    offset: int = Query(0, ge=0, description="Candidates to skip"),
    recycle: bool = Query(False, description="Show previously swiped profiles again"),
    exclude: list[uuid.UUID] = Query([], description="Extra ids to leave out"),
    user_id: uuid.UUID = Depends(current_user_id),
    db: AsyncSession = Depends(db_session),
) -> CandidateFeedResponse:
    """Return one page of the feed for the acting user.

    An empty page with ``exhausted=true`` means there is genuinely nobody
    left; a store failure is a ``503`` instead, never an empty page.
    """
    log = logger.bind(user_id=str(user_id), mode=mode.value)

    excluded = await _get_social_service().build_exclusion_set(
        db, user_id, mode, recycle=recycle
    )
    excluded.update(exclude)

    feed = await _get_feed_service().get_candidates(
        db,
        user_id,
        mode,
        exclude_ids=excluded,
        origin_lat=lat,
        origin_lon=lon,
        limit=limit,
        offset=offset,
    )
    log.info("discover_served", returned=len(feed.profiles), recycle=recycle)

    return CandidateFeedResponse(
        profiles=feed.profiles,
        exhausted=feed.exhausted,
        next_offset=feed.next_offset,
        recycled=recycle,
    )
