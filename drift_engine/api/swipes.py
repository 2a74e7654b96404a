"""
Drift Engine - Swipes & Matches API

Endpoints for recording swipes, the ledger reads clients use to build their
exclusion sets, the "liked me" list, match listing and pair repair.
"""

from __future__ import annotations

import uuid
from typing import Optional

import structlog
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from drift_engine.api.deps import current_user_id, db_session
from drift_engine.database import get_session_factory, run_transaction
from drift_engine.models.enums import Mode
from drift_engine.schemas.match import MatchResponse, SwipeCreate, SwipeResponse, UserIdList
from drift_engine.schemas.profile import ProfileSummary
from drift_engine.services.ledger_service import LedgerService, MatchView, SwipeOutcome

logger = structlog.get_logger("drift.api.swipes")

router = APIRouter()

_ledger_service: LedgerService | None = None


def _get_ledger_service() -> LedgerService:
    global _ledger_service
    if _ledger_service is None:
        _ledger_service = LedgerService()
    return _ledger_service


def _match_response(view: MatchView) -> MatchResponse:
    return MatchResponse(
        match_id=view.match.id,
        mode=view.match.mode,
        other_user_id=view.other_user_id,
        other_profile=view.other_profile,
        matched_at=view.match.matched_at,
        conversation_id=view.conversation.id if view.conversation is not None else None,
    )


def _swipe_response(outcome: SwipeOutcome) -> SwipeResponse:
    if outcome.completed:
        label = "matched"
    elif outcome.is_mutual_match:
        label = "already_matched"
    else:
        label = "recorded"
    return SwipeResponse(
        status=label,
        direction=outcome.swipe.direction,
        is_mutual_match=outcome.is_mutual_match,
        match=_match_response(outcome.match) if outcome.match is not None else None,
    )


# ──────────────────────────────────────────────────────────────────────────────
# POST / - Record a swipe
# ──────────────────────────────────────────────────────────────────────────────

@router.post(
    "/",
    response_model=SwipeResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Swipe on a profile",
)
async def swipe(
    payload: SwipeCreate,
    user_id: uuid.UUID = Depends(current_user_id),
    factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> SwipeResponse:
    """Record the acting user's swipe.

    When the swipe completes a mutual like the response carries the match
    and its conversation.  Retrying a swipe is safe: the match is created
    once and the retry reports ``already_matched``.
    """

    async def work(db: AsyncSession) -> SwipeResponse:
        outcome = await _get_ledger_service().record_swipe(
            db, user_id, payload.target_id, payload.direction, payload.mode
        )
        return _swipe_response(outcome)

    return await run_transaction(factory, work)


# ──────────────────────────────────────────────────────────────────────────────
# Ledger reads
# ──────────────────────────────────────────────────────────────────────────────

@router.get(
    "/ids",
    response_model=UserIdList,
    summary="Users the acting user has swiped on",
)
async def swiped_ids(
    mode: Mode = Query(Mode.DATING),
    user_id: uuid.UUID = Depends(current_user_id),
    db: AsyncSession = Depends(db_session),
) -> UserIdList:
    ids = await _get_ledger_service().swiped_ids(db, user_id, mode)
    return UserIdList(user_ids=sorted(ids, key=lambda u: u.int))


@router.get(
    "/liked-me",
    response_model=list[ProfileSummary],
    summary="People who liked the acting user",
)
async def people_liked_me(
    mode: Mode = Query(Mode.DATING),
    user_id: uuid.UUID = Depends(current_user_id),
    db: AsyncSession = Depends(db_session),
) -> list[ProfileSummary]:
    """Incoming likes not yet answered by a swipe of the acting user."""
    return await _get_ledger_service().people_liked_me(db, user_id, mode)


@router.get(
    "/matches",
    response_model=list[MatchResponse],
    summary="List the acting user's matches",
)
async def list_matches(
    mode: Optional[Mode] = Query(None, description="Restrict to one mode"),
    user_id: uuid.UUID = Depends(current_user_id),
    factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> list[MatchResponse]:
    """Matches newest first.  Listing repairs any missing conversation."""

    async def work(db: AsyncSession) -> list[MatchResponse]:
        views = await _get_ledger_service().list_matches(db, user_id, mode)
        return [_match_response(v) for v in views]

    return await run_transaction(factory, work)


@router.post(
    "/reconcile/{other_id}",
    response_model=Optional[MatchResponse],
    summary="Re-derive a pair's match state from its swipes",
)
async def reconcile_pair(
    other_id: uuid.UUID,
    mode: Mode = Query(Mode.DATING),
    user_id: uuid.UUID = Depends(current_user_id),
    factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> Optional[MatchResponse]:
    """Return the pair's match after repair, or ``null`` when there is none."""

    async def work(db: AsyncSession) -> Optional[MatchResponse]:
        view = await _get_ledger_service().reconcile_pair(db, user_id, other_id, mode)
        return _match_response(view) if view is not None else None

    result = await run_transaction(factory, work)
    logger.info("reconcile_pair_via_api", user_id=str(user_id), other_id=str(other_id), matched=result is not None)
    return result
