"""
Drift Engine - Friends API

Friend requests, answers and the friend list.  An accepted request opens a
friends conversation seeded with the request message.
"""

from __future__ import annotations

import uuid

import structlog
from fastapi import APIRouter, Depends, Response, status
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from drift_engine.api.deps import current_user_id, db_session
from drift_engine.database import get_session_factory, run_transaction
from drift_engine.models.social import FriendRequest
from drift_engine.schemas.social import (
    FriendRequestCreate,
    FriendRequestRespond,
    FriendRequestResponse,
    FriendResponse,
)
from drift_engine.services.social_service import SocialService

logger = structlog.get_logger("drift.api.friends")

router = APIRouter()

_social_service: SocialService | None = None


def _get_social_service() -> SocialService:
    global _social_service
    if _social_service is None:
        _social_service = SocialService()
    return _social_service


# ──────────────────────────────────────────────────────────────────────────────
# Requests
# ──────────────────────────────────────────────────────────────────────────────

@router.post(
    "/requests",
    response_model=FriendRequestResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Send a friend request",
)
async def send_friend_request(
    payload: FriendRequestCreate,
    user_id: uuid.UUID = Depends(current_user_id),
    factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> FriendRequestResponse:
    """Repeats converge on one request per pair.  Sending to someone who
    already asked you accepts their request."""

    async def work(db: AsyncSession) -> FriendRequestResponse:
        request = await _get_social_service().send_friend_request(
            db, user_id, payload.addressee_id, payload.message
        )
        return FriendRequestResponse.model_validate(request)

    return await run_transaction(factory, work)


@router.post(
    "/requests/{request_id}/respond",
    response_model=FriendRequestResponse,
    summary="Accept or decline a friend request",
)
async def respond_to_friend_request(
    request_id: uuid.UUID,
    payload: FriendRequestRespond,
    user_id: uuid.UUID = Depends(current_user_id),
    factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> FriendRequestResponse:
    async def work(db: AsyncSession) -> FriendRequestResponse:
        request = await _get_social_service().respond_to_friend_request(
            db, request_id, user_id, payload.accept
        )
        return FriendRequestResponse.model_validate(request)

    return await run_transaction(factory, work)


@router.get(
    "/requests/pending",
    response_model=list[FriendRequestResponse],
    summary="Incoming requests awaiting an answer",
)
async def pending_requests(
    user_id: uuid.UUID = Depends(current_user_id),
    db: AsyncSession = Depends(db_session),
) -> list[FriendRequest]:
    return await _get_social_service().pending_requests(db, user_id)


@router.get(
    "/requests/sent",
    response_model=list[FriendRequestResponse],
    summary="Outgoing requests still pending",
)
async def sent_requests(
    user_id: uuid.UUID = Depends(current_user_id),
    db: AsyncSession = Depends(db_session),
) -> list[FriendRequest]:
    return await _get_social_service().sent_requests(db, user_id)


# ──────────────────────────────────────────────────────────────────────────────
# Friends
# ──────────────────────────────────────────────────────────────────────────────

@router.get(
    "/",
    response_model=list[FriendResponse],
    summary="List the acting user's friends",
)
async def list_friends(
    user_id: uuid.UUID = Depends(current_user_id),
    db: AsyncSession = Depends(db_session),
) -> list[FriendResponse]:
    return await _get_social_service().list_friends(db, user_id)


@router.delete(
    "/{other_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Remove a friend",
)
async def remove_friend(
    other_id: uuid.UUID,
    user_id: uuid.UUID = Depends(current_user_id),
    factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> Response:
    async def work(db: AsyncSession) -> None:
        await _get_social_service().remove_friend(db, user_id, other_id)

    await run_transaction(factory, work)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
