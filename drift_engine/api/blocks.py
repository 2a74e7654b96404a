"""
Drift Engine - Blocks API
"""

from __future__ import annotations

import uuid

import structlog
from fastapi import APIRouter, Depends, Response, status
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from drift_engine.api.deps import current_user_id, db_session
from drift_engine.database import get_session_factory, run_transaction
from drift_engine.models.social import Block
from drift_engine.schemas.match import UserIdList
from drift_engine.schemas.social import BlockResponse
from drift_engine.services.social_service import SocialService

logger = structlog.get_logger("drift.api.blocks")

router = APIRouter()

_social_service: SocialService | None = None


def _get_social_service() -> SocialService:
    global _social_service
    if _social_service is None:
        _social_service = SocialService()
    return _social_service


@router.get(
    "/",
    response_model=list[BlockResponse],
    summary="Users the acting user has blocked",
)
async def list_blocked(
    user_id: uuid.UUID = Depends(current_user_id),
    db: AsyncSession = Depends(db_session),
) -> list[Block]:
    return await _get_social_service().list_blocked(db, user_id)


@router.get(
    "/exclusions",
    response_model=UserIdList,
    summary="Ids to leave out of feeds because of a block either way",
)
async def blocked_exclusion_ids(
    user_id: uuid.UUID = Depends(current_user_id),
    db: AsyncSession = Depends(db_session),
) -> UserIdList:
    ids = await _get_social_service().blocked_exclusion_ids(db, user_id)
    return UserIdList(user_ids=sorted(ids, key=lambda u: u.int))


@router.post(
    "/{blocked_id}",
    response_model=BlockResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Block a user",
)
async def block_user(
    blocked_id: uuid.UUID,
    user_id: uuid.UUID = Depends(current_user_id),
    factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> BlockResponse:
    """Idempotent.  Conversations are not hidden automatically."""

    async def work(db: AsyncSession) -> BlockResponse:
        block = await _get_social_service().block_user(db, user_id, blocked_id)
        return BlockResponse.model_validate(block)

    return await run_transaction(factory, work)


@router.delete(
    "/{blocked_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Unblock a user",
)
async def unblock_user(
    blocked_id: uuid.UUID,
    user_id: uuid.UUID = Depends(current_user_id),
    factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> Response:
    async def work(db: AsyncSession) -> bool:
        return await _get_social_service().unblock_user(db, user_id, blocked_id)

    removed = await run_transaction(factory, work)
    if not removed:
        logger.debug("unblock_noop", user_id=str(user_id), blocked_id=str(blocked_id))
    return Response(status_code=status.HTTP_204_NO_CONTENT)
