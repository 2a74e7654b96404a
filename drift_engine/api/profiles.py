"""
Drift Engine - Profiles API

Endpoints for profile creation, lookup, self-service edits and soft
deactivation.
"""

from __future__ import annotations

import uuid

import structlog
from fastapi import APIRouter, Depends, Response, status
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from drift_engine.api.deps import current_user_id, db_session
from drift_engine.database import get_session_factory, run_transaction
from drift_engine.errors import ValidationError
from drift_engine.models.profile import Profile
from drift_engine.schemas.profile import (
    ProfileCreate,
    ProfileResponse,
    ProfileSummary,
    ProfileUpdate,
)
from drift_engine.services.profile_service import ProfileService

logger = structlog.get_logger("drift.api.profiles")

router = APIRouter()

_profile_service: ProfileService | None = None


def _get_profile_service() -> ProfileService:
    global _profile_service
    if _profile_service is None:
        _profile_service = ProfileService()
    return _profile_service


# ──────────────────────────────────────────────────────────────────────────────
# POST / - Create a profile
# ──────────────────────────────────────────────────────────────────────────────

@router.post(
    "/",
    response_model=ProfileResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a user and profile",
)
async def create_profile(
    payload: ProfileCreate,
    response: Response,
    factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> ProfileResponse:
    """Register a user.  Replaying the same signup returns the existing
    profile with ``200`` instead of ``201``."""
    fields = payload.model_dump(exclude={"email", "display_name", "user_id"})

    async def work(db: AsyncSession):
        profile, created = await _get_profile_service().create_profile(
            db,
            email=payload.email,
            display_name=payload.display_name,
            user_id=payload.user_id,
            **fields,
        )
        return ProfileResponse.model_validate(profile), created

    body, created = await run_transaction(factory, work)
    if not created:
        response.status_code = status.HTTP_200_OK
    return body


# ──────────────────────────────────────────────────────────────────────────────
# /me - Self-service
# ──────────────────────────────────────────────────────────────────────────────

@router.get(
    "/me",
    response_model=ProfileResponse,
    summary="Get the acting user's own profile",
)
async def get_my_profile(
    user_id: uuid.UUID = Depends(current_user_id),
    db: AsyncSession = Depends(db_session),
) -> Profile:
    return await _get_profile_service().get_profile(db, user_id, include_inactive=True)


@router.patch(
    "/me",
    response_model=ProfileResponse,
    summary="Update the acting user's profile",
)
async def update_my_profile(
    payload: ProfileUpdate,
    user_id: uuid.UUID = Depends(current_user_id),
    factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> ProfileResponse:
    """Apply the fields present in the request body."""
    changes = payload.model_dump(exclude_unset=True)
    if not changes:
        raise ValidationError("No fields to update.")

    async def work(db: AsyncSession) -> ProfileResponse:
        profile = await _get_profile_service().update_profile(db, user_id, changes)
        return ProfileResponse.model_validate(profile)

    return await run_transaction(factory, work)


@router.post(
    "/me/active",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Record activity for feed recency",
)
async def touch_last_active(
    user_id: uuid.UUID = Depends(current_user_id),
    factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> Response:
    async def work(db: AsyncSession) -> None:
        await _get_profile_service().touch_last_active(db, user_id)

    await run_transaction(factory, work)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.delete(
    "/me",
    response_model=ProfileResponse,
    summary="Deactivate the acting user's account",
)
async def deactivate_my_profile(
    user_id: uuid.UUID = Depends(current_user_id),
    factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> ProfileResponse:
    """Soft-deactivate.  History stays; the user drops out of every feed."""

    async def work(db: AsyncSession) -> ProfileResponse:
        profile = await _get_profile_service().deactivate(db, user_id)
        return ProfileResponse.model_validate(profile)

    result = await run_transaction(factory, work)
    logger.info("profile_deactivated_via_api", user_id=str(user_id))
    return result


# ──────────────────────────────────────────────────────────────────────────────
# GET /{user_id} - Public view of another profile
# ──────────────────────────────────────────────────────────────────────────────

@router.get(
    "/{user_id}",
    response_model=ProfileSummary,
    summary="Get a profile by user ID",
)
async def get_profile(
    user_id: uuid.UUID,
    viewer_id: uuid.UUID = Depends(current_user_id),
    db: AsyncSession = Depends(db_session),
) -> ProfileSummary:
    """Return what another user may see.  The owner sees the same summary;
    ``GET /me`` returns the full record."""
    profile = await _get_profile_service().get_profile(db, user_id)
    logger.debug("get_profile", user_id=str(user_id), viewer_id=str(viewer_id))
    return ProfileSummary.from_profile(profile)
