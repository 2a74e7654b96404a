"""
Drift Engine - Identity & Profile Store

Owns the ``users`` / ``profiles`` pair.  The discovery feed reads profiles
directly; every mutation goes through this service so the invariants hold:

  * one profile per user, created together with the user row;
  * profiles are soft-deactivated, never deleted;
  * dating age preferences stay an ordered range.
"""

from __future__ import annotations

import uuid
from typing import Any

import structlog
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from drift_engine.database import utcnow
from drift_engine.errors import NotFoundError, ValidationError
from drift_engine.models.profile import Profile
from drift_engine.models.user import User

logger = structlog.get_logger("drift.profile_service")

_MUTABLE_FIELDS: frozenset[str] = frozenset({
    "display_name",
    "age",
    "bio",
    "latitude",
    "longitude",
    "hide_location",
    "interests",
    "looking_for",
    "verified",
    "onboarding_completed",
    "preferred_min_age",
    "preferred_max_age",
    "preferred_max_distance_miles",
})

_REQUIRED_FIELDS: frozenset[str] = frozenset({
    "display_name",
    "hide_location",
    "looking_for",
    "verified",
    "onboarding_completed",
})


class ProfileService:
    """Stateless profile operations; the acting user is always explicit."""

    # ── Create ────────────────────────────────────────────────────────────

    async def create_profile(
        self,
        db: AsyncSession,
        *,
        email: str,
        display_name: str,
        user_id: uuid.UUID | None = None,
        **fields: Any,
    ) -> tuple[Profile, bool]:
        """Create the user row and its profile.

        Replaying a signup for the same ``user_id`` and email returns the
        existing profile instead of failing, so the call is safe to retry.

        Returns
        -------
        tuple[Profile, bool]
            The profile and whether it was created by this call.
        """
        log = logger.bind(email=email, user_id=str(user_id) if user_id else None)
        email = email.strip().lower()

        existing_user = (
            await db.execute(select(User).where(User.email == email))
        ).scalar_one_or_none()

        if existing_user is not None:
            if user_id is not None and existing_user.id == user_id:
                profile = await db.get(Profile, existing_user.id)
                if profile is not None:
                    log.info("create_profile_replayed")
                    return profile, False
            else:
                log.warning("create_profile_duplicate_email")
                raise ValidationError(
                    "A user with this email already exists.", code="email_taken"
                )

        if user_id is not None and existing_user is None:
            if await db.get(User, user_id) is not None:
                raise ValidationError(
                    f"User {user_id} already exists with another email.",
                    code="user_exists",
                )

        self._check_fields(fields)
        self._check_age_range(
            fields.get("preferred_min_age"), fields.get("preferred_max_age")
        )

        user = existing_user
        if user is None:
            user = User(id=user_id or uuid.uuid4(), email=email)
            db.add(user)
            await db.flush()

        interests = list(fields.pop("interests", None) or [])
        now = utcnow()
        profile = Profile(
            user_id=user.id,
            display_name=display_name.strip(),
            interests=interests,
            last_active_at=now,
            created_at=now,
            **fields,
        )
        db.add(profile)
        await db.flush()

        log.info("create_profile_complete", user_id=str(user.id))
        return profile, True

    # ── Read ──────────────────────────────────────────────────────────────

    async def get_profile(
        self,
        db: AsyncSession,
        user_id: uuid.UUID,
        *,
        include_inactive: bool = False,
    ) -> Profile:
        profile = await db.get(Profile, user_id)
        if profile is None or (not profile.is_active and not include_inactive):
            raise NotFoundError(f"Profile {user_id} not found.")
        return profile

    # ── Update ────────────────────────────────────────────────────────────

    async def update_profile(
        self,
        db: AsyncSession,
        user_id: uuid.UUID,
        changes: dict[str, Any],
    ) -> Profile:
        """Apply a partial update.  Unknown fields are rejected."""
        log = logger.bind(user_id=str(user_id))
        self._check_fields(changes)
        cleared = sorted(f for f in _REQUIRED_FIELDS if f in changes and changes[f] is None)
        if cleared:
            raise ValidationError(f"Fields cannot be cleared: {', '.join(cleared)}")

        profile = await self.get_profile(db, user_id)

        min_age = changes.get("preferred_min_age", profile.preferred_min_age)
        max_age = changes.get("preferred_max_age", profile.preferred_max_age)
        self._check_age_range(min_age, max_age)

        lat = changes.get("latitude", profile.latitude)
        lon = changes.get("longitude", profile.longitude)
        if (lat is None) != (lon is None):
            raise ValidationError("latitude and longitude must be set together.")

        for field, value in changes.items():
            if field == "display_name" and value is not None:
                value = value.strip()
            if field == "interests":
                value = list(value or [])
            setattr(profile, field, value)
        profile.updated_at = utcnow()
        await db.flush()

        log.info("update_profile_complete", fields=sorted(changes))
        return profile

    async def touch_last_active(self, db: AsyncSession, user_id: uuid.UUID) -> None:
        """Bump ``last_active_at``; feeds use it to rank profiles without a distance."""
        result = await db.execute(
            update(Profile)
            .where(Profile.user_id == user_id, Profile.is_active.is_(True))
            .values(last_active_at=utcnow())
        )
        if result.rowcount == 0:
            raise NotFoundError(f"Profile {user_id} not found.")

    async def deactivate(self, db: AsyncSession, user_id: uuid.UUID) -> Profile:
        """Soft-deactivate an account.  History stays; the user leaves every feed."""
        profile = await self.get_profile(db, user_id, include_inactive=True)
        now = utcnow()
        profile.is_active = False
        profile.updated_at = now
        await db.execute(
            update(User).where(User.id == user_id).values(is_active=False, updated_at=now)
        )
        await db.flush()
        logger.info("profile_deactivated", user_id=str(user_id))
        return profile

    # ── Validation helpers ────────────────────────────────────────────────

    @staticmethod
    def _check_fields(fields: dict[str, Any]) -> None:
        unknown = set(fields) - _MUTABLE_FIELDS
        if unknown:
            raise ValidationError(f"Unknown profile fields: {', '.join(sorted(unknown))}")

    @staticmethod
    def _check_age_range(min_age: int | None, max_age: int | None) -> None:
        if min_age is not None and max_age is not None and min_age > max_age:
            raise ValidationError(
                "preferred_min_age cannot exceed preferred_max_age.",
                code="invalid_age_range",
            )
