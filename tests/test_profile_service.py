"""Tests for ProfileService - signup, edits, activity and deactivation."""
import uuid

import pytest
from sqlalchemy import select

from drift_engine.database import session_scope
from drift_engine.errors import NotFoundError, ValidationError
from drift_engine.models.enums import LookingFor
from drift_engine.models.user import User
from drift_engine.services.profile_service import ProfileService


@pytest.fixture
def profile_service():
    return ProfileService()


class TestCreateProfile:

    @pytest.mark.asyncio
    async def test_creates_user_and_profile(self, profile_service, session_factory):
        async with session_scope(session_factory) as db:
            profile, created = await profile_service.create_profile(
                db,
                email="  Ada@Example.COM ",
                display_name=" Ada ",
                age=31,
                interests=["climbing", "jazz"],
                looking_for=LookingFor.DATING,
            )
        assert created
        assert profile.display_name == "Ada"
        assert profile.interests == ["climbing", "jazz"]
        assert profile.is_active
        assert profile.last_active_at is not None

        async with session_scope(session_factory) as db:
            user = await db.get(User, profile.user_id)
        assert user.email == "ada@example.com"

    @pytest.mark.asyncio
    async def test_replay_with_same_id_returns_existing(self, profile_service, session_factory):
        user_id = uuid.uuid4()
        async with session_scope(session_factory) as db:
            first, created = await profile_service.create_profile(
                db, email="b@drift.test", display_name="B", user_id=user_id
            )
        assert created

        async with session_scope(session_factory) as db:
            again, created = await profile_service.create_profile(
                db, email="B@drift.test", display_name="Other name", user_id=user_id
            )
        assert not created
        assert again.user_id == first.user_id
        assert again.display_name == "B"

    @pytest.mark.asyncio
    async def test_duplicate_email_rejected(self, profile_service, session_factory):
        async with session_scope(session_factory) as db:
            await profile_service.create_profile(db, email="dup@drift.test", display_name="One")

        with pytest.raises(ValidationError) as exc_info:
            async with session_scope(session_factory) as db:
                await profile_service.create_profile(db, email="dup@drift.test", display_name="Two")
        assert exc_info.value.code == "email_taken"

    @pytest.mark.asyncio
    async def test_existing_id_with_other_email_rejected(self, profile_service, session_factory):
        user_id = uuid.uuid4()
        async with session_scope(session_factory) as db:
            await profile_service.create_profile(
                db, email="first@drift.test", display_name="One", user_id=user_id
            )
        with pytest.raises(ValidationError) as exc_info:
            async with session_scope(session_factory) as db:
                await profile_service.create_profile(
                    db, email="second@drift.test", display_name="Two", user_id=user_id
                )
        assert exc_info.value.code == "user_exists"

    @pytest.mark.asyncio
    async def test_unknown_field_rejected(self, profile_service, session_factory):
        with pytest.raises(ValidationError):
            async with session_scope(session_factory) as db:
                await profile_service.create_profile(
                    db, email="x@drift.test", display_name="X", favourite_colour="blue"
                )

    @pytest.mark.asyncio
    async def test_inverted_age_range_rejected(self, profile_service, session_factory):
        with pytest.raises(ValidationError):
            async with session_scope(session_factory) as db:
                await profile_service.create_profile(
                    db,
                    email="ages@drift.test",
                    display_name="Ages",
                    preferred_min_age=40,
                    preferred_max_age=30,
                )

    @pytest.mark.asyncio
    async def test_failed_create_leaves_nothing_behind(self, profile_service, session_factory):
        with pytest.raises(ValidationError):
            async with session_scope(session_factory) as db:
                await profile_service.create_profile(
                    db, email="gone@drift.test", display_name="Gone", bogus=1
                )
        async with session_scope(session_factory) as db:
            rows = (await db.execute(select(User).where(User.email == "gone@drift.test"))).all()
        assert rows == []


class TestUpdateAndLifecycle:

    @pytest.mark.asyncio
    async def test_partial_update(self, profile_service, make_profile, run):
        user_id = await make_profile("Before")
        profile = await run(
            profile_service.update_profile,
            user_id,
            {"display_name": " After ", "bio": "hello", "interests": None},
        )
        assert profile.display_name == "After"
        assert profile.bio == "hello"
        assert profile.interests == []
        assert profile.updated_at is not None

    @pytest.mark.asyncio
    async def test_coordinates_must_be_set_together(self, profile_service, make_profile, run):
        user_id = await make_profile()
        with pytest.raises(ValidationError):
            await run(profile_service.update_profile, user_id, {"latitude": 51.5})

        profile = await run(
            profile_service.update_profile, user_id, {"latitude": 51.5, "longitude": -0.1}
        )
        assert (profile.latitude, profile.longitude) == (51.5, -0.1)

    @pytest.mark.asyncio
    async def test_required_fields_cannot_be_cleared(self, profile_service, make_profile, run):
        user_id = await make_profile()
        with pytest.raises(ValidationError):
            await run(profile_service.update_profile, user_id, {"display_name": None})

    @pytest.mark.asyncio
    async def test_touch_last_active_moves_forward(self, profile_service, make_profile, run):
        user_id = await make_profile()
        before = (await run(profile_service.get_profile, user_id)).last_active_at
        await run(profile_service.touch_last_active, user_id)
        after = (await run(profile_service.get_profile, user_id)).last_active_at
        assert after >= before

    @pytest.mark.asyncio
    async def test_deactivate_hides_profile(self, profile_service, make_profile, run):
        user_id = await make_profile()
        profile = await run(profile_service.deactivate, user_id)
        assert not profile.is_active

        with pytest.raises(NotFoundError):
            await run(profile_service.get_profile, user_id)
        still_there = await run(profile_service.get_profile, user_id, include_inactive=True)
        assert still_there.user_id == user_id

        with pytest.raises(NotFoundError):
            await run(profile_service.touch_last_active, user_id)

    @pytest.mark.asyncio
    async def test_unknown_profile(self, profile_service, run):
        with pytest.raises(NotFoundError):
            await run(profile_service.get_profile, uuid.uuid4())
