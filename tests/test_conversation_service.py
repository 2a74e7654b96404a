"""Tests for conversations: idempotent creation, visibility states and unread."""
import asyncio
import uuid

import pytest
from sqlalchemy import func, select

from drift_engine.database import session_scope
from drift_engine.errors import NotFoundError, StateError, ValidationError
from drift_engine.models.conversation import Conversation, ConversationParticipant
from drift_engine.models.enums import ConversationType, ParticipantState
from drift_engine.schemas.events import Topic
from drift_engine.services.conversation_service import ConversationService
from drift_engine.services.social_service import SocialService

DATING = ConversationType.DATING


@pytest.fixture
def conversations():
    return ConversationService()


@pytest.fixture
def pair(make_profile, run, conversations):
    """Return ``async () -> (a, b, conversation_id)`` for a fresh dating pair."""

    async def _pair():
        a, b = await make_profile("A"), await make_profile("B")
        conversation, _ = await run(conversations.fetch_or_create, a, b, DATING)
        return a, b, conversation.id

    return _pair


async def _send(run, conversations, cid, sender, text):
    return await run(conversations.send_message, cid, sender, text)


class TestCreation:

    @pytest.mark.asyncio
    async def test_fetch_or_create_is_idempotent(self, conversations, make_profile, run):
        a, b = await make_profile(), await make_profile()
        first, created = await run(conversations.fetch_or_create, a, b, DATING)
        again, created_again = await run(conversations.fetch_or_create, b, a, DATING)
        assert created and not created_again
        assert first.id == again.id

        other_type, created_other = await run(
            conversations.fetch_or_create, a, b, ConversationType.FRIENDS
        )
        assert created_other
        assert other_type.id != first.id

    @pytest.mark.asyncio
    async def test_concurrent_callers_converge(self, conversations, make_profile, run, session_factory):
        a, b = await make_profile(), await make_profile()
        results = await asyncio.gather(*(
            run(conversations.fetch_or_create, *((a, b) if i % 2 else (b, a)), DATING)
            for i in range(8)
        ))
        assert len({conversation.id for conversation, _ in results}) == 1
        assert sum(created for _, created in results) == 1

        async with session_scope(session_factory) as db:
            rows = (await db.execute(select(func.count()).select_from(Conversation))).scalar_one()
            participants = (
                await db.execute(select(func.count()).select_from(ConversationParticipant))
            ).scalar_one()
        assert rows == 1
        assert participants == 2

    @pytest.mark.asyncio
    async def test_self_conversation_rejected(self, conversations, make_profile, run):
        a = await make_profile()
        with pytest.raises(ValidationError):
            await run(conversations.fetch_or_create, a, a, DATING)

    @pytest.mark.asyncio
    async def test_creation_notifies_both(self, conversations, make_profile, run, event_bus):
        a, b = await make_profile(), await make_profile()
        async with event_bus.subscribe(a, [Topic.CONVERSATIONS]) as sub_a, \
                event_bus.subscribe(b, [Topic.CONVERSATIONS]) as sub_b:
            conversation, _ = await run(conversations.fetch_or_create, a, b, DATING)
            got_a = await sub_a.get(timeout=1)
            got_b = await sub_b.get(timeout=1)
        assert got_a.entity_id == got_b.entity_id == conversation.id
        assert got_a.change_kind == "created"


class TestVisibility:

    @pytest.mark.asyncio
    async def test_hide_is_per_participant(self, conversations, pair, run):
        a, b, cid = await pair()
        hidden = await run(conversations.hide, cid, a)
        assert hidden.state is ParticipantState.HIDDEN

        assert await run(conversations.list_conversations, a, "visible") == []
        assert [v.conversation.id for v in await run(conversations.list_conversations, a, "hidden")] == [cid]
        assert [v.conversation.id for v in await run(conversations.list_conversations, b, "visible")] == [cid]

        again = await run(conversations.hide, cid, a)
        assert again.state is ParticipantState.HIDDEN

        shown = await run(conversations.unhide, cid, a)
        assert shown.state is ParticipantState.ACTIVE
        assert await run(conversations.list_conversations, a, "hidden") == []

    @pytest.mark.asyncio
    async def test_hidden_stays_hidden_on_new_message(self, conversations, pair, run):
        a, b, cid = await pair()
        await run(conversations.hide, cid, a)
        await _send(run, conversations, cid, b, "still there?")

        view = await run(conversations.get_view, cid, a)
        assert view.state is ParticipantState.HIDDEN
        assert view.unread
        assert await run(conversations.unread_total, a) == 1

    @pytest.mark.asyncio
    async def test_leave_then_reenter_on_new_message(self, conversations, pair, run):
        a, b, cid = await pair()
        await _send(run, conversations, cid, a, "before")
        await _send(run, conversations, cid, b, "reply")

        left = await run(conversations.leave, cid, a)
        assert left.state is ParticipantState.LEFT
        assert await run(conversations.list_conversations, a, "visible") == []
        assert await run(conversations.list_conversations, a, "hidden") == []
        with pytest.raises(StateError):
            await run(conversations.list_messages, cid, a)
        with pytest.raises(StateError):
            await _send(run, conversations, cid, a, "can I still talk?")

        # The other side is untouched by the leave.
        assert len(await run(conversations.list_messages, cid, b)) == 2

        await _send(run, conversations, cid, b, "after")
        view = await run(conversations.get_view, cid, a)
        assert view.state is ParticipantState.ACTIVE
        assert [m.content for m in await run(conversations.list_messages, cid, a)] == ["after"]
        assert view.unread_count == 1
        assert view.last_message.content == "after"

    @pytest.mark.asyncio
    async def test_leaver_reenters_by_asking_again(self, conversations, pair, run):
        a, b, cid = await pair()
        await run(conversations.leave, cid, a)
        conversation, created = await run(conversations.fetch_or_create, a, b, DATING)
        assert conversation.id == cid and not created
        view = await run(conversations.get_view, cid, a)
        assert view.state is ParticipantState.ACTIVE

    @pytest.mark.asyncio
    async def test_left_user_cannot_hide(self, conversations, pair, run):
        a, _, cid = await pair()
        await run(conversations.leave, cid, a)
        with pytest.raises(StateError):
            await run(conversations.hide, cid, a)
        again = await run(conversations.leave, cid, a)
        assert again.state is ParticipantState.LEFT

    @pytest.mark.asyncio
    async def test_outsider_cannot_touch(self, conversations, pair, make_profile, run):
        _, _, cid = await pair()
        stranger = await make_profile()
        with pytest.raises(NotFoundError):
            await run(conversations.hide, cid, stranger)
        with pytest.raises(NotFoundError):
            await _send(run, conversations, cid, stranger, "hi")
        with pytest.raises(NotFoundError):
            await run(conversations.get_view, uuid.uuid4(), stranger)


class TestMessaging:

    @pytest.mark.asyncio
    async def test_unread_until_read(self, conversations, pair, run):
        a, b, cid = await pair()
        assert not await run(conversations.is_unread, cid, b)

        await _send(run, conversations, cid, a, "one")
        await _send(run, conversations, cid, a, "two")
        assert (await run(conversations.get_view, cid, b)).unread_count == 2
        assert not await run(conversations.is_unread, cid, a)

        await run(conversations.mark_read, cid, b)
        assert not await run(conversations.is_unread, cid, b)

        await _send(run, conversations, cid, a, "three")
        assert await run(conversations.is_unread, cid, b)

    @pytest.mark.asyncio
    async def test_read_marker_never_moves_back(self, conversations, pair, run):
        a, b, cid = await pair()
        first = await run(conversations.mark_read, cid, b)
        second = await run(conversations.mark_read, cid, b)
        assert second.last_read_at >= first.last_read_at

    @pytest.mark.asyncio
    async def test_client_message_id_replay(self, conversations, pair, run):
        a, b, cid = await pair()
        first = await run(conversations.send_message, cid, a, "hello", "c-1")
        again = await run(conversations.send_message, cid, a, "hello", "c-1")
        assert first.id == again.id
        assert len(await run(conversations.list_messages, cid, b)) == 1

    @pytest.mark.asyncio
    async def test_content_validation(self, conversations, pair, run):
        a, _, cid = await pair()
        with pytest.raises(ValidationError):
            await _send(run, conversations, cid, a, "   ")
        with pytest.raises(ValidationError):
            await _send(run, conversations, cid, a, "x" * (conversations.max_message_length + 1))

    @pytest.mark.asyncio
    async def test_block_refuses_messages(self, conversations, pair, run):
        a, b, cid = await pair()
        await run(SocialService().block_user, b, a)
        with pytest.raises(StateError):
            await _send(run, conversations, cid, a, "hi")
        with pytest.raises(StateError):
            await _send(run, conversations, cid, b, "hi")
        assert await run(conversations.list_conversations, a) == []

    @pytest.mark.asyncio
    async def test_messages_page_backwards(self, conversations, pair, run):
        a, b, cid = await pair()
        for i in range(5):
            await _send(run, conversations, cid, a, f"m{i}")

        latest = await run(conversations.list_messages, cid, b, limit=2)
        assert [m.content for m in latest] == ["m3", "m4"]

        older = await run(conversations.list_messages, cid, b, limit=2, before=latest[0].created_at)
        assert [m.content for m in older] == ["m1", "m2"]

    @pytest.mark.asyncio
    async def test_list_orders_by_latest_activity(self, conversations, make_profile, run):
        me, x, y = await make_profile(), await make_profile(), await make_profile()
        cx, _ = await run(conversations.fetch_or_create, me, x, DATING)
        cy, _ = await run(conversations.fetch_or_create, me, y, DATING)
        await _send(run, conversations, cx.id, x, "newest")

        views = await run(conversations.list_conversations, me)
        assert [v.conversation.id for v in views] == [cx.id, cy.id]
        assert views[0].other_user_id == x

    @pytest.mark.asyncio
    async def test_unknown_view_rejected(self, conversations, make_profile, run):
        me = await make_profile()
        with pytest.raises(ValidationError):
            await run(conversations.list_conversations, me, "archived")


class TestMute:

    @pytest.mark.asyncio
    async def test_mute_is_independent_of_visibility(self, conversations, pair, run):
        a, b, cid = await pair()
        muted = await run(conversations.mute, cid, a)
        assert muted.is_muted
        assert muted.state is ParticipantState.ACTIVE

        await _send(run, conversations, cid, b, "psst")
        assert await run(conversations.is_unread, cid, a)

        assert not (await run(conversations.unmute, cid, a)).is_muted
        assert not (await run(conversations.unmute, cid, a)).is_muted

        await run(conversations.leave, cid, a)
        with pytest.raises(StateError):
            await run(conversations.mute, cid, a)
