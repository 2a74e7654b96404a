"""End-to-end scenarios across the feed, ledger, conversations and fan-out.

Each scenario drives the services the way the API does (one committed unit
of work per call) and checks what both users observe afterwards.
"""
import asyncio

import pytest

from drift_engine.models.enums import ConversationType, Mode, ParticipantState, SwipeDirection
from drift_engine.schemas.events import Topic
from drift_engine.services.conversation_service import ConversationService
from drift_engine.services.feed_service import FeedService
from drift_engine.services.ledger_service import LedgerService
from drift_engine.services.social_service import SocialService


@pytest.fixture
def services():
    conversations = ConversationService()
    ledger = LedgerService(conversations)
    return {
        "conversations": conversations,
        "ledger": ledger,
        "social": SocialService(conversations, ledger),
        "feed": FeedService(),
    }


async def _feed_ids(run, services, user_id, mode=Mode.DATING):
    social, feed = services["social"], services["feed"]

    async def work(db):
        excluded = await social.build_exclusion_set(db, user_id, mode)
        return await feed.get_candidates(db, user_id, mode, exclude_ids=excluded)

    page = await run(work)
    return {p.user_id for p in page.profiles}


class TestConcurrentMutualSwipe:

    @pytest.mark.asyncio
    async def test_one_match_event_each_and_one_conversation(self, services, make_profile, run, event_bus):
        """A and B like each other at the same moment: each gets exactly one
        match event, there is a single conversation and both can write first."""
        ledger, conversations = services["ledger"], services["conversations"]
        a, b = await make_profile("A"), await make_profile("B")

        async with event_bus.subscribe(a, [Topic.MATCHES]) as sub_a, \
                event_bus.subscribe(b, [Topic.MATCHES]) as sub_b:
            outcomes = await asyncio.gather(
                run(ledger.record_swipe, a, b, SwipeDirection.RIGHT, Mode.DATING),
                run(ledger.record_swipe, b, a, SwipeDirection.RIGHT, Mode.DATING),
            )
            first_a = await sub_a.get(timeout=1)
            first_b = await sub_b.get(timeout=1)
            assert await sub_a.get(timeout=0.2) is None
            assert await sub_b.get(timeout=0.2) is None

        assert first_a.entity_id == first_b.entity_id
        (winner,) = [o for o in outcomes if o.completed]
        cid = winner.match.conversation.id

        # Both sides find the same conversation through their match lists.
        for me, them in ((a, b), (b, a)):
            (view,) = await run(services["ledger"].list_matches, me, Mode.DATING)
            assert view.other_user_id == them
            assert view.conversation.id == cid

        await asyncio.gather(
            run(conversations.send_message, cid, a, "hi!"),
            run(conversations.send_message, cid, b, "hey!"),
        )
        messages = await run(conversations.list_messages, cid, a)
        assert sorted(m.content for m in messages) == ["hey!", "hi!"]

        # Neither shows up in the other's feed once matched.
        assert b not in await _feed_ids(run, services, a)
        assert a not in await _feed_ids(run, services, b)


class TestBlockScenario:

    @pytest.mark.asyncio
    async def test_block_removes_pair_from_both_feeds(self, services, make_profile, run):
        a, b, c = await make_profile("A"), await make_profile("B"), await make_profile("C")
        assert await _feed_ids(run, services, a) == {b, c}

        await run(services["social"].block_user, a, b)

        assert await _feed_ids(run, services, a) == {c}
        assert await _feed_ids(run, services, b) == {c}
        assert b not in await _feed_ids(run, services, a, Mode.FRIENDS)

    @pytest.mark.asyncio
    async def test_block_and_hide_are_independent(self, services, make_profile, run):
        ledger, conversations = services["ledger"], services["conversations"]
        a, b = await make_profile("A"), await make_profile("B")
        await run(ledger.record_swipe, a, b, SwipeDirection.RIGHT, Mode.DATING)
        outcome = await run(ledger.record_swipe, b, a, SwipeDirection.RIGHT, Mode.DATING)
        cid = outcome.match.conversation.id

        await run(services["social"].block_user, a, b)

        # Block withholds the conversation but leaves its state alone.
        assert await run(conversations.list_conversations, b) == []
        assert (await run(conversations.get_view, cid, a)).state is ParticipantState.ACTIVE

        await run(services["social"].unblock_user, a, b)
        assert [v.conversation.id for v in await run(conversations.list_conversations, b)] == [cid]


class TestHiddenWithUnread:

    @pytest.mark.asyncio
    async def test_hidden_conversation_keeps_counting_unread(self, services, make_profile, run):
        conversations = services["conversations"]
        a, b = await make_profile("A"), await make_profile("B")
        conversation, _ = await run(conversations.fetch_or_create, b, a, ConversationType.DATING)
        cid = conversation.id

        for i in range(3):
            await run(conversations.send_message, cid, b, f"message {i + 1}")
        assert (await run(conversations.get_view, cid, a)).unread_count == 3

        await run(conversations.hide, cid, a)
        await run(conversations.send_message, cid, b, "message 4")

        view = await run(conversations.get_view, cid, a)
        assert view.state is ParticipantState.HIDDEN
        assert view.unread
        assert view.unread_count == 4
        assert await run(conversations.is_unread, cid, a)

        hidden = await run(conversations.list_conversations, a, "hidden")
        assert [v.conversation.id for v in hidden] == [cid]
        assert await run(conversations.list_conversations, a, "visible") == []

        # The sender's view is unaffected.
        assert (await run(conversations.get_view, cid, b)).state is ParticipantState.ACTIVE
