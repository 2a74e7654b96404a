"""Tests for realtime fan-out: subscriptions, the commit-time outbox and the
WebSocket stream."""
import json
import uuid
from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient
from redis.exceptions import ConnectionError as RedisConnectionError
from starlette.websockets import WebSocketDisconnect

from drift_engine.api.realtime import (
    CLOSE_BAD_REQUEST,
    CLOSE_STREAM_LOST,
    CLOSE_UNAUTHORIZED,
    parse_topics,
)
from drift_engine.database import run_transaction, session_scope
from drift_engine.schemas.events import EventEnvelope, Topic
from drift_engine.services.realtime import (
    ALL_TOPICS,
    EventBus,
    InMemoryEventBus,
    RedisEventBus,
    merge_by_id,
    publish_all,
    resync_envelopes,
    set_event_bus,
    stage_event,
)


def _envelope(user_id, topic=Topic.MATCHES, change_kind="created"):
    return EventEnvelope(
        topic=topic,
        user_id=user_id,
        entity_type="match",
        entity_id=uuid.uuid4(),
        change_kind=change_kind,
    )


class _BrokenPubSub:
    """Redis pub/sub whose connection drops on the first read."""

    def __init__(self, fail_cleanup=False):
        self.fail_cleanup = fail_cleanup
        self.subscribed = []

    async def subscribe(self, *channels):
        self.subscribed.extend(channels)

    async def get_message(self, ignore_subscribe_messages=False, timeout=None):
        raise RedisConnectionError("Connection closed by server.")

    async def unsubscribe(self, *channels):
        if self.fail_cleanup:
            raise RedisConnectionError("Connection closed by server.")

    async def aclose(self):
        pass


class _BrokenRedis:

    def __init__(self, pubsub):
        self._pubsub = pubsub

    def pubsub(self):
        return self._pubsub


class TestSubscription:

    @pytest.mark.asyncio
    async def test_duplicates_delivered_once(self):
        bus = InMemoryEventBus(max_queue=8, dedupe_window=8)
        user = uuid.uuid4()
        envelope = _envelope(user)
        async with bus.subscribe(user) as sub:
            await bus.publish(envelope)
            await bus.publish(envelope)
            assert (await sub.get(timeout=0.5)).event_id == envelope.event_id
            assert await sub.get(timeout=0.05) is None

    @pytest.mark.asyncio
    async def test_slow_subscriber_drops_oldest(self):
        bus = InMemoryEventBus(max_queue=2, dedupe_window=8)
        user = uuid.uuid4()
        sent = [_envelope(user) for _ in range(3)]
        async with bus.subscribe(user) as sub:
            for envelope in sent:
                await bus.publish(envelope)
            got = [await sub.get(timeout=0.5), await sub.get(timeout=0.5)]
            assert sub.dropped == 1
        assert [e.event_id for e in got] == [e.event_id for e in sent[1:]]

    @pytest.mark.asyncio
    async def test_topic_and_user_filtering(self):
        bus = InMemoryEventBus(max_queue=8, dedupe_window=8)
        me, other = uuid.uuid4(), uuid.uuid4()
        async with bus.subscribe(me, [Topic.FRIEND_REQUESTS]) as sub:
            await bus.publish(_envelope(me, Topic.MATCHES))
            await bus.publish(_envelope(other, Topic.FRIEND_REQUESTS))
            wanted = _envelope(me, Topic.FRIEND_REQUESTS)
            await bus.publish(wanted)
            assert (await sub.get(timeout=0.5)).event_id == wanted.event_id
            assert await sub.get(timeout=0.05) is None

    @pytest.mark.asyncio
    async def test_closing_ends_iteration(self):
        bus = InMemoryEventBus(max_queue=8, dedupe_window=8)
        user = uuid.uuid4()
        async with bus.subscribe(user) as sub:
            await bus.publish(_envelope(user))
            sub.close()
            received = [envelope async for envelope in sub]
        assert len(received) == 1
        assert bus.subscriber_count(user) == 0

    @pytest.mark.asyncio
    async def test_per_topic_order_preserved(self):
        bus = InMemoryEventBus(max_queue=16, dedupe_window=16)
        user = uuid.uuid4()
        sent = [_envelope(user, Topic.CONVERSATIONS, change_kind=str(i)) for i in range(5)]
        async with bus.subscribe(user, [Topic.CONVERSATIONS]) as sub:
            for envelope in sent:
                await bus.publish(envelope)
            got = [(await sub.get(timeout=0.5)).change_kind for _ in sent]
        assert got == ["0", "1", "2", "3", "4"]


class TestOutbox:

    @pytest.mark.asyncio
    async def test_published_only_after_commit(self, session_factory, event_bus):
        user = uuid.uuid4()
        async with event_bus.subscribe(user) as sub:
            async with session_scope(session_factory) as db:
                stage_event(
                    db, user_id=user, topic=Topic.MATCHES,
                    entity_type="match", entity_id=None, change_kind="created",
                )
                assert await sub.get(timeout=0.05) is None
            assert (await sub.get(timeout=0.5)).change_kind == "created"

    @pytest.mark.asyncio
    async def test_dropped_on_rollback(self, session_factory, event_bus):
        user = uuid.uuid4()

        async def work(db):
            stage_event(
                db, user_id=user, topic=Topic.MATCHES,
                entity_type="match", entity_id=None, change_kind="created",
            )
            raise ValueError("boom")

        async with event_bus.subscribe(user) as sub:
            with pytest.raises(ValueError):
                await run_transaction(session_factory, work)
            assert await sub.get(timeout=0.1) is None

    @pytest.mark.asyncio
    async def test_publish_failures_are_swallowed(self):
        class BrokenBus(EventBus):
            calls = 0

            async def publish(self, envelope):
                BrokenBus.calls += 1
                raise ConnectionError("bus down")

        user = uuid.uuid4()
        await publish_all(BrokenBus(), [_envelope(user), _envelope(user)])
        assert BrokenBus.calls == 2


class TestRedisBus:

    @pytest.mark.asyncio
    async def test_publishes_json_on_per_user_topic_channel(self):
        published = []

        class FakeRedis:
            async def publish(self, channel, data):
                published.append((channel, data))

        bus = RedisEventBus("redis://unused", client=FakeRedis(), prefix="test")
        user = uuid.uuid4()
        envelope = _envelope(user, Topic.SWIPES)
        await bus.publish(envelope)

        ((channel, data),) = published
        assert channel == f"test:{user}:swipes-affecting-me"
        assert EventEnvelope.model_validate_json(data) == envelope

    @pytest.mark.asyncio
    async def test_publish_before_connect_fails(self):
        bus = RedisEventBus("redis://unused")
        with pytest.raises(RuntimeError):
            await bus.publish(_envelope(uuid.uuid4()))
        assert not await bus.ping()

    @pytest.mark.asyncio
    async def test_lost_connection_ends_subscription(self):
        pubsub = _BrokenPubSub()
        bus = RedisEventBus("redis://unused", client=_BrokenRedis(pubsub), prefix="test")
        user = uuid.uuid4()
        async with bus.subscribe(user, [Topic.MATCHES]) as sub:
            assert await sub.get(timeout=1) is None
            assert sub.failed
            assert sub.closed
        assert pubsub.subscribed == [f"test:{user}:matches"]

    @pytest.mark.asyncio
    async def test_cleanup_errors_after_lost_connection_are_contained(self):
        pubsub = _BrokenPubSub(fail_cleanup=True)
        bus = RedisEventBus("redis://unused", client=_BrokenRedis(pubsub), prefix="test")
        async with bus.subscribe(uuid.uuid4()) as sub:
            received = [envelope async for envelope in sub]
        assert received == []
        assert sub.failed


class TestClientHelpers:

    def test_merge_by_id_is_idempotent(self):
        a = SimpleNamespace(id=1, version=1, name="a")
        b = SimpleNamespace(id=2, version=1, name="b")
        once = merge_by_id({}, [a, b])
        twice = merge_by_id(once, [a, b])
        assert once == twice
        assert set(twice) == {1, 2}

    def test_merge_by_id_never_goes_backwards(self):
        old = SimpleNamespace(id=1, version=1)
        new = SimpleNamespace(id=1, version=2)
        version = lambda item: item.version  # noqa: E731
        merged = merge_by_id({1: new}, [old], version=version)
        assert merged[1] is new
        merged = merge_by_id({1: old}, [new], version=version)
        assert merged[1] is new

    def test_resync_one_per_topic(self):
        user = uuid.uuid4()
        envelopes = resync_envelopes(user, ALL_TOPICS)
        assert [e.topic for e in envelopes] == list(ALL_TOPICS)
        assert {e.change_kind for e in envelopes} == {"resync"}

    def test_parse_topics(self):
        assert parse_topics(None) == ALL_TOPICS
        assert parse_topics(" , ") == ALL_TOPICS
        assert parse_topics("matches, matches,swipes-affecting-me") == (
            Topic.MATCHES,
            Topic.SWIPES,
        )
        with pytest.raises(ValueError):
            parse_topics("matches,gossip")


class TestWebSocket:
    """Runs the endpoint in TestClient's portal loop; the lifespan is not
    started, so the per-test in-memory bus stays installed."""

    @pytest.fixture
    def ws_client(self):
        from drift_engine.main import app

        return TestClient(app)

    def test_resync_then_live_events(self, ws_client, event_bus):
        user = uuid.uuid4()
        with ws_client.websocket_connect(
            "/api/v1/realtime/ws?topics=matches,conversation-updates",
            headers={"X-User-Id": str(user)},
        ) as ws:
            first = json.loads(ws.receive_text())
            second = json.loads(ws.receive_text())
            assert [first["topic"], second["topic"]] == ["matches", "conversation-updates"]
            assert first["change_kind"] == "resync"

            ignored = _envelope(user, Topic.SWIPES)
            wanted = _envelope(user, Topic.MATCHES)
            ws.portal.call(event_bus.publish, ignored)
            ws.portal.call(event_bus.publish, wanted)

            live = json.loads(ws.receive_text())
            assert live["event_id"] == str(wanted.event_id)
            assert live["user_id"] == str(user)

    def test_user_id_query_parameter(self, ws_client):
        user = uuid.uuid4()
        with ws_client.websocket_connect(
            f"/api/v1/realtime/ws?topics=matches&user_id={user}"
        ) as ws:
            assert json.loads(ws.receive_text())["user_id"] == str(user)

    def test_missing_user_rejected(self, ws_client):
        with ws_client.websocket_connect("/api/v1/realtime/ws") as ws:
            with pytest.raises(WebSocketDisconnect) as exc_info:
                ws.receive_text()
        assert exc_info.value.code == CLOSE_UNAUTHORIZED

    def test_unknown_topic_rejected(self, ws_client):
        with ws_client.websocket_connect(
            "/api/v1/realtime/ws?topics=gossip",
            headers={"X-User-Id": str(uuid.uuid4())},
        ) as ws:
            with pytest.raises(WebSocketDisconnect) as exc_info:
                ws.receive_text()
        assert exc_info.value.code == CLOSE_BAD_REQUEST

    def test_lost_stream_closes_for_reconnect(self, ws_client):
        set_event_bus(
            RedisEventBus("redis://unused", client=_BrokenRedis(_BrokenPubSub()), prefix="test")
        )
        with ws_client.websocket_connect(
            "/api/v1/realtime/ws?topics=matches",
            headers={"X-User-Id": str(uuid.uuid4())},
        ) as ws:
            assert json.loads(ws.receive_text())["change_kind"] == "resync"
            with pytest.raises(WebSocketDisconnect) as exc_info:
                ws.receive_text()
        assert exc_info.value.code == CLOSE_STREAM_LOST
