"""
Drift Engine - Realtime Fan-out

Per-user topics (``matches``, ``friend-requests``, ``swipes-affecting-me``,
``conversation-updates``) carrying :class:`EventEnvelope` hints.

Delivery contract:
  * at-least-once, ordered within one topic for one user only;
  * events are hints - clients re-fetch or merge by entity id, so a
    duplicate or late envelope is a no-op against current state;
  * publishing is fire-and-forget; a slow subscriber loses its *oldest*
    queued envelopes rather than applying backpressure to writers.

Services never talk to the bus directly.  They ``stage_event`` on the
SQLAlchemy session and the unit-of-work helpers in ``drift_engine.database``
publish the staged envelopes after the transaction commits, so a client is
never told about a row it cannot read yet.
"""

from __future__ import annotations

import asyncio
import uuid
from collections import OrderedDict
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Callable, Hashable, Iterable

import structlog
from redis.exceptions import RedisError

from drift_engine.config import get_settings
from drift_engine.schemas.events import EventEnvelope, Topic

logger = structlog.get_logger("drift.realtime")

_STAGED_KEY = "drift_staged_events"

ALL_TOPICS: tuple[Topic, ...] = tuple(Topic)


# ──────────────────────────────────────────────────────────────────────────────
# Session-scoped outbox
# ──────────────────────────────────────────────────────────────────────────────

def stage_event(
    session: Any,
    *,
    user_id: uuid.UUID,
    topic: Topic,
    entity_type: str,
    entity_id: uuid.UUID | None,
    change_kind: str,
) -> EventEnvelope:
    envelope = EventEnvelope(
        topic=topic,
        user_id=user_id,
        entity_type=entity_type,
        entity_id=entity_id,
        change_kind=change_kind,
    )
    session.info.setdefault(_STAGED_KEY, []).append(envelope)
    return envelope


def take_staged(session: Any) -> list[EventEnvelope]:
    return session.info.pop(_STAGED_KEY, [])


def discard_staged(session: Any) -> None:
    session.info.pop(_STAGED_KEY, None)


async def publish_all(bus: "EventBus", events: Iterable[EventEnvelope]) -> None:
    """Publish committed events.  Failures are logged, not raised: the data
    is already committed and the next fetch reconstructs it."""
    for envelope in events:
        try:
            await bus.publish(envelope)
        except Exception:
            logger.warning(
                "event_publish_failed",
                topic=envelope.topic.value,
                user_id=str(envelope.user_id),
                event_id=str(envelope.event_id),
                exc_info=True,
            )


# ──────────────────────────────────────────────────────────────────────────────
# Subscription
# ──────────────────────────────────────────────────────────────────────────────

_CLOSED = object()


class Subscription:
    """Bounded, de-duplicating stream of envelopes for one user.

    Iterate with ``async for``; iteration ends when the subscription is
    closed.  ``dropped`` counts envelopes discarded under backpressure, and
    ``failed`` is set when the backend lost the stream, after which the
    client must reconnect and resync.
    """

    def __init__(
        self,
        user_id: uuid.UUID,
        topics: Iterable[Topic],
        *,
        max_queue: int,
        dedupe_window: int,
    ) -> None:
        self.user_id = user_id
        self.topics: frozenset[Topic] = frozenset(topics)
        self.dropped = 0
        self.failed = False
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=max_queue)
        self._seen: OrderedDict[uuid.UUID, None] = OrderedDict()
        self._dedupe_window = dedupe_window
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def offer(self, envelope: EventEnvelope) -> None:
        if self._closed or envelope.topic not in self.topics:
            return
        self._put(envelope)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._put(_CLOSED)

    def fail(self) -> None:
        self.failed = True
        self.close()

    def _put(self, item: object) -> None:
        while True:
            try:
                self._queue.put_nowait(item)
                return
            except asyncio.QueueFull:
                self._queue.get_nowait()
                self.dropped += 1

    def _is_duplicate(self, envelope: EventEnvelope) -> bool:
        if envelope.event_id in self._seen:
            return True
        self._seen[envelope.event_id] = None
        if len(self._seen) > self._dedupe_window:
            self._seen.popitem(last=False)
        return False

    async def get(self, timeout: float | None = None) -> EventEnvelope | None:
        """Return the next envelope, or None on timeout / close."""
        while True:
            try:
                item = await asyncio.wait_for(self._queue.get(), timeout=timeout)
            except asyncio.TimeoutError:
                return None
            if item is _CLOSED:
                return None
            if not self._is_duplicate(item):
                return item

    def __aiter__(self) -> "Subscription":
        return self

    async def __anext__(self) -> EventEnvelope:
        item = await self.get()
        if item is None:
            raise StopAsyncIteration
        return item


# ──────────────────────────────────────────────────────────────────────────────
# Bus backends
# ──────────────────────────────────────────────────────────────────────────────

class EventBus:
    """Interface shared by the fan-out backends."""

    async def connect(self) -> None:
        return None

    async def close(self) -> None:
        return None

    async def publish(self, envelope: EventEnvelope) -> None:
        raise NotImplementedError

    def subscribe(self, user_id: uuid.UUID, topics: Iterable[Topic] = ALL_TOPICS):
        raise NotImplementedError

    async def ping(self) -> bool:
        return True


class InMemoryEventBus(EventBus):
    """Single-process bus.  Suitable for development, tests and
    single-worker deployments."""

    def __init__(self, *, max_queue: int | None = None, dedupe_window: int | None = None) -> None:
        settings = get_settings()
        self._max_queue = max_queue or settings.REALTIME_QUEUE_SIZE
        self._dedupe_window = dedupe_window or settings.REALTIME_DEDUPE_WINDOW
        self._subscribers: dict[uuid.UUID, set[Subscription]] = {}

    def subscriber_count(self, user_id: uuid.UUID) -> int:
        return len(self._subscribers.get(user_id, ()))

    async def publish(self, envelope: EventEnvelope) -> None:
        for sub in list(self._subscribers.get(envelope.user_id, ())):
            sub.offer(envelope)

    @asynccontextmanager
    async def subscribe(
        self,
        user_id: uuid.UUID,
        topics: Iterable[Topic] = ALL_TOPICS,
    ) -> AsyncIterator[Subscription]:
        sub = Subscription(
            user_id,
            topics,
            max_queue=self._max_queue,
            dedupe_window=self._dedupe_window,
        )
        self._subscribers.setdefault(user_id, set()).add(sub)
        logger.debug("subscription_opened", user_id=str(user_id), backend="memory")
        try:
            yield sub
        finally:
            sub.close()
            subs = self._subscribers.get(user_id)
            if subs is not None:
                subs.discard(sub)
                if not subs:
                    del self._subscribers[user_id]
            logger.debug("subscription_closed", user_id=str(user_id), dropped=sub.dropped)


class RedisEventBus(EventBus):
    """Cross-process bus on Redis pub/sub.

    One channel per (user, topic): ``{prefix}:{user_id}:{topic}``.  Redis
    preserves publish order per channel, which gives per-topic ordering.
    """

    def __init__(
        self,
        url: str | None = None,
        *,
        client: Any | None = None,
        prefix: str | None = None,
        max_queue: int | None = None,
        dedupe_window: int | None = None,
    ) -> None:
        settings = get_settings()
        self._url = url or settings.REDIS_URL
        self._client = client
        self._prefix = prefix or settings.REALTIME_CHANNEL_PREFIX
        self._max_queue = max_queue or settings.REALTIME_QUEUE_SIZE
        self._dedupe_window = dedupe_window or settings.REALTIME_DEDUPE_WINDOW

    def channel_for(self, user_id: uuid.UUID, topic: Topic) -> str:
        return f"{self._prefix}:{user_id}:{topic.value}"

    async def connect(self) -> None:
        if self._client is None:
            import redis.asyncio as aioredis

            self._client = aioredis.from_url(
                self._url,
                decode_responses=True,
                socket_connect_timeout=5,
            )
        await self._client.ping()
        logger.info("redis_connected", url=self._url)

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
            logger.info("redis_closed")

    async def ping(self) -> bool:
        if self._client is None:
            return False
        return bool(await self._client.ping())

    async def publish(self, envelope: EventEnvelope) -> None:
        if self._client is None:
            raise RuntimeError("RedisEventBus.publish called before connect()")
        await self._client.publish(
            self.channel_for(envelope.user_id, envelope.topic),
            envelope.model_dump_json(),
        )

    @asynccontextmanager
    async def subscribe(
        self,
        user_id: uuid.UUID,
        topics: Iterable[Topic] = ALL_TOPICS,
    ) -> AsyncIterator[Subscription]:
        if self._client is None:
            raise RuntimeError("RedisEventBus.subscribe called before connect()")
        topics = tuple(topics)
        sub = Subscription(
            user_id,
            topics,
            max_queue=self._max_queue,
            dedupe_window=self._dedupe_window,
        )
        pubsub = self._client.pubsub()
        channels = [self.channel_for(user_id, t) for t in topics]
        await pubsub.subscribe(*channels)
        pump = asyncio.create_task(self._pump(pubsub, sub))
        logger.debug("subscription_opened", user_id=str(user_id), backend="redis")
        try:
            yield sub
        finally:
            sub.close()
            pump.cancel()
            try:
                await pump
            except asyncio.CancelledError:
                pass
            try:
                await pubsub.unsubscribe(*channels)
                await pubsub.aclose()
            except (RedisError, OSError) as exc:
                logger.warning("subscription_cleanup_failed", user_id=str(user_id), error=str(exc))
            logger.debug("subscription_closed", user_id=str(user_id), dropped=sub.dropped)

    async def _pump(self, pubsub: Any, sub: Subscription) -> None:
        while not sub.closed:
            try:
                message = await pubsub.get_message(ignore_subscribe_messages=True, timeout=1.0)
            except (RedisError, OSError) as exc:
                logger.error("subscription_stream_lost", user_id=str(sub.user_id), error=str(exc))
                sub.fail()
                return
            if message is None or message.get("type") != "message":
                continue
            try:
                envelope = EventEnvelope.model_validate_json(message["data"])
            except ValueError:
                logger.warning("event_decode_failed", channel=message.get("channel"))
                continue
            sub.offer(envelope)


# ──────────────────────────────────────────────────────────────────────────────
# Process-wide bus
# ──────────────────────────────────────────────────────────────────────────────

_event_bus: EventBus | None = None


def get_event_bus() -> EventBus:
    global _event_bus
    if _event_bus is None:
        _event_bus = InMemoryEventBus()
    return _event_bus


def set_event_bus(bus: EventBus | None) -> None:
    global _event_bus
    _event_bus = bus


def build_event_bus() -> EventBus:
    settings = get_settings()
    if settings.use_redis:
        return RedisEventBus(settings.REDIS_URL)
    return InMemoryEventBus()


# ──────────────────────────────────────────────────────────────────────────────
# Client-side reconciliation
# ──────────────────────────────────────────────────────────────────────────────

def merge_by_id(
    current: dict[Hashable, Any],
    incoming: Iterable[Any],
    key: Callable[[Any], Hashable] = lambda item: item.id,
    version: Callable[[Any], Any] | None = None,
) -> dict[Hashable, Any]:
    """Merge freshly fetched entities into a local view keyed by id.

    With ``version`` given (e.g. ``updated_at``), an incoming item only
    replaces the local one when it is not older, so a late fetch can never
    roll state backwards.  Merging the same batch twice is a no-op.
    """
    merged = dict(current)
    for item in incoming:
        item_key = key(item)
        existing = merged.get(item_key)
        if existing is not None and version is not None:
            if version(item) < version(existing):
                continue
        merged[item_key] = item
    return merged


def resync_envelopes(user_id: uuid.UUID, topics: Iterable[Topic]) -> list[EventEnvelope]:
    """One ``resync`` hint per topic, sent when a stream (re)opens.

    Anything published while the client was disconnected is gone, so the
    client is told to re-fetch each topic before trusting live events.
    """
    return [
        EventEnvelope(
            topic=topic,
            user_id=user_id,
            entity_type=topic.value,
            entity_id=None,
            change_kind="resync",
        )
        for topic in topics
    ]
