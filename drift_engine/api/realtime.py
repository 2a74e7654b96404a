"""
Drift Engine - Realtime WebSocket

Streams :class:`EventEnvelope` hints for the connected user.  The first
frames after connecting are one ``resync`` envelope per requested topic;
events published while the client was away are not replayed, so clients
re-fetch on resync and then apply live hints by id.

Close codes:
  * ``4401`` - no valid user id (``X-User-Id`` header or ``user_id`` query);
  * ``4400`` - unknown topic requested;
  * ``1012`` - the event stream was lost server-side; reconnect and resync.
"""

from __future__ import annotations

import asyncio
import contextlib
import uuid
from typing import Optional

import structlog
from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from drift_engine.api.deps import parse_user_id
from drift_engine.schemas.events import Topic
from drift_engine.services.realtime import (
    ALL_TOPICS,
    Subscription,
    get_event_bus,
    resync_envelopes,
)

logger = structlog.get_logger("drift.api.realtime")

router = APIRouter()

CLOSE_UNAUTHORIZED = 4401
CLOSE_BAD_REQUEST = 4400
CLOSE_STREAM_LOST = 1012


def parse_topics(raw: Optional[str]) -> tuple[Topic, ...]:
    """Comma-separated topic names; empty means every topic.

    Raises ``ValueError`` on an unknown name.
    """
    if not raw:
        return ALL_TOPICS
    names = [part.strip() for part in raw.split(",") if part.strip()]
    if not names:
        return ALL_TOPICS
    topics: list[Topic] = []
    for name in names:
        topic = Topic(name)
        if topic not in topics:
            topics.append(topic)
    return tuple(topics)


async def _watch_client(websocket: WebSocket, sub: Subscription) -> None:
    """Consume client frames until it goes away, then end the stream."""
    try:
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        pass
    finally:
        sub.close()


@router.websocket("/ws")
async def stream_events(
    websocket: WebSocket,
    topics: Optional[str] = None,
    user_id: Optional[str] = None,
) -> None:
    await websocket.accept()

    subscriber: uuid.UUID | None = (
        parse_user_id(websocket.headers.get("x-user-id")) or parse_user_id(user_id)
    )
    if subscriber is None:
        await websocket.close(code=CLOSE_UNAUTHORIZED)
        return
    try:
        selected = parse_topics(topics)
    except ValueError:
        await websocket.close(code=CLOSE_BAD_REQUEST)
        return

    log = logger.bind(user_id=str(subscriber), topics=[t.value for t in selected])
    log.info("realtime_connected")

    async with get_event_bus().subscribe(subscriber, selected) as sub:
        watcher = asyncio.create_task(_watch_client(websocket, sub))
        sent = 0
        try:
            for envelope in resync_envelopes(subscriber, selected):
                await websocket.send_text(envelope.model_dump_json())
            async for envelope in sub:
                await websocket.send_text(envelope.model_dump_json())
                sent += 1
            if sub.failed:
                log.warning("realtime_stream_lost")
                await websocket.close(code=CLOSE_STREAM_LOST)
        except (WebSocketDisconnect, RuntimeError):
            # RuntimeError: send after the client closed its side.
            pass
        finally:
            watcher.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await watcher
            log.info("realtime_disconnected", sent=sent, dropped=sub.dropped)
