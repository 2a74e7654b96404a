from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, Field


class Topic(str, Enum):
    MATCHES = "matches"
    FRIEND_REQUESTS = "friend-requests"
    SWIPES = "swipes-affecting-me"
    CONVERSATIONS = "conversation-updates"


class EventEnvelope(BaseModel):
    """A change hint delivered to one user on one topic.

    Envelopes carry ids only.  Clients re-fetch (or merge by ``entity_id``)
    on receipt, so replaying an envelope is always harmless.
    """

    event_id: uuid.UUID = Field(default_factory=uuid.uuid4)
    topic: Topic
    user_id: uuid.UUID
    entity_type: str
    entity_id: uuid.UUID | None = None
    change_kind: str
    emitted_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
