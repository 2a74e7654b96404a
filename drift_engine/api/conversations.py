"""
Drift Engine - Conversations API

Endpoints for conversation creation, the visible/hidden lists, messaging,
read receipts, muting and the per-participant hide / unhide / leave
transitions.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Optional

import structlog
from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from drift_engine.api.deps import current_user_id, db_session
from drift_engine.database import get_session_factory, run_transaction
from drift_engine.models.conversation import ConversationParticipant
from drift_engine.schemas.conversation import (
    ConversationCreate,
    ConversationResponse,
    MessageCreate,
    MessageResponse,
    ParticipantStateResponse,
    UnreadTotalResponse,
)
from drift_engine.services.conversation_service import (
    HIDDEN,
    VISIBLE,
    ConversationService,
    ConversationView,
)

logger = structlog.get_logger("drift.api.conversations")

router = APIRouter()

_conversation_service: ConversationService | None = None


def _get_conversation_service() -> ConversationService:
    global _conversation_service
    if _conversation_service is None:
        _conversation_service = ConversationService()
    return _conversation_service


def _conversation_response(view: ConversationView) -> ConversationResponse:
    conversation = view.conversation
    return ConversationResponse(
        id=conversation.id,
        type=conversation.type,
        other_user_id=view.other_user_id,
        state=view.state,
        unread=view.unread,
        unread_count=view.unread_count,
        last_message=(
            MessageResponse.model_validate(view.last_message)
            if view.last_message is not None
            else None
        ),
        last_message_at=conversation.last_message_at,
        created_at=conversation.created_at,
        updated_at=conversation.updated_at,
        created=view.created,
    )


def _state_response(participant: ConversationParticipant) -> ParticipantStateResponse:
    return ParticipantStateResponse.model_validate(participant)


# ──────────────────────────────────────────────────────────────────────────────
# POST / - Fetch or create
# ──────────────────────────────────────────────────────────────────────────────

@router.post(
    "/",
    response_model=ConversationResponse,
    summary="Fetch or create the conversation with another user",
)
async def fetch_or_create_conversation(
    payload: ConversationCreate,
    response: Response,
    user_id: uuid.UUID = Depends(current_user_id),
    factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> ConversationResponse:
    """Idempotent: concurrent or repeated calls for the same pair and type
    return one conversation.  ``201`` only for the call that created it."""
    service = _get_conversation_service()

    async def work(db: AsyncSession) -> ConversationResponse:
        conversation, created = await service.fetch_or_create(
            db, user_id, payload.other_user_id, payload.type, payload.activity_id
        )
        view = await service.get_view(db, conversation.id, user_id)
        view.created = created
        return _conversation_response(view)

    body = await run_transaction(factory, work)
    response.status_code = status.HTTP_201_CREATED if body.created else status.HTTP_200_OK
    return body


# ──────────────────────────────────────────────────────────────────────────────
# Listing
# ──────────────────────────────────────────────────────────────────────────────

@router.get(
    "/",
    response_model=list[ConversationResponse],
    summary="List the acting user's conversations",
)
async def list_conversations(
    view: str = Query(VISIBLE, pattern=f"^({VISIBLE}|{HIDDEN})$"),
    user_id: uuid.UUID = Depends(current_user_id),
    db: AsyncSession = Depends(db_session),
) -> list[ConversationResponse]:
    """``visible`` lists Active conversations, ``hidden`` lists Hidden ones.
    Left conversations are in neither."""
    views = await _get_conversation_service().list_conversations(db, user_id, view)
    return [_conversation_response(v) for v in views]


@router.get(
    "/unread",
    response_model=UnreadTotalResponse,
    summary="Count unread conversations",
)
async def unread_total(
    user_id: uuid.UUID = Depends(current_user_id),
    db: AsyncSession = Depends(db_session),
) -> UnreadTotalResponse:
    total = await _get_conversation_service().unread_total(db, user_id)
    return UnreadTotalResponse(unread_conversations=total)


@router.get(
    "/{conversation_id}",
    response_model=ConversationResponse,
    summary="Get one conversation as the acting user sees it",
)
async def get_conversation(
    conversation_id: uuid.UUID,
    user_id: uuid.UUID = Depends(current_user_id),
    db: AsyncSession = Depends(db_session),
) -> ConversationResponse:
    view = await _get_conversation_service().get_view(db, conversation_id, user_id)
    return _conversation_response(view)


# ──────────────────────────────────────────────────────────────────────────────
# Messages
# ──────────────────────────────────────────────────────────────────────────────

@router.get(
    "/{conversation_id}/messages",
    response_model=list[MessageResponse],
    summary="List messages, oldest first",
)
async def list_messages(
    conversation_id: uuid.UUID,
    limit: int = Query(50, ge=1, le=200),
    before: Optional[datetime] = Query(None, description="Only messages older than this"),
    user_id: uuid.UUID = Depends(current_user_id),
    db: AsyncSession = Depends(db_session),
) -> list[MessageResponse]:
    messages = await _get_conversation_service().list_messages(
        db, conversation_id, user_id, limit=limit, before=before
    )
    return [MessageResponse.model_validate(m) for m in messages]


@router.post(
    "/{conversation_id}/messages",
    response_model=MessageResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Send a message",
)
async def send_message(
    conversation_id: uuid.UUID,
    payload: MessageCreate,
    user_id: uuid.UUID = Depends(current_user_id),
    factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> MessageResponse:
    """Append a message.  Send a ``client_message_id`` to make retries safe."""

    async def work(db: AsyncSession) -> MessageResponse:
        message = await _get_conversation_service().send_message(
            db, conversation_id, user_id, payload.content, payload.client_message_id
        )
        return MessageResponse.model_validate(message)

    return await run_transaction(factory, work)


# ──────────────────────────────────────────────────────────────────────────────
# Per-participant state
# ──────────────────────────────────────────────────────────────────────────────

async def _transition(factory, action: str, conversation_id: uuid.UUID, user_id: uuid.UUID):
    service = _get_conversation_service()
    operation = getattr(service, action)

    async def work(db: AsyncSession) -> ParticipantStateResponse:
        participant = await operation(db, conversation_id, user_id)
        return _state_response(participant)

    result = await run_transaction(factory, work)
    logger.info(
        "conversation_transition",
        action=action,
        conversation_id=str(conversation_id),
        user_id=str(user_id),
        state=result.state.value,
    )
    return result


@router.post(
    "/{conversation_id}/read",
    response_model=ParticipantStateResponse,
    summary="Mark the conversation read",
)
async def mark_read(
    conversation_id: uuid.UUID,
    user_id: uuid.UUID = Depends(current_user_id),
    factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> ParticipantStateResponse:
    return await _transition(factory, "mark_read", conversation_id, user_id)


@router.post(
    "/{conversation_id}/hide",
    response_model=ParticipantStateResponse,
    summary="Hide the conversation for the acting user",
)
async def hide(
    conversation_id: uuid.UUID,
    user_id: uuid.UUID = Depends(current_user_id),
    factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> ParticipantStateResponse:
    return await _transition(factory, "hide", conversation_id, user_id)


@router.post(
    "/{conversation_id}/unhide",
    response_model=ParticipantStateResponse,
    summary="Move the conversation back to the visible list",
)
async def unhide(
    conversation_id: uuid.UUID,
    user_id: uuid.UUID = Depends(current_user_id),
    factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> ParticipantStateResponse:
    return await _transition(factory, "unhide", conversation_id, user_id)


@router.post(
    "/{conversation_id}/leave",
    response_model=ParticipantStateResponse,
    summary="Leave the conversation (unmatch)",
)
async def leave(
    conversation_id: uuid.UUID,
    user_id: uuid.UUID = Depends(current_user_id),
    factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> ParticipantStateResponse:
    """Terminal for the acting user until the other side writes again.  The
    other participant's view is unchanged."""
    return await _transition(factory, "leave", conversation_id, user_id)


@router.post(
    "/{conversation_id}/mute",
    response_model=ParticipantStateResponse,
    summary="Mute notifications for the conversation",
)
async def mute(
    conversation_id: uuid.UUID,
    user_id: uuid.UUID = Depends(current_user_id),
    factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> ParticipantStateResponse:
    return await _transition(factory, "mute", conversation_id, user_id)


@router.post(
    "/{conversation_id}/unmute",
    response_model=ParticipantStateResponse,
    summary="Unmute notifications for the conversation",
)
async def unmute(
    conversation_id: uuid.UUID,
    user_id: uuid.UUID = Depends(current_user_id),
    factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> ParticipantStateResponse:
    return await _transition(factory, "unmute", conversation_id, user_id)
