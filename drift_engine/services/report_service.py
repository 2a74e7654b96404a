"""
Drift Engine - Report intake

Records moderation reports about a profile or a message.  What happens next
is decided by the external moderation service.
"""

from __future__ import annotations

import uuid

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from drift_engine.database import utcnow
from drift_engine.errors import NotFoundError, ValidationError
from drift_engine.models.conversation import Conversation, Message
from drift_engine.models.enums import ReportCategory, ReportContentType
from drift_engine.models.report import Report
from drift_engine.models.user import User

logger = structlog.get_logger("drift.report_service")


class ReportService:

    async def submit_report(
        self,
        db: AsyncSession,
        reporter_id: uuid.UUID,
        reported_user_id: uuid.UUID,
        category: ReportCategory,
        content_type: ReportContentType = ReportContentType.PROFILE,
        message_id: uuid.UUID | None = None,
        description: str | None = None,
    ) -> Report:
        """Store a report.  A message report must point at a message the
        reported user sent in a conversation the reporter belongs to."""
        log = logger.bind(reporter_id=str(reporter_id), reported_user_id=str(reported_user_id))

        if reporter_id == reported_user_id:
            raise ValidationError("You cannot report yourself.", code="self_report")
        if await db.get(User, reported_user_id) is None:
            raise NotFoundError(f"User {reported_user_id} not found.")

        if content_type is ReportContentType.MESSAGE:
            if message_id is None:
                raise ValidationError("A message report needs a message_id.")
            message = await db.get(Message, message_id)
            conversation = (
                await db.get(Conversation, message.conversation_id) if message is not None else None
            )
            if (
                message is None
                or message.sender_id != reported_user_id
                or conversation is None
                or not conversation.has_participant(reporter_id)
            ):
                raise ValidationError("The reported message was not found.", code="invalid_message")
        elif message_id is not None:
            raise ValidationError("message_id is only valid for message reports.")

        report = Report(
            reporter_id=reporter_id,
            reported_user_id=reported_user_id,
            category=category,
            content_type=content_type,
            message_id=message_id,
            description=(description or "").strip() or None,
            created_at=utcnow(),
        )
        db.add(report)
        await db.flush()

        log.info("report_submitted", report_id=str(report.id), category=category.value)
        return report
