"""Unit tests for ReportService - moderation report intake."""
import uuid

import pytest

from drift_engine.errors import NotFoundError, ValidationError
from drift_engine.models.enums import ConversationType, ReportCategory, ReportContentType
from drift_engine.services.conversation_service import ConversationService
from drift_engine.services.report_service import ReportService

MESSAGE = ReportContentType.MESSAGE


@pytest.fixture
def report_service():
    return ReportService()


class TestProfileReports:

    @pytest.mark.asyncio
    async def test_profile_report_stored(self, report_service, make_profile, run):
        me, them = await make_profile(), await make_profile()
        report = await run(
            report_service.submit_report, me, them, ReportCategory.SPAM,
            description="  sells followers  ",
        )
        assert report.id is not None
        assert report.content_type is ReportContentType.PROFILE
        assert report.description == "sells followers"

    @pytest.mark.asyncio
    async def test_self_and_unknown_targets(self, report_service, make_profile, run):
        me = await make_profile()
        with pytest.raises(ValidationError):
            await run(report_service.submit_report, me, me, ReportCategory.OTHER)
        with pytest.raises(NotFoundError):
            await run(report_service.submit_report, me, uuid.uuid4(), ReportCategory.OTHER)

    @pytest.mark.asyncio
    async def test_message_id_only_for_message_reports(self, report_service, make_profile, run):
        me, them = await make_profile(), await make_profile()
        with pytest.raises(ValidationError):
            await run(
                report_service.submit_report, me, them, ReportCategory.SPAM,
                message_id=uuid.uuid4(),
            )


class TestMessageReports:
    """A message report must name a message the reported user sent in a
    conversation the reporter belongs to."""

    @pytest.mark.asyncio
    async def test_valid_message_report(self, report_service, make_profile, run):
        conversations = ConversationService()
        me, them = await make_profile(), await make_profile()
        conversation, _ = await run(conversations.fetch_or_create, me, them, ConversationType.DATING)
        message = await run(conversations.send_message, conversation.id, them, "rude words")

        report = await run(
            report_service.submit_report, me, them, ReportCategory.HARASSMENT, MESSAGE, message.id
        )
        assert report.message_id == message.id

    @pytest.mark.asyncio
    async def test_rejects_foreign_or_mismatched_messages(self, report_service, make_profile, run):
        conversations = ConversationService()
        me, them, outsider = [await make_profile() for _ in range(3)]
        conversation, _ = await run(conversations.fetch_or_create, me, them, ConversationType.DATING)
        mine = await run(conversations.send_message, conversation.id, me, "hello")
        theirs = await run(conversations.send_message, conversation.id, them, "hi")

        with pytest.raises(ValidationError):
            await run(report_service.submit_report, me, them, ReportCategory.SPAM, MESSAGE)
        with pytest.raises(ValidationError):
            await run(report_service.submit_report, me, them, ReportCategory.SPAM, MESSAGE, mine.id)
        with pytest.raises(ValidationError):
            await run(
                report_service.submit_report, outsider, them, ReportCategory.SPAM, MESSAGE, theirs.id
            )
        with pytest.raises(ValidationError):
            await run(
                report_service.submit_report, me, them, ReportCategory.SPAM, MESSAGE, uuid.uuid4()
            )
