"""
Drift Engine - Reports API

Moderation intake only; decisions are made by the moderation service.
"""

from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from drift_engine.api.deps import current_user_id
from drift_engine.database import get_session_factory, run_transaction
from drift_engine.schemas.report import ReportCreate, ReportResponse
from drift_engine.services.report_service import ReportService

router = APIRouter()

_report_service = ReportService()


@router.post(
    "/",
    response_model=ReportResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Report a profile or a message",
)
async def submit_report(
    payload: ReportCreate,
    user_id: uuid.UUID = Depends(current_user_id),
    factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> ReportResponse:
    async def work(db: AsyncSession) -> ReportResponse:
        report = await _report_service.submit_report(
            db,
            user_id,
            payload.reported_user_id,
            payload.category,
            content_type=payload.content_type,
            message_id=payload.message_id,
            description=payload.description,
        )
        return ReportResponse.model_validate(report)

    return await run_transaction(factory, work)
