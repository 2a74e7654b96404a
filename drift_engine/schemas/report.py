from pydantic import BaseModel, Field
from uuid import UUID
from datetime import datetime
from typing import Optional

from drift_engine.models.enums import ReportCategory, ReportContentType


class ReportCreate(BaseModel):
    reported_user_id: UUID
    category: ReportCategory
    content_type: ReportContentType = ReportContentType.PROFILE
    message_id: Optional[UUID] = None
    description: Optional[str] = Field(None, max_length=2000)


class ReportResponse(BaseModel):
    id: UUID
    reporter_id: UUID
    reported_user_id: UUID
    category: ReportCategory
    content_type: ReportContentType
    message_id: Optional[UUID] = None
    created_at: datetime

    model_config = {"from_attributes": True}
