"""
Drift Engine - Moderation report intake.

Reports are stored for an external moderation queue; the engine applies no
policy of its own beyond recording them.
"""

import uuid
from datetime import datetime

from sqlalchemy import CheckConstraint, ForeignKey, Index, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from drift_engine.database import Base, UTCDateTime, utcnow
from drift_engine.models.enums import ReportCategory, ReportContentType, enum_column


class Report(Base):
    __tablename__ = "reports"
    __table_args__ = (
        CheckConstraint("reporter_id <> reported_user_id", name="ck_report_not_self"),
        Index("ix_reports_reported_user", "reported_user_id", "created_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=uuid.uuid4
    )
    reporter_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    reported_user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    category: Mapped[ReportCategory] = mapped_column(
        enum_column(ReportCategory), nullable=False
    )
    content_type: Mapped[ReportContentType] = mapped_column(
        enum_column(ReportContentType), default=ReportContentType.PROFILE, nullable=False
    )
    message_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("messages.id", ondelete="SET NULL"), nullable=True
    )
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime, default=utcnow, nullable=False
    )

    def __repr__(self) -> str:
        return f"<Report {self.reporter_id} -> {self.reported_user_id} category={self.category}>"
