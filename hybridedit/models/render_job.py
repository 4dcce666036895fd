import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import JSON, DateTime, Integer, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from hybridedit.models.base import Base, TimestampMixin, UUIDMixin


class RenderJob(Base, UUIDMixin, TimestampMixin):
    """Durable record backing one entry of the render queue."""

    __tablename__ = "render_jobs"

    # Type: proxy, export
    job_type: Mapped[str] = mapped_column(String(20), nullable=False)

    # Kept without a foreign key so job history survives project cleanup
    project_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    options: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict, nullable=False)

    # Status: pending, processing, completed, failed, cancelled
    status: Mapped[str] = mapped_column(String(50), default="pending", index=True)

    # Outcome
    result: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Timing
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    def __repr__(self) -> str:
        return f"<RenderJob {self.id} {self.job_type} v{self.version} ({self.status})>"
