import uuid
from datetime import datetime

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    false,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from hybridedit.models.base import Base, TimestampMixin, UUIDMixin


class ExportVersion(Base, UUIDMixin, TimestampMixin):
    """Catalog record for a materialized high-resolution export.

    At most one record exists per (project_id, version). ``pinned`` is user
    controlled, ``gc_candidate`` / ``gc_marked_at`` are system controlled and
    a pinned export is never a GC candidate.
    """

    __tablename__ = "export_versions"
    __table_args__ = (
        UniqueConstraint("project_id", "version", name="uq_export_versions_project_version"),
        CheckConstraint("NOT (pinned AND gc_candidate)", name="ck_export_versions_pin_excludes_gc"),
    )

    project_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    # Storage: key is relative to the storage root, file_path is absolute
    storage_key: Mapped[str] = mapped_column(String(500), nullable=False)
    file_path: Mapped[str] = mapped_column(Text, nullable=False)

    # Media metadata
    size: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)
    resolution: Mapped[str | None] = mapped_column(String(20), nullable=True)  # e.g. "1920x1080"
    duration: Mapped[float | None] = mapped_column(Float, nullable=True)  # seconds
    format: Mapped[str] = mapped_column(String(10), default="mp4", nullable=False)

    # Lifecycle
    pinned: Mapped[bool] = mapped_column(Boolean, default=False, server_default=false(), nullable=False)
    gc_candidate: Mapped[bool] = mapped_column(
        Boolean, default=False, server_default=false(), nullable=False, index=True
    )
    gc_marked_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    project: Mapped["Project"] = relationship("Project", back_populates="exports")  # noqa: F821

    @property
    def is_archived(self) -> bool:
        return self.storage_key.startswith("archive/")

    def __repr__(self) -> str:
        return f"<ExportVersion project={self.project_id} v{self.version} pinned={self.pinned}>"
