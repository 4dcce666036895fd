import uuid

from sqlalchemy import ForeignKey, Integer, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from hybridedit.models.base import Base, TimestampMixin, UUIDMixin


class Project(Base, UUIDMixin, TimestampMixin):
    """A video project and its version pointer.

    ``current_version`` is bumped by exactly one per accepted operation batch.
    ``latest_proxy_key`` / ``latest_export_key`` cache the most recent
    materialized artifacts; the edit log stays authoritative.
    """

    __tablename__ = "projects"

    user_id: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Owning source video
    video_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("videos.id", ondelete="SET NULL"), nullable=True, index=True
    )

    # Version pointer
    current_version: Mapped[int] = mapped_column(
        Integer, default=0, server_default="0", nullable=False
    )
    latest_proxy_key: Mapped[str | None] = mapped_column(String(500), nullable=True)
    latest_export_key: Mapped[str | None] = mapped_column(String(500), nullable=True)

    # Relationships
    video: Mapped["Video | None"] = relationship("Video")  # noqa: F821
    operations: Mapped[list["EditOperation"]] = relationship(  # noqa: F821
        "EditOperation", back_populates="project", cascade="all, delete-orphan"
    )
    exports: Mapped[list["ExportVersion"]] = relationship(  # noqa: F821
        "ExportVersion", back_populates="project", cascade="all, delete-orphan"
    )

    def __repr__(self) -> str:
        return f"<Project {self.name} v{self.current_version}>"
