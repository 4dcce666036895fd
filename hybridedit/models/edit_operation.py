"""EditOperation model: the append-only, per-project edit log.

Each accepted batch of operation descriptors becomes one record whose
``version`` equals the project's ``current_version`` right after the append.
For a fixed project the stored versions are exactly ``1..current_version``;
render workers replay this ledger to reconstruct the effect chain.
Records are never updated or deleted.
"""

import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import JSON, DateTime, ForeignKey, Integer, String, UniqueConstraint, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from hybridedit.models.base import Base, UUIDMixin, utcnow


class EditOperation(Base, UUIDMixin):
    """One operation batch in a project's edit log.

    Attributes:
        id: Operation ID (UUID)
        project_id: FK to projects table
        version: Project version this batch produced
        ops: Ordered operation descriptors ({type, effect, parameters})
        user_id: User who appended the batch
        created_at: When the batch was recorded
    """

    __tablename__ = "edit_operations"
    __table_args__ = (
        UniqueConstraint("project_id", "version", name="uq_edit_operations_project_version"),
    )

    project_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    version: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    ops: Mapped[list[dict[str, Any]]] = mapped_column(JSON, default=list, nullable=False)
    user_id: Mapped[str] = mapped_column(String(128), nullable=False, index=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        nullable=False,
        index=True,
    )

    project: Mapped["Project"] = relationship(  # noqa: F821
        "Project", back_populates="operations"
    )

    def __repr__(self) -> str:
        return f"<EditOperation project={self.project_id} v{self.version}>"
