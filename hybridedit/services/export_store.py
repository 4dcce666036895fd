"""Export version catalog.

One record per materialized export ``(project_id, version)``. The store owns
the pin / GC-candidate exclusion: every transition that could leave a pinned
export marked for GC is rejected or corrected here, never at call sites.
"""

import logging
from datetime import timedelta
from typing import Any
from uuid import UUID

from sqlalchemy import exc as sa_exc
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from hybridedit.exceptions import (
    ExportAlreadyExistsError,
    ExportNotFoundError,
    PinnedError,
)
from hybridedit.models.base import utcnow
from hybridedit.models.export_version import ExportVersion

logger = logging.getLogger(__name__)


class ExportVersionStore:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def create(self, **fields: Any) -> ExportVersion:
        """Register a materialized export.

        Raises:
            ExportAlreadyExistsError: If the version already has a record
        """
        project_id, version = fields.get("project_id"), fields.get("version")
        if await self.find_by_project_and_version(project_id, version) is not None:
            raise ExportAlreadyExistsError(project_id, version)

        export = ExportVersion(**fields)
        if export.pinned:
            export.gc_candidate = False
            export.gc_marked_at = None

        self.db.add(export)
        try:
            await self.db.flush()
        except sa_exc.IntegrityError as e:
            raise ExportAlreadyExistsError(project_id, version) from e

        logger.info(f"Registered export v{export.version} for project {export.project_id}")
        return export

    async def find_by_id(self, export_id: UUID) -> ExportVersion | None:
        return await self.db.get(ExportVersion, export_id)

    async def get(self, export_id: UUID) -> ExportVersion:
        export = await self.find_by_id(export_id)
        if export is None:
            raise ExportNotFoundError(export_id)
        return export

    async def find_by_project_and_version(
        self, project_id: UUID, version: int
    ) -> ExportVersion | None:
        result = await self.db.execute(
            select(ExportVersion).where(
                ExportVersion.project_id == project_id,
                ExportVersion.version == version,
            )
        )
        return result.scalar_one_or_none()

    async def find_by_project_id(self, project_id: UUID) -> list[ExportVersion]:
        result = await self.db.execute(
            select(ExportVersion)
            .where(ExportVersion.project_id == project_id)
            .order_by(ExportVersion.version.asc())
        )
        return list(result.scalars().all())

    async def toggle_pin(self, project_id: UUID, version: int) -> ExportVersion:
        """Flip ``pinned``; pinning also clears any GC mark in the same write."""
        export = await self.find_by_project_and_version(project_id, version)
        if export is None:
            raise ExportNotFoundError(project_id, version=version)

        export.pinned = not export.pinned
        if export.pinned:
            export.gc_candidate = False
            export.gc_marked_at = None
        await self.db.flush()

        logger.info(
            f"Export v{version} of project {project_id} "
            f"{'pinned' if export.pinned else 'unpinned'}"
        )
        return export

    async def mark_for_gc(self, export_id: UUID) -> ExportVersion:
        """Mark an export as a GC candidate.

        The write is conditional on ``pinned = false`` so a concurrent pin
        can never be overridden.

        Raises:
            ExportNotFoundError: If the export does not exist
            PinnedError: If the export is pinned
        """
        result = await self.db.execute(
            update(ExportVersion)
            .where(ExportVersion.id == export_id, ExportVersion.pinned.is_(False))
            .values(gc_candidate=True, gc_marked_at=utcnow())
            .returning(ExportVersion.id)
            .execution_options(synchronize_session=False)
        )
        if result.scalar_one_or_none() is None:
            export = await self.get(export_id)
            raise PinnedError(export.id)

        export = await self.get(export_id)
        await self.db.refresh(export)
        return export

    async def unmark_for_gc(self, export_id: UUID) -> ExportVersion:
        export = await self.get(export_id)
        export.gc_candidate = False
        export.gc_marked_at = None
        await self.db.flush()
        return export

    async def find_gc_candidates(self, older_than_days: int = 0) -> list[ExportVersion]:
        """Marked, unpinned exports whose mark is at least ``older_than_days`` old."""
        cutoff = utcnow() - timedelta(days=older_than_days)
        result = await self.db.execute(
            select(ExportVersion)
            .where(
                ExportVersion.gc_candidate.is_(True),
                ExportVersion.pinned.is_(False),
                ExportVersion.gc_marked_at <= cutoff,
            )
            .order_by(ExportVersion.gc_marked_at.asc())
        )
        return list(result.scalars().all())

    async def mark_old_versions_for_gc(
        self, project_id: UUID, ttl_days: int, keep_latest_n: int
    ) -> tuple[list[ExportVersion], list[ExportVersion], dict[str, int]]:
        """Apply the keep-latest / TTL rule to one project's exports.

        Returns:
            (newly marked, already marked, counts of pinned and kept exports)
        """
        exports = await self.find_by_project_id(project_id)
        exports.sort(key=lambda e: e.version, reverse=True)
        remainder = exports[max(keep_latest_n, 0):]
        counts = {"pinned": 0, "kept": len(exports) - len(remainder)}

        cutoff = utcnow() - timedelta(days=ttl_days)
        expired_ids = set()
        if remainder:
            result = await self.db.execute(
                select(ExportVersion.id).where(
                    ExportVersion.id.in_([e.id for e in remainder]),
                    ExportVersion.created_at <= cutoff,
                )
            )
            expired_ids = set(result.scalars().all())

        newly_marked: list[ExportVersion] = []
        already_marked: list[ExportVersion] = []
        for export in remainder:
            if export.pinned:
                counts["pinned"] += 1
            elif export.id not in expired_ids:
                counts["kept"] += 1
            elif export.gc_candidate:
                already_marked.append(export)
            else:
                newly_marked.append(await self.mark_for_gc(export.id))

        return newly_marked, already_marked, counts

    async def relocate(self, export: ExportVersion, storage_key: str, file_path: str) -> None:
        export.storage_key = storage_key
        export.file_path = file_path
        await self.db.flush()

    async def delete(self, export: ExportVersion) -> None:
        await self.db.delete(export)
        await self.db.flush()

    async def total_size(self, project_id: UUID | None = None) -> int:
        stmt = select(func.coalesce(func.sum(ExportVersion.size), 0))
        if project_id is not None:
            stmt = stmt.where(ExportVersion.project_id == project_id)
        return int((await self.db.execute(stmt)).scalar_one())
