"""Export garbage collection.

Three phases, each invoked separately so an operator can review candidates
before anything is moved or destroyed:

1. ``calc_gc_candidates`` marks old, unpinned exports. Nothing is moved.
2. ``archive_candidates`` relocates files under ``archive/`` and keeps the
   catalog record.
3. ``delete_archived_exports`` removes files and records. Requires
   ``confirmed=True``.

Batch phases isolate failures per item: a pinned or missing export is
reported and the rest of the batch continues.
"""

import logging
import os
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from hybridedit.config import get_settings
from hybridedit.exceptions import (
    ConfirmationRequiredError,
    ConflictError,
    ExportNotFoundError,
    HybridEditError,
    PinnedError,
)
from hybridedit.models.export_version import ExportVersion
from hybridedit.models.project import Project
from hybridedit.schemas.gc import (
    ArchivedExport,
    GCArchiveReport,
    GCCalculateReport,
    GCCandidate,
    GCDeleteReport,
    GCItemError,
    GCProjectError,
    UnusedVideo,
)
from hybridedit.services.content_store import ContentStore
from hybridedit.services.export_store import ExportVersionStore
from hybridedit.services.project_service import ProjectService
from hybridedit.services.storage_service import LocalStorageService

logger = logging.getLogger(__name__)


def _candidate(export: ExportVersion, project_name: str) -> GCCandidate:
    return GCCandidate(
        export_id=export.id,
        project_id=export.project_id,
        project_name=project_name,
        version=export.version,
        file_path=export.file_path,
        size=export.size,
        resolution=export.resolution,
        duration=export.duration,
        created_at=export.created_at,
        gc_marked_at=export.gc_marked_at,
    )


class GCService:
    def __init__(self, db: AsyncSession, storage: LocalStorageService):
        self.db = db
        self.storage = storage
        self.exports = ExportVersionStore(db)
        self.projects = ProjectService(db)

    async def _load_export(self, export_id: str, action: str) -> ExportVersion:
        try:
            export_uuid = UUID(str(export_id))
        except ValueError:
            raise ExportNotFoundError(export_id) from None
        export = await self.exports.get(export_uuid)
        if export.pinned:
            raise PinnedError(export.id, action=action)
        return export

    async def calc_gc_candidates(
        self, ttl_days: int | None = None, keep_latest_n: int | None = None
    ) -> GCCalculateReport:
        """Mark unpinned exports older than ``ttl_days`` outside the latest N per project."""
        settings = get_settings()
        ttl_days = settings.gc_ttl_days if ttl_days is None else ttl_days
        keep_latest_n = settings.gc_keep_latest_n if keep_latest_n is None else keep_latest_n
        logger.info(f"Calculating GC candidates: TTL={ttl_days} days, keep latest {keep_latest_n}")

        projects = list((await self.db.execute(select(Project).order_by(Project.created_at))).scalars())
        report = GCCalculateReport(
            ttl_days=ttl_days,
            keep_latest_n=keep_latest_n,
            total_projects=len(projects),
        )

        for project in projects:
            try:
                newly, already, counts = await self.exports.mark_old_versions_for_gc(
                    project.id, ttl_days, keep_latest_n
                )
            except HybridEditError as e:
                logger.error(f"GC calculation failed for project {project.id}: {e.message}")
                report.errors.append(GCProjectError(project_id=project.id, error=e.message))
                continue

            report.projects_processed += 1
            report.candidates_marked += len(newly)
            report.candidates_already_marked += len(already)
            report.exports_pinned += counts["pinned"]
            report.exports_kept += counts["kept"]
            report.candidates.extend(_candidate(e, project.name) for e in [*newly, *already])

        logger.info(
            f"GC calculation complete: {report.candidates_marked} marked, "
            f"{report.candidates_already_marked} already marked, "
            f"{report.exports_pinned} pinned, {len(report.errors)} errors"
        )
        return report

    async def get_gc_candidates(self, older_than_days: int = 0) -> list[GCCandidate]:
        candidates = await self.exports.find_gc_candidates(older_than_days)
        names: dict[UUID, str] = {}
        enriched = []
        for export in candidates:
            if export.project_id not in names:
                project = await self.db.get(Project, export.project_id)
                names[export.project_id] = project.name if project else "Unknown"
            enriched.append(_candidate(export, names[export.project_id]))
        return enriched

    async def archive_candidates(self, export_ids: list[str]) -> GCArchiveReport:
        """Move each export's file under ``archive/`` and rewrite its record."""
        logger.info(f"Archiving {len(export_ids)} exports")
        report = GCArchiveReport(total_requested=len(export_ids))

        for export_id in export_ids:
            try:
                export = await self._load_export(export_id, "archive")
                if export.is_archived:
                    raise ConflictError(f"Export is already archived: {export.id}")

                filename = os.path.basename(export.file_path)
                archive_key = self.storage.archive_key(export.id, filename)
                original_key = export.storage_key
                if os.path.exists(export.file_path):
                    archive_path = self.storage.move(export.file_path, archive_key)
                else:
                    logger.warning(f"Could not move file to archive, missing: {export.file_path}")
                    archive_path = self.storage.get_file_path(archive_key)

                await self.exports.relocate(export, archive_key, str(archive_path))
                await self.projects.clear_latest_export_key(export.project_id, original_key)
            except HybridEditError as e:
                report.failed += 1
                report.errors.append(GCItemError(export_id=str(export_id), code=e.code, error=e.message))
                continue
            except OSError as e:
                logger.error(f"Failed to archive export {export_id}: {e}")
                report.failed += 1
                report.errors.append(GCItemError(export_id=str(export_id), code="INTERNAL_ERROR", error=str(e)))
                continue

            report.archived += 1
            report.archived_exports.append(
                ArchivedExport(
                    export_id=export.id,
                    project_id=export.project_id,
                    version=export.version,
                    archived_path=export.file_path,
                    storage_key=export.storage_key,
                )
            )
            logger.info(f"Archived export {export.id}")

        logger.info(f"Archive complete: {report.archived} archived, {report.failed} failed")
        return report

    async def delete_archived_exports(
        self, export_ids: list[str], confirmed: bool = False
    ) -> GCDeleteReport:
        """Permanently delete exports and their files.

        Raises:
            ConfirmationRequiredError: If ``confirmed`` is not True
        """
        if confirmed is not True:
            raise ConfirmationRequiredError()

        logger.warning(f"PERMANENTLY DELETING {len(export_ids)} exports")
        report = GCDeleteReport(total_requested=len(export_ids))

        for export_id in export_ids:
            try:
                export = await self._load_export(export_id, "delete")
                size = self.storage.delete_path(export.file_path)
                if size is None:
                    logger.warning(f"Could not delete file, missing: {export.file_path}")
                else:
                    report.space_saved += size

                await self.projects.clear_latest_export_key(export.project_id, export.storage_key)
                await self.exports.delete(export)
            except HybridEditError as e:
                report.failed += 1
                report.errors.append(GCItemError(export_id=str(export_id), code=e.code, error=e.message))
                continue
            except OSError as e:
                logger.error(f"Failed to delete export {export_id}: {e}")
                report.failed += 1
                report.errors.append(GCItemError(export_id=str(export_id), code="INTERNAL_ERROR", error=str(e)))
                continue

            report.deleted += 1
            report.deleted_exports.append(export.id)
            logger.info(f"Deleted export {export.id}")

        logger.warning(
            f"Deletion complete: {report.deleted} deleted, {report.failed} failed, "
            f"{report.space_saved} bytes freed"
        )
        return report

    async def find_unused_videos(self) -> list[UnusedVideo]:
        """Source videos with no remaining owners. Reported only, never deleted."""
        videos = await ContentStore(self.db).find_unused()
        return [
            UnusedVideo(
                video_id=v.id,
                title=v.title,
                file_path=v.file_path,
                size=v.file_size,
                ref_count=v.ref_count,
                created_at=v.created_at,
            )
            for v in videos
        ]
