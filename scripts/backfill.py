#!/usr/bin/env python3
"""Register legacy final exports in the export catalog.

Projects created before the versioned workflow may have a final export on
disk but no ExportVersion record. For each such project this script:

1. records a version 1 log entry if the project has none yet,
2. creates a pinned ExportVersion for version 1, so GC never touches it,
3. points ``latest_export_key`` at the legacy file.

Usage:
    python scripts/backfill.py [--dry-run]
"""

from __future__ import annotations

import argparse
import asyncio
import os
import sys
from dataclasses import dataclass, field
from pathlib import Path

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from hybridedit.config import get_settings
from hybridedit.exceptions import HybridEditError
from hybridedit.models.database import async_session_maker, init_db
from hybridedit.models.project import Project
from hybridedit.services.edit_log import EditLog
from hybridedit.services.export_store import ExportVersionStore
from hybridedit.services.project_service import ProjectService

LEGACY_OP_TYPE = "legacy_export"


@dataclass
class BackfillStats:
    total_projects: int = 0
    projects_updated: int = 0
    exports_created: int = 0
    errors: list[tuple[str, str]] = field(default_factory=list)


def find_legacy_export(storage_root: Path, project: Project) -> Path | None:
    """First existing legacy export location for a project."""
    candidates = [
        storage_root / "videos" / f"{project.id}_final.mp4",
        storage_root / "export" / str(project.id) / "final.mp4",
    ]
    if project.video_id is not None:
        candidates.insert(1, storage_root / "videos" / f"{project.video_id}_final.mp4")
    for path in candidates:
        if path.is_file():
            return path
    return None


async def backfill_project(
    db: AsyncSession, storage_root: Path, project: Project, dry_run: bool
) -> bool:
    """Returns True when an export record was (or would be) created."""
    export_path = find_legacy_export(storage_root, project)
    if export_path is None:
        print("   no legacy export found")
        return False
    print(f"   found legacy export: {export_path}")

    exports = ExportVersionStore(db)
    if await exports.find_by_project_and_version(project.id, 1) is not None:
        print("   ExportVersion v1 already exists, skipping")
        return False

    storage_key = export_path.relative_to(storage_root).as_posix()
    size = os.path.getsize(export_path)
    print(f"   creating pinned ExportVersion v1 ({round(size / (1024 * 1024), 2)} MB)")
    if dry_run:
        return True

    if project.current_version < 1:
        await EditLog(db).append(
            project.id, [{"type": LEGACY_OP_TYPE, "storage_key": storage_key}], project.user_id
        )
    await exports.create(
        project_id=project.id,
        version=1,
        storage_key=storage_key,
        file_path=str(export_path),
        size=size,
        resolution=get_settings().default_export_resolution,
        format="mp4",
        pinned=True,
    )
    await ProjectService(db).set_latest_export_key(project.id, storage_key)
    return True


async def backfill(db: AsyncSession, storage_root: Path, dry_run: bool = False) -> BackfillStats:
    stats = BackfillStats()
    projects = list((await db.execute(select(Project).order_by(Project.created_at))).scalars())
    stats.total_projects = len(projects)
    print(f"Found {len(projects)} projects")

    for project in projects:
        print(f"\nProject {project.id} ({project.name})")
        try:
            async with db.begin_nested():
                created = await backfill_project(db, storage_root, project, dry_run)
        except (HybridEditError, OSError) as e:
            message = e.message if isinstance(e, HybridEditError) else str(e)
            print(f"   ERROR: {message}")
            stats.errors.append((str(project.id), message))
            continue
        if created:
            stats.exports_created += 1
            stats.projects_updated += 1

    if not dry_run:
        await db.commit()
    return stats


async def main(dry_run: bool) -> int:
    settings = get_settings()
    print("Hybrid edit backfill")
    print("DRY RUN - no changes will be made" if dry_run else "LIVE MODE - changes will be applied")

    await init_db()
    async with async_session_maker() as db:
        stats = await backfill(db, Path(settings.storage_root).resolve(), dry_run)
        if dry_run:
            await db.rollback()

    print("\nSummary")
    print(f"  projects:         {stats.total_projects}")
    print(f"  projects updated: {stats.projects_updated}")
    print(f"  exports created:  {stats.exports_created}")
    for project_id, error in stats.errors:
        print(f"  error {project_id}: {error}", file=sys.stderr)
    return 1 if stats.errors else 0


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument("--dry-run", action="store_true", help="show what would be done without changes")
    args = parser.parse_args()
    sys.exit(asyncio.run(main(args.dry_run)))
