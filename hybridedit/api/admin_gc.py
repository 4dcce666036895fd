"""Export garbage collection admin endpoints."""

import logging

from fastapi import APIRouter, Query

from hybridedit.api.deps import AdminUserId, DbSession, Storage
from hybridedit.schemas.gc import (
    GCArchiveReport,
    GCArchiveRequest,
    GCCalculateReport,
    GCCalculateRequest,
    GCCandidateList,
    GCDeleteReport,
    GCDeleteRequest,
    UnusedVideoList,
)
from hybridedit.services.gc_service import GCService

router = APIRouter()
logger = logging.getLogger(__name__)


@router.post("/calculate", response_model=GCCalculateReport)
async def calculate_candidates(
    request: GCCalculateRequest,
    admin_id: AdminUserId,
    db: DbSession,
    storage: Storage,
) -> GCCalculateReport:
    """Mark old, unpinned exports as GC candidates. Never moves or deletes files."""
    logger.info(f"GC calculation requested by {admin_id}")
    return await GCService(db, storage).calc_gc_candidates(request.ttl_days, request.keep_latest_n)


@router.get("/candidates", response_model=GCCandidateList)
async def list_candidates(
    admin_id: AdminUserId,
    db: DbSession,
    storage: Storage,
    older_than_days: int = Query(default=0, ge=0),
) -> GCCandidateList:
    candidates = await GCService(db, storage).get_gc_candidates(older_than_days)
    return GCCandidateList(candidates=candidates)


@router.post("/archive", response_model=GCArchiveReport)
async def archive_candidates(
    request: GCArchiveRequest,
    admin_id: AdminUserId,
    db: DbSession,
    storage: Storage,
) -> GCArchiveReport:
    logger.info(f"GC archive of {len(request.export_ids)} exports requested by {admin_id}")
    return await GCService(db, storage).archive_candidates(request.export_ids)


@router.post("/delete", response_model=GCDeleteReport)
async def delete_exports(
    request: GCDeleteRequest,
    admin_id: AdminUserId,
    db: DbSession,
    storage: Storage,
) -> GCDeleteReport:
    """Permanently delete exports. Requires ``confirmed: true``."""
    logger.warning(f"GC delete of {len(request.export_ids)} exports requested by {admin_id}")
    return await GCService(db, storage).delete_archived_exports(request.export_ids, request.confirmed)


@router.get("/unused-videos", response_model=UnusedVideoList)
async def unused_videos(
    admin_id: AdminUserId,
    db: DbSession,
    storage: Storage,
) -> UnusedVideoList:
    return UnusedVideoList(videos=await GCService(db, storage).find_unused_videos())
