"""Render job status endpoints."""

from typing import Any
from uuid import UUID

from fastapi import APIRouter, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from hybridedit.api.deps import CurrentUserId, DbSession, Queue
from hybridedit.exceptions import AuthorizationError, ProjectNotFoundError
from hybridedit.schemas.render import RenderJobResponse
from hybridedit.services.project_service import ProjectService
from hybridedit.tasks.render_queue import RenderQueue

router = APIRouter()


async def _get_owned_job(
    job_id: UUID | str, user_id: str, db: AsyncSession, queue: RenderQueue
) -> dict[str, Any]:
    # Jobs of other users' projects look exactly like unknown jobs
    not_found = HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Render job not found")
    job = await queue.get_job_status(job_id)
    if job is None:
        raise not_found
    try:
        await ProjectService(db).get_owned_project(UUID(job["project_id"]), user_id)
    except (AuthorizationError, ProjectNotFoundError):
        raise not_found from None
    return job


@router.get("/jobs/{job_id}", response_model=RenderJobResponse)
async def get_job_status(
    job_id: str,
    user_id: CurrentUserId,
    db: DbSession,
    queue: Queue,
) -> RenderJobResponse:
    job = await _get_owned_job(job_id, user_id, db, queue)
    return RenderJobResponse.model_validate(job)


@router.delete("/jobs/{job_id}", response_model=RenderJobResponse)
async def cancel_job(
    job_id: UUID,
    user_id: CurrentUserId,
    db: DbSession,
    queue: Queue,
) -> RenderJobResponse:
    """Cancel a job that has not started processing."""
    await _get_owned_job(job_id, user_id, db, queue)
    return RenderJobResponse.model_validate(await queue.cancel(job_id))
