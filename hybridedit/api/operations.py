"""Edit operation log endpoints."""

import logging
from uuid import UUID

from fastapi import APIRouter, Query, status

from hybridedit.api.deps import CurrentUserId, DbSession, Queue
from hybridedit.schemas.operation import (
    AppendOperationsRequest,
    AppendOperationsResponse,
    OperationListResponse,
    OperationResponse,
)
from hybridedit.services.edit_log import EditLog
from hybridedit.services.project_service import ProjectService

router = APIRouter()
logger = logging.getLogger(__name__)


@router.post(
    "/projects/{project_id}/ops",
    response_model=AppendOperationsResponse,
    status_code=status.HTTP_201_CREATED,
)
async def append_operations(
    project_id: UUID,
    request: AppendOperationsRequest,
    user_id: CurrentUserId,
    db: DbSession,
    queue: Queue,
) -> AppendOperationsResponse:
    """Append an operation batch and enqueue the proxy render for the new version."""
    operation = await EditLog(db).append(project_id, request.ops, user_id)
    # The version must be visible to the render worker before the job exists
    await db.commit()

    job_id = await queue.enqueue_proxy(project_id, operation.version)
    logger.info(
        f"Appended version {operation.version} to project {project_id}, proxy job {job_id}"
    )
    return AppendOperationsResponse(
        project_id=project_id,
        version=operation.version,
        operation_id=operation.id,
        job_id=job_id,
        ops=operation.ops,
    )


@router.get("/projects/{project_id}/ops", response_model=OperationListResponse)
async def list_operations(
    project_id: UUID,
    user_id: CurrentUserId,
    db: DbSession,
    version: int | None = Query(default=None, ge=0),
) -> OperationListResponse:
    await ProjectService(db).get_owned_project(project_id, user_id)
    current_version, operations = await EditLog(db).list_operations(project_id, version)
    return OperationListResponse(
        project_id=project_id,
        current_version=current_version,
        operations=[OperationResponse.model_validate(op) for op in operations],
    )
