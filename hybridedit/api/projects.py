"""Project, source video and progress stream endpoints."""

import logging
from collections.abc import AsyncGenerator
from uuid import UUID

from fastapi import APIRouter, status
from fastapi.responses import StreamingResponse

from hybridedit.api.deps import CurrentUserId, DbSession, Events, Storage
from hybridedit.schemas.project import (
    ProjectCreate,
    ProjectResponse,
    VideoRegister,
    VideoRegisterResponse,
    VideoResponse,
)
from hybridedit.services.content_store import ContentStore
from hybridedit.services.project_service import ProjectService

router = APIRouter()
logger = logging.getLogger(__name__)


@router.post("/projects", response_model=ProjectResponse, status_code=status.HTTP_201_CREATED)
async def create_project(
    project_data: ProjectCreate,
    user_id: CurrentUserId,
    db: DbSession,
) -> ProjectResponse:
    project = await ProjectService(db).create_project(
        user_id=user_id,
        name=project_data.name,
        video_id=project_data.video_id,
        description=project_data.description,
    )
    await db.refresh(project)
    return ProjectResponse.model_validate(project)


@router.get("/projects/{project_id}", response_model=ProjectResponse)
async def get_project(
    project_id: UUID,
    user_id: CurrentUserId,
    db: DbSession,
) -> ProjectResponse:
    project = await ProjectService(db).get_owned_project(project_id, user_id)
    return ProjectResponse.model_validate(project)


@router.post("/videos", response_model=VideoRegisterResponse)
async def register_video(
    video_data: VideoRegister,
    user_id: CurrentUserId,
    db: DbSession,
    storage: Storage,
) -> VideoRegisterResponse:
    """Register an uploaded file, aliasing it onto known content by digest.

    Only files under the storage upload directory are accepted. A repeated
    upload of the same content succeeds with ``duplicate: true``.
    """
    file_path = storage.resolve_upload(video_data.file_path)
    video, duplicate = await ContentStore(db).ingest(file_path, user_id, video_data.title)
    return VideoRegisterResponse(video=VideoResponse.model_validate(video), duplicate=duplicate)


@router.get("/projects/{project_id}/events")
async def stream_project_events(
    project_id: UUID,
    user_id: CurrentUserId,
    db: DbSession,
    events: Events,
) -> StreamingResponse:
    """Server-Sent Events stream of render progress for a project."""
    await ProjectService(db).get_owned_project(project_id, user_id)

    async def event_stream() -> AsyncGenerator[str, None]:
        yield ": connected\n\n"
        async for event in events.subscribe(project_id):
            yield event.to_sse()

    return StreamingResponse(
        event_stream(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )
