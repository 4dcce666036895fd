"""Export request, listing and pin endpoints."""

import logging
from uuid import UUID

from fastapi import APIRouter, Response, status

from hybridedit.api.deps import CurrentUserId, DbSession, Queue
from hybridedit.exceptions import InvalidVersionError
from hybridedit.render.workers import normalize_export_options
from hybridedit.schemas.export import (
    ExportListResponse,
    ExportRequest,
    ExportRequestResponse,
    ExportVersionResponse,
    PinResponse,
)
from hybridedit.services.export_store import ExportVersionStore
from hybridedit.services.project_service import ProjectService

router = APIRouter()
logger = logging.getLogger(__name__)


@router.post(
    "/projects/{project_id}/export",
    response_model=ExportRequestResponse,
    responses={202: {"model": ExportRequestResponse}},
)
async def request_export(
    project_id: UUID,
    export_request: ExportRequest,
    user_id: CurrentUserId,
    db: DbSession,
    queue: Queue,
    response: Response,
) -> ExportRequestResponse:
    """Return the cached export for a version, or enqueue its render.

    The cache is keyed on (project, version) only: an existing export is
    returned even when the requested resolution or format differ.
    """
    project = await ProjectService(db).get_owned_project(project_id, user_id)
    version = export_request.version or project.current_version
    if version < 1 or version > project.current_version:
        raise InvalidVersionError(version, project.current_version)

    options = normalize_export_options(
        {"resolution": export_request.resolution, "format": export_request.format}
    )

    existing = await ExportVersionStore(db).find_by_project_and_version(project_id, version)
    if existing is not None:
        options_ignored = (existing.resolution, existing.format) != (
            options["resolution"],
            options["format"],
        )
        if options_ignored:
            logger.warning(
                f"Export v{version} of project {project_id} already exists as "
                f"{existing.resolution}/{existing.format}; requested options ignored"
            )
        return ExportRequestResponse(
            status="existing",
            existing=True,
            version=version,
            export=ExportVersionResponse.model_validate(existing),
            options_ignored=options_ignored,
        )

    job_id = await queue.enqueue_export(project_id, version, options)
    response.status_code = status.HTTP_202_ACCEPTED
    return ExportRequestResponse(
        status="pending",
        existing=False,
        version=version,
        job_id=job_id,
    )


@router.get("/projects/{project_id}/exports", response_model=ExportListResponse)
async def list_exports(
    project_id: UUID,
    user_id: CurrentUserId,
    db: DbSession,
) -> ExportListResponse:
    project = await ProjectService(db).get_owned_project(project_id, user_id)
    exports = await ExportVersionStore(db).find_by_project_id(project_id)
    return ExportListResponse(
        project_id=project_id,
        current_version=project.current_version,
        latest_export_key=project.latest_export_key,
        exports=[ExportVersionResponse.model_validate(e) for e in exports],
    )


@router.post("/projects/{project_id}/versions/{version}/pin", response_model=PinResponse)
async def toggle_pin(
    project_id: UUID,
    version: int,
    user_id: CurrentUserId,
    db: DbSession,
) -> PinResponse:
    await ProjectService(db).get_owned_project(project_id, user_id)
    export = await ExportVersionStore(db).toggle_pin(project_id, version)
    return PinResponse(
        export_id=export.id,
        project_id=project_id,
        version=export.version,
        pinned=export.pinned,
    )
