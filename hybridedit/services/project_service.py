"""Project lookup, ownership and the latest-artifact pointers."""

import logging
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from hybridedit.exceptions import AuthorizationError, ProjectNotFoundError, VideoNotFoundError
from hybridedit.models.project import Project
from hybridedit.models.video import Video

logger = logging.getLogger(__name__)


class ProjectService:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def create_project(
        self,
        user_id: str,
        name: str,
        video_id: UUID | None = None,
        description: str | None = None,
    ) -> Project:
        if video_id is not None and await self.db.get(Video, video_id) is None:
            raise VideoNotFoundError(video_id)

        project = Project(
            user_id=user_id,
            name=name,
            description=description,
            video_id=video_id,
            current_version=0,
        )
        self.db.add(project)
        await self.db.flush()
        logger.info(f"Created project {project.id} for user {user_id}")
        return project

    async def get_project(self, project_id: UUID) -> Project:
        result = await self.db.execute(select(Project).where(Project.id == project_id))
        project = result.scalar_one_or_none()
        if project is None:
            raise ProjectNotFoundError(project_id)
        return project

    async def get_owned_project(self, project_id: UUID, user_id: str) -> Project:
        """Get a project the caller owns.

        Raises:
            ProjectNotFoundError: If the project does not exist
            AuthorizationError: If the caller is not the owner
        """
        project = await self.get_project(project_id)
        if project.user_id != user_id:
            raise AuthorizationError(f"User {user_id} does not own project {project_id}")
        return project

    async def set_latest_proxy_key(self, project_id: UUID, storage_key: str) -> None:
        await self.db.execute(
            update(Project)
            .where(Project.id == project_id)
            .values(latest_proxy_key=storage_key)
        )

    async def set_latest_export_key(self, project_id: UUID, storage_key: str) -> None:
        await self.db.execute(
            update(Project)
            .where(Project.id == project_id)
            .values(latest_export_key=storage_key)
        )

    async def clear_latest_export_key(self, project_id: UUID, storage_key: str) -> bool:
        """Clear the export pointer if it still points at ``storage_key``."""
        result = await self.db.execute(
            update(Project)
            .where(Project.id == project_id, Project.latest_export_key == storage_key)
            .values(latest_export_key=None)
        )
        return result.rowcount > 0
