from typing import Annotated, Optional

from fastapi import Depends, Header, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from hybridedit.config import get_settings
from hybridedit.exceptions import AuthorizationError
from hybridedit.models.database import get_db
from hybridedit.services.event_manager import ProjectEventManager
from hybridedit.services.storage_service import LocalStorageService
from hybridedit.tasks.render_queue import RenderQueue

settings = get_settings()


async def get_current_user_id(
    x_user_id: Annotated[Optional[str], Header(alias="X-User-Id")] = None,
) -> str:
    """Caller identity, as forwarded by the upstream authentication layer.

    In dev_mode a missing header resolves to the dev user.
    """
    if x_user_id:
        return x_user_id
    if settings.dev_mode:
        return settings.dev_user_id
    raise HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Missing X-User-Id header",
    )


async def get_admin_user_id(
    user_id: Annotated[str, Depends(get_current_user_id)],
) -> str:
    if user_id not in settings.admin_user_ids:
        raise AuthorizationError("Admin access required")
    return user_id


def get_storage(request: Request) -> LocalStorageService:
    return request.app.state.storage


def get_render_queue(request: Request) -> RenderQueue:
    return request.app.state.render_queue


def get_event_manager(request: Request) -> ProjectEventManager:
    return request.app.state.event_manager


CurrentUserId = Annotated[str, Depends(get_current_user_id)]
AdminUserId = Annotated[str, Depends(get_admin_user_id)]
DbSession = Annotated[AsyncSession, Depends(get_db)]
Storage = Annotated[LocalStorageService, Depends(get_storage)]
Queue = Annotated[RenderQueue, Depends(get_render_queue)]
Events = Annotated[ProjectEventManager, Depends(get_event_manager)]
