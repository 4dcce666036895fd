from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel


class RenderJobResponse(BaseModel):
    id: UUID
    job_type: str
    project_id: UUID
    version: int
    options: dict[str, Any]
    status: str
    error_message: str | None
    result: dict[str, Any] | None
    created_at: datetime | None
    started_at: datetime | None
    completed_at: datetime | None
