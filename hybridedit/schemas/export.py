from datetime import datetime
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, Field


class ExportRequest(BaseModel):
    version: int | None = Field(default=None, ge=1)
    resolution: str | None = Field(default=None, pattern=r"^\d+x\d+$")
    format: str | None = None


class ExportVersionResponse(BaseModel):
    id: UUID
    project_id: UUID
    version: int
    storage_key: str
    file_path: str
    size: int
    resolution: str | None
    duration: float | None
    format: str
    pinned: bool
    gc_candidate: bool
    gc_marked_at: datetime | None
    created_at: datetime

    class Config:
        from_attributes = True


class ExportRequestResponse(BaseModel):
    status: Literal["existing", "pending"]
    existing: bool
    version: int
    export: ExportVersionResponse | None = None
    job_id: UUID | None = None
    options_ignored: bool = False


class ExportListResponse(BaseModel):
    project_id: UUID
    current_version: int
    latest_export_key: str | None
    exports: list[ExportVersionResponse]


class PinResponse(BaseModel):
    export_id: UUID
    project_id: UUID
    version: int
    pinned: bool
