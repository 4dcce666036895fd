from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, Field


class ProjectCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    description: str | None = None
    video_id: UUID | None = None


class ProjectResponse(BaseModel):
    id: UUID
    user_id: str
    name: str
    description: str | None
    video_id: UUID | None
    current_version: int
    latest_proxy_key: str | None
    latest_export_key: str | None
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class VideoRegister(BaseModel):
    """An upload already written to disk by the upload layer."""

    file_path: str = Field(..., min_length=1)
    title: str = Field(..., min_length=1, max_length=255)


class VideoResponse(BaseModel):
    id: UUID
    title: str
    sha256: str
    ref_count: int
    file_path: str
    file_size: int
    created_at: datetime

    class Config:
        from_attributes = True


class VideoRegisterResponse(BaseModel):
    video: VideoResponse
    duplicate: bool
