from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, Field, computed_field


def _size_mb(size: int) -> float:
    return round(size / (1024 * 1024), 2)


# =============================================================================
# Requests
# =============================================================================


class GCCalculateRequest(BaseModel):
    ttl_days: int | None = Field(default=None, ge=0)
    keep_latest_n: int | None = Field(default=None, ge=0)


class GCArchiveRequest(BaseModel):
    export_ids: list[str] = Field(min_length=1)


class GCDeleteRequest(BaseModel):
    export_ids: list[str] = Field(min_length=1)
    confirmed: bool = False


# =============================================================================
# Reports
# =============================================================================


class GCItemError(BaseModel):
    export_id: str
    code: str
    error: str


class GCProjectError(BaseModel):
    project_id: UUID
    error: str


class GCCandidate(BaseModel):
    export_id: UUID
    project_id: UUID
    project_name: str
    version: int
    file_path: str
    size: int
    resolution: str | None = None
    duration: float | None = None
    created_at: datetime
    gc_marked_at: datetime | None = None


class GCCalculateReport(BaseModel):
    ttl_days: int
    keep_latest_n: int
    total_projects: int = 0
    projects_processed: int = 0
    candidates_marked: int = 0
    candidates_already_marked: int = 0
    exports_pinned: int = 0
    exports_kept: int = 0
    errors: list[GCProjectError] = Field(default_factory=list)
    candidates: list[GCCandidate] = Field(default_factory=list)


class GCCandidateList(BaseModel):
    candidates: list[GCCandidate]

    @computed_field
    @property
    def count(self) -> int:
        return len(self.candidates)

    @computed_field
    @property
    def total_size(self) -> int:
        return sum(c.size for c in self.candidates)

    @computed_field
    @property
    def total_size_mb(self) -> float:
        return _size_mb(self.total_size)


class ArchivedExport(BaseModel):
    export_id: UUID
    project_id: UUID
    version: int
    archived_path: str
    storage_key: str


class GCArchiveReport(BaseModel):
    total_requested: int
    archived: int = 0
    failed: int = 0
    errors: list[GCItemError] = Field(default_factory=list)
    archived_exports: list[ArchivedExport] = Field(default_factory=list)


class GCDeleteReport(BaseModel):
    total_requested: int
    deleted: int = 0
    failed: int = 0
    space_saved: int = 0
    errors: list[GCItemError] = Field(default_factory=list)
    deleted_exports: list[UUID] = Field(default_factory=list)

    @computed_field
    @property
    def space_saved_mb(self) -> float:
        return _size_mb(self.space_saved)


class UnusedVideo(BaseModel):
    video_id: UUID
    title: str
    file_path: str
    size: int
    ref_count: int
    created_at: datetime


class UnusedVideoList(BaseModel):
    videos: list[UnusedVideo]

    @computed_field
    @property
    def count(self) -> int:
        return len(self.videos)

    @computed_field
    @property
    def total_size(self) -> int:
        return sum(v.size for v in self.videos)

    @computed_field
    @property
    def total_size_mb(self) -> float:
        return _size_mb(self.total_size)
