from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field


class AppendOperationsRequest(BaseModel):
    # Shape of each descriptor ({type, effect, parameters}) is checked by the edit log
    ops: list[Any] = Field(default_factory=list)


class AppendOperationsResponse(BaseModel):
    project_id: UUID
    version: int
    operation_id: UUID
    job_id: UUID
    ops: list[dict[str, Any]]


class OperationResponse(BaseModel):
    id: UUID
    version: int
    ops: list[dict[str, Any]]
    user_id: str
    created_at: datetime

    class Config:
        from_attributes = True


class OperationListResponse(BaseModel):
    project_id: UUID
    current_version: int
    operations: list[OperationResponse]
