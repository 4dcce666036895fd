from hybridedit.schemas.envelope import ErrorInfo, ErrorResponse
from hybridedit.schemas.export import ExportRequest, ExportRequestResponse, ExportVersionResponse
from hybridedit.schemas.operation import AppendOperationsRequest, AppendOperationsResponse
from hybridedit.schemas.project import ProjectCreate, ProjectResponse
from hybridedit.schemas.render import RenderJobResponse

__all__ = [
    "ErrorInfo",
    "ErrorResponse",
    "ProjectCreate",
    "ProjectResponse",
    "AppendOperationsRequest",
    "AppendOperationsResponse",
    "ExportRequest",
    "ExportRequestResponse",
    "ExportVersionResponse",
    "RenderJobResponse",
]
