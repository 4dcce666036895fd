from hybridedit.models.base import Base
from hybridedit.models.edit_operation import EditOperation
from hybridedit.models.export_version import ExportVersion
from hybridedit.models.project import Project
from hybridedit.models.render_job import RenderJob
from hybridedit.models.video import Video

__all__ = [
    "Base",
    "Project",
    "EditOperation",
    "ExportVersion",
    "RenderJob",
    "Video",
]
