"""Custom exceptions for the hybridedit backend.

Every error carries a machine-readable code, an HTTP status and a message.
Exception handlers in ``hybridedit.main`` turn them into structured failure
responses, so none of them crash the process.
"""

from hybridedit.constants.error_codes import get_error_spec
from hybridedit.schemas.envelope import ErrorInfo, ErrorLocation, SuggestedAction


class HybridEditError(Exception):
    """Base exception for all hybridedit application errors."""

    code: str = "INTERNAL_ERROR"
    status_code: int = 500
    message: str = "An unexpected error occurred"

    def __init__(
        self,
        message: str | None = None,
        *,
        code: str | None = None,
        status_code: int | None = None,
        location: ErrorLocation | None = None,
        suggested_fix: str | None = None,
    ):
        self.message = message or self.__class__.message
        if code:
            self.code = code
        if status_code:
            self.status_code = status_code
        self.location = location
        self.suggested_fix = suggested_fix
        super().__init__(self.message)

    def to_error_info(self) -> ErrorInfo:
        """Convert exception to ErrorInfo for API response."""
        spec = get_error_spec(self.code)

        suggested_actions: list[SuggestedAction] = []
        if "suggested_action" in spec:
            suggested_actions.append(
                SuggestedAction(
                    action=spec["suggested_action"],
                    endpoint=spec.get("suggested_endpoint"),
                    parameters=spec.get("parameters", {}),
                )
            )

        return ErrorInfo(
            code=self.code,
            message=self.message,
            location=self.location,
            retryable=spec.get("retryable", False),
            suggested_fix=self.suggested_fix or spec.get("suggested_fix"),
            suggested_actions=suggested_actions,
        )


# =============================================================================
# Validation Errors (400)
# =============================================================================


class ValidationError(HybridEditError):
    """Malformed input, e.g. an empty ops array."""

    code = "VALIDATION_ERROR"
    status_code = 400
    message = "Invalid request"

    def __init__(self, message: str | None = None, *, field: str | None = None):
        location = ErrorLocation(field=field) if field else None
        super().__init__(message, location=location)


class InvalidVersionError(ValidationError):
    """Requested version is outside 1..current_version."""

    code = "INVALID_VERSION"
    message = "Invalid version"

    def __init__(self, version: int | None = None, current_version: int | None = None):
        if version is not None and current_version is not None:
            message = f"Invalid version {version}. Must be between 1 and {current_version}"
        else:
            message = self.message
        super().__init__(message, field="version")


class ConfirmationRequiredError(HybridEditError):
    """Destructive delete attempted without the explicit confirmation flag."""

    code = "CONFIRMATION_REQUIRED"
    status_code = 400
    message = "Deletion not confirmed. Set confirmed=true to proceed."


# =============================================================================
# Resource Not Found Errors (404)
# =============================================================================


class NotFoundError(HybridEditError):
    """Base class for resource not found errors."""

    code = "NOT_FOUND"
    status_code = 404
    message = "Resource not found"


class ProjectNotFoundError(NotFoundError):
    code = "PROJECT_NOT_FOUND"
    message = "Project not found"

    def __init__(self, project_id: object | None = None):
        message = f"Project not found: {project_id}" if project_id else self.message
        super().__init__(message)


class ExportNotFoundError(NotFoundError):
    code = "EXPORT_NOT_FOUND"
    message = "Export not found"

    def __init__(self, export_id: object | None = None, *, version: int | None = None):
        if export_id and version is not None:
            message = f"Export version not found: project={export_id}, version={version}"
        elif export_id:
            message = f"Export not found: {export_id}"
        else:
            message = self.message
        super().__init__(message)


class VideoNotFoundError(NotFoundError):
    code = "VIDEO_NOT_FOUND"
    message = "Video not found"

    def __init__(self, video_id: object | None = None):
        message = f"Video not found: {video_id}" if video_id else self.message
        super().__init__(message)


# =============================================================================
# Authorization Errors (403)
# =============================================================================


class AuthorizationError(HybridEditError):
    """Caller does not own the resource or lacks the admin role."""

    code = "FORBIDDEN"
    status_code = 403
    message = "Not authorized to access this resource"


# =============================================================================
# Conflict Errors (409)
# =============================================================================


class ConflictError(HybridEditError):
    code = "CONFLICT"
    status_code = 409


class PinnedError(ConflictError):
    """GC action attempted on a pinned export."""

    code = "EXPORT_PINNED"
    message = "Export is pinned"

    def __init__(self, export_id: object | None = None, action: str = "garbage collect"):
        message = (
            f"Export is pinned, cannot {action}: {export_id}" if export_id else self.message
        )
        super().__init__(message)


class ExportAlreadyExistsError(ConflictError):
    code = "EXPORT_ALREADY_EXISTS"
    message = "Export already exists for this version"

    def __init__(self, project_id: object | None = None, version: int | None = None):
        if project_id and version is not None:
            message = f"Export already exists: project={project_id}, version={version}"
        else:
            message = self.message
        super().__init__(message)


class ConcurrentModificationError(ConflictError):
    """Another append claimed the same version first."""

    code = "CONCURRENT_MODIFICATION"
    message = "Project was modified by another request"


# =============================================================================
# System Errors (500)
# =============================================================================


class IntegrityError(HybridEditError):
    """The edit log has a gap or duplicate; replay must not continue."""

    code = "LOG_INTEGRITY_ERROR"
    status_code = 500
    message = "Edit log integrity violation"


class RenderError(HybridEditError):
    """Underlying media processing failed."""

    code = "RENDER_ERROR"
    status_code = 500
    message = "Render failed"


class RenderTimeoutError(RenderError):
    code = "RENDER_TIMEOUT"
    message = "Render timed out"

    def __init__(self, timeout_seconds: float | None = None):
        message = (
            f"Render timed out after {timeout_seconds:g}s"
            if timeout_seconds is not None
            else self.message
        )
        super().__init__(message)
