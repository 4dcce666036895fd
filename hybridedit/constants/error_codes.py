"""Error codes dictionary.

Single source of truth for error codes, their retryability and suggested
recovery actions. Used by exception handlers to generate machine-readable
error responses.
"""

from typing import Any, TypedDict


class ErrorCodeSpec(TypedDict, total=False):
    """Specification for an error code."""

    retryable: bool
    suggested_action: str
    suggested_endpoint: str
    suggested_fix: str
    parameters: dict[str, Any]


ERROR_CODES: dict[str, ErrorCodeSpec] = {
    # ==========================================================================
    # Resource errors
    # ==========================================================================
    "NOT_FOUND": {
        "retryable": False,
    },
    "PROJECT_NOT_FOUND": {
        "retryable": False,
        "suggested_action": "refresh_ids",
    },
    "EXPORT_NOT_FOUND": {
        "retryable": False,
        "suggested_action": "refresh_ids",
        "suggested_endpoint": "GET /api/projects/{project_id}/exports",
    },
    "VIDEO_NOT_FOUND": {
        "retryable": False,
    },
    # ==========================================================================
    # Validation errors (not retryable, fix input)
    # ==========================================================================
    "VALIDATION_ERROR": {
        "retryable": False,
    },
    "INVALID_VERSION": {
        "retryable": False,
        "suggested_fix": "Request a version between 1 and the project's current_version",
    },
    "CONFIRMATION_REQUIRED": {
        "retryable": False,
        "suggested_fix": "Set confirmed=true to permanently delete exports",
    },
    # ==========================================================================
    # Conflict errors
    # ==========================================================================
    "CONFLICT": {
        "retryable": False,
    },
    "EXPORT_PINNED": {
        "retryable": False,
        "suggested_fix": "Unpin the export before running garbage collection on it",
    },
    "EXPORT_ALREADY_EXISTS": {
        "retryable": False,
    },
    "CONCURRENT_MODIFICATION": {
        "retryable": True,
        "suggested_action": "retry_with_backoff",
        "parameters": {"delay_ms": 200, "max_retries": 3},
    },
    # ==========================================================================
    # Authorization errors
    # ==========================================================================
    "FORBIDDEN": {
        "retryable": False,
    },
    # ==========================================================================
    # System errors
    # ==========================================================================
    "LOG_INTEGRITY_ERROR": {
        "retryable": False,
        "suggested_fix": "The edit log has a version gap; inspect edit_operations for the project",
    },
    "RENDER_ERROR": {
        "retryable": True,
        "suggested_action": "retry_with_backoff",
        "parameters": {"delay_ms": 5000, "max_retries": 2},
    },
    "RENDER_TIMEOUT": {
        "retryable": True,
        "suggested_action": "retry_with_backoff",
        "parameters": {"delay_ms": 5000, "max_retries": 1},
    },
    "INTERNAL_ERROR": {
        "retryable": True,
        "suggested_action": "retry_with_backoff",
        "parameters": {"delay_ms": 2000, "max_retries": 2},
    },
}


def get_error_spec(code: str) -> ErrorCodeSpec:
    """Get error specification by code.

    Args:
        code: The error code

    Returns:
        ErrorCodeSpec with retryable flag and suggested actions
    """
    return ERROR_CODES.get(code, {"retryable": False})
