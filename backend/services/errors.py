"""
UGC Portal - Workflow error taxonomy

Every error carries a stable `code` (returned to callers so they can branch)
and the HTTP status it maps to. The handlers in server.py do the rendering.
"""

from typing import Any, Dict, List, Optional


class WorkflowError(Exception):
    """Base class for every error surfaced by the workflow API"""
    code = "INTERNAL_ERROR"
    status_code = 500

    def __init__(self, message: str = "", **context: Any):
        super().__init__(message or self.code)
        self.message = message or self.code
        self.context = context

    def to_dict(self) -> Dict[str, Any]:
        body = {"success": False, "error_code": self.code, "error": self.message}
        body.update(self.context)
        return body


class AuthenticationError(WorkflowError):
    code = "UNAUTHORIZED"
    status_code = 401


class AuthorizationError(WorkflowError):
    code = "FORBIDDEN"
    status_code = 403


class NotFoundError(WorkflowError):
    code = "NOT_FOUND"
    status_code = 404


class InvalidTransitionError(WorkflowError):
    code = "INVALID_TRANSITION"
    status_code = 400

    def __init__(self, from_state: str, to_state: str, allowed: Optional[List[str]] = None):
        allowed = sorted(allowed or [])
        super().__init__(
            f"Cannot transition from '{from_state}' to '{to_state}'. Allowed: {allowed}",
            from_state=from_state,
            to_state=to_state,
            allowed=allowed,
        )
        self.from_state = from_state
        self.to_state = to_state


class ValidationError(WorkflowError):
    code = "VALIDATION_ERROR"
    status_code = 400

    def __init__(self, message: str, field_errors: Optional[Dict[str, str]] = None):
        if field_errors:
            super().__init__(message, field_errors=field_errors)
        else:
            super().__init__(message)


class CommentRequiredError(ValidationError):
    code = "COMMENT_REQUIRED"

    def __init__(self, to_state: str):
        super().__init__(f"A comment is required when moving to '{to_state}'")


class ConflictError(WorkflowError):
    code = "CONFLICT"
    status_code = 409


class DependencyError(WorkflowError):
    code = "INTERNAL_ERROR"
    status_code = 500


class AuditLogError(DependencyError):
    """Raised by the activity/comment logger when an append fails"""
