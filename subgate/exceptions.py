"""Custom exception hierarchy for subgate.

Provides structured exceptions that map to HTTP status codes and
include error codes for consistent API responses.

Business-rule failures of a submission (bad headers, mismatched sequencing
files, registry rejection) are NOT raised; they travel as batch errors in
the submission response. These exceptions cover malformed requests and
unexpected infrastructure failures.
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class SubgateException(Exception):
    """Base exception for all subgate errors.

    Attributes:
        message: Human-readable error message
        code: Machine-readable error code (e.g., "SUBMISSION_NOT_FOUND")
        status_code: HTTP status code to return
        details: Additional error context
    """

    status_code: int = 500
    default_code: str = "INTERNAL_ERROR"
    default_message: str = "An internal error occurred"

    def __init__(
        self,
        message: Optional[str] = None,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message or self.default_message
        self.code = code or self.default_code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self, request_id: Optional[str] = None) -> Dict[str, Any]:
        """Convert exception to API response format."""
        response = {
            "error": self.message,
            "code": self.code,
            "details": self.details,
        }
        if request_id:
            response["request_id"] = request_id
        return response


# ========== Client Errors (4xx) ==========


class BadRequestError(SubgateException):
    """Request is malformed or references missing resources."""

    status_code = 400
    default_code = "BAD_REQUEST"
    default_message = "Bad request"


class ForbiddenError(SubgateException):
    """User lacks permission for this action."""

    status_code = 403
    default_code = "FORBIDDEN"
    default_message = "You do not have permission to perform this action"


class NotFoundError(SubgateException):
    """Requested resource not found."""

    status_code = 404
    default_code = "NOT_FOUND"
    default_message = "Resource not found"


class StatusConflictError(SubgateException):
    """Resource is not in a state that allows the operation."""

    status_code = 409
    default_code = "STATUS_CONFLICT"
    default_message = "Resource state conflict"


class PayloadTooLargeError(SubgateException):
    """Uploaded file exceeds the configured limit."""

    status_code = 413
    default_code = "PAYLOAD_TOO_LARGE"
    default_message = "Uploaded file exceeds the server upload limit"


# ========== Server Errors (5xx) ==========


class InternalServerError(SubgateException):
    """Unexpected internal failure."""

    status_code = 500
    default_code = "INTERNAL_ERROR"
    default_message = "An internal error occurred"


class DependencyError(SubgateException):
    """External dependency failed."""

    status_code = 502
    default_code = "DEPENDENCY_ERROR"
    default_message = "External service error"


# ========== Domain-Specific Errors ==========


class InvalidFileExtensionError(BadRequestError):
    """File extension is not one of the supported tabular formats."""

    default_code = "INVALID_FILE_EXTENSION"
    default_message = "Invalid file extension"


class TemplateError(InternalServerError):
    """A payload template produced invalid JSON once filled."""

    default_code = "TEMPLATE_ERROR"
    default_message = "Invalid JSON after template fill"


class RepositoryError(InternalServerError):
    """Submission file mapping persistence failed."""

    default_code = "REPOSITORY_ERROR"
    default_message = "Something went wrong while accessing submission files. Please try again later."


class RegistryError(DependencyError):
    """Submission Registry call failed."""

    default_code = "REGISTRY_ERROR"
    default_message = "Submission registry error"


class AnalysisServiceError(DependencyError):
    """Analysis Service call failed.

    Attributes:
        http_status: HTTP status returned by the service, if any
    """

    default_code = "ANALYSIS_SERVICE_ERROR"
    default_message = "Analysis service error"

    def __init__(
        self,
        message: Optional[str] = None,
        http_status: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.http_status = http_status
        details = dict(details or {})
        if http_status is not None:
            details.setdefault("http_status", http_status)
        super().__init__(message=message, details=details)
