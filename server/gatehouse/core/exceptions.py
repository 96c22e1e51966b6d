"""Access-control error taxonomy rendered as RFC 9457 Problem Details."""

import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from .observability import get_logger

logger = get_logger(__name__)

PROBLEM_BASE_URI = "https://gatehouse.example.com/problems"


class ProblemDetailsException(HTTPException):
    """
    Base exception class following RFC 9457 Problem Details for HTTP APIs.

    https://tools.ietf.org/rfc/rfc9457.txt

    Every subclass carries an application ``code`` so clients can branch on
    the taxonomy without parsing titles.
    """

    code = "ERROR"

    def __init__(
        self,
        status_code: int,
        title: str,
        detail: Optional[str] = None,
        type_uri: Optional[str] = None,
        instance: Optional[str] = None,
        extensions: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ):
        """
        Initialize Problem Details exception.

        Args:
            status_code: HTTP status code
            title: Short, human-readable summary of the problem type
            detail: Human-readable explanation specific to this occurrence
            type_uri: URI reference that identifies the problem type
            instance: URI reference that identifies the specific occurrence
            extensions: Additional problem-specific information
            headers: HTTP headers to include in response
        """
        self.status_code = status_code
        self.title = title
        self.detail = detail
        self.type_uri = type_uri or f"about:blank#{status_code}"
        self.instance = instance
        self.extensions = extensions or {}

        self.problem_details = {
            "type": self.type_uri,
            "title": self.title,
            "status": self.status_code,
            "code": self.code,
            "retryable": False,
        }

        if self.detail:
            self.problem_details["detail"] = self.detail

        if self.instance:
            self.problem_details["instance"] = self.instance

        self.problem_details.update(self.extensions)

        super().__init__(
            status_code=status_code,
            detail=self.problem_details,
            headers=headers
        )


class AuthenticationError(ProblemDetailsException):
    """Missing, malformed, expired or wrongly signed bearer credential."""

    code = "UNAUTHENTICATED"

    def __init__(self, detail: str = "Authentication credentials are required"):
        super().__init__(
            status_code=401,
            title="Authentication Required",
            detail=detail,
            type_uri=f"{PROBLEM_BASE_URI}/unauthenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )


class TenantUnresolvedError(ProblemDetailsException):
    """Operator credential without any linked society."""

    code = "TENANT_UNRESOLVED"

    def __init__(self, subject_id: str):
        super().__init__(
            status_code=401,
            title="Tenant Unresolved",
            detail=f"Operator {subject_id} is not linked to any society",
            type_uri=f"{PROBLEM_BASE_URI}/tenant-unresolved",
            extensions={"subject_id": subject_id},
            headers={"WWW-Authenticate": "Bearer"},
        )


class AuthorizationError(ProblemDetailsException):
    """Role mismatch or cross-tenant access."""

    code = "FORBIDDEN"

    def __init__(
        self,
        detail: str = "Insufficient permissions to access this resource",
        required_roles: Optional[list] = None,
    ):
        extensions = {}
        if required_roles:
            extensions["required_roles"] = required_roles

        super().__init__(
            status_code=403,
            title="Access Forbidden",
            detail=detail,
            type_uri=f"{PROBLEM_BASE_URI}/forbidden",
            extensions=extensions,
        )


class NotFoundError(ProblemDetailsException):
    """Exception for resource not found errors."""

    code = "NOT_FOUND"

    def __init__(
        self,
        resource_type: str = "resource",
        resource_id: Optional[str] = None,
        detail: Optional[str] = None,
    ):
        if not detail:
            detail = f"The requested {resource_type}"
            if resource_id:
                detail += f" with ID '{resource_id}'"
            detail += " could not be found"

        extensions = {"resource_type": resource_type}
        if resource_id:
            extensions["resource_id"] = resource_id

        super().__init__(
            status_code=404,
            title="Resource Not Found",
            detail=detail,
            type_uri=f"{PROBLEM_BASE_URI}/not-found",
            extensions=extensions,
        )


class InvalidInputError(ProblemDetailsException):
    """Malformed body, identifier or parameter."""

    code = "INVALID_INPUT"

    def __init__(
        self,
        detail: str = "The request data failed validation",
        violations: Optional[list[dict[str, str]]] = None,
    ):
        extensions = {}
        if violations:
            extensions["violations"] = violations

        super().__init__(
            status_code=400,
            title="Invalid Input",
            detail=detail,
            type_uri=f"{PROBLEM_BASE_URI}/invalid-input",
            extensions=extensions,
        )


class IllegalStateTransitionError(ProblemDetailsException):
    """The entity's current status does not allow the requested transition."""

    code = "ILLEGAL_STATE_TRANSITION"

    def __init__(
        self,
        entity: str,
        entity_id: str,
        current_status: Optional[str],
        target_status: str,
        detail: Optional[str] = None,
    ):
        if not detail:
            if current_status == target_status:
                detail = f"{entity.capitalize()} {entity_id} is already in '{target_status}' status"
            else:
                detail = (
                    f"Cannot move {entity} {entity_id} to '{target_status}' "
                    f"from status '{current_status}'"
                )

        super().__init__(
            status_code=400,
            title="Illegal State Transition",
            detail=detail,
            type_uri=f"{PROBLEM_BASE_URI}/illegal-state-transition",
            extensions={
                "entity": entity,
                "entity_id": entity_id,
                "current_status": current_status,
                "target_status": target_status,
            },
        )


class ResourceUnavailableError(ProblemDetailsException):
    """Amenity not operational or capacity exceeded."""

    code = "RESOURCE_UNAVAILABLE"

    def __init__(self, detail: str, resource_id: Optional[str] = None):
        extensions = {}
        if resource_id:
            extensions["resource_id"] = resource_id

        super().__init__(
            status_code=400,
            title="Resource Unavailable",
            detail=detail,
            type_uri=f"{PROBLEM_BASE_URI}/resource-unavailable",
            extensions=extensions,
        )


class OutOfWindowError(ProblemDetailsException):
    """Date or time precondition not met."""

    code = "OUT_OF_WINDOW"

    def __init__(self, detail: str):
        super().__init__(
            status_code=400,
            title="Out Of Window",
            detail=detail,
            type_uri=f"{PROBLEM_BASE_URI}/out-of-window",
        )


class InvalidCredentialError(ProblemDetailsException):
    """Malformed, tampered or wrong-typed QR credential."""

    code = "INVALID_CREDENTIAL"

    def __init__(self, detail: str = "Invalid or unreadable credential"):
        super().__init__(
            status_code=400,
            title="Invalid Credential",
            detail=detail,
            type_uri=f"{PROBLEM_BASE_URI}/invalid-credential",
        )


class ConflictError(ProblemDetailsException):
    """Exception for resource conflict errors (double booking)."""

    code = "CONFLICT"

    def __init__(
        self,
        detail: str = "The request conflicts with the current state of the resource",
        conflicting_resource: Optional[Dict[str, Any]] = None,
    ):
        extensions = {}
        if conflicting_resource:
            extensions["conflicting_resource"] = conflicting_resource

        super().__init__(
            status_code=409,
            title="Resource Conflict",
            detail=detail,
            type_uri=f"{PROBLEM_BASE_URI}/conflict",
            extensions=extensions,
        )


class InternalServerError(ProblemDetailsException):
    """Exception for internal server errors."""

    code = "INTERNAL_ERROR"

    def __init__(
        self,
        detail: str = "An unexpected error occurred while processing the request",
        error_id: Optional[str] = None,
    ):
        super().__init__(
            status_code=500,
            title="Internal Server Error",
            detail=detail,
            type_uri=f"{PROBLEM_BASE_URI}/internal-error",
            extensions={
                "error_id": error_id or str(uuid.uuid4()),
                "timestamp": _utc_timestamp(),
            },
        )


def _utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


async def problem_details_handler(request: Request, exc: ProblemDetailsException) -> JSONResponse:
    """
    Exception handler for Problem Details exceptions.

    Args:
        request: FastAPI request object
        exc: Problem Details exception

    Returns:
        JSONResponse: Problem Details formatted response
    """
    content = dict(exc.problem_details)
    content.setdefault("instance", request.url.path)
    return JSONResponse(
        status_code=exc.status_code,
        content=content,
        headers=exc.headers,
        media_type="application/problem+json",
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Render FastAPI request validation failures as 400 Invalid Input problems."""
    violations = [
        {
            "path": ".".join(str(part) for part in error.get("loc", ())),
            "message": error.get("msg", "invalid value"),
        }
        for error in exc.errors()
    ]
    problem = InvalidInputError(violations=violations)
    return await problem_details_handler(request, problem)


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """
    Generic exception handler that converts unhandled exceptions to Problem Details format.

    Args:
        request: FastAPI request object
        exc: Unhandled exception

    Returns:
        JSONResponse: Problem Details formatted response
    """
    problem = InternalServerError()
    logger.error(
        "Unhandled exception",
        path=request.url.path,
        error_id=problem.problem_details["error_id"],
        error=str(exc),
        exc_info=exc,
    )
    return await problem_details_handler(request, problem)
