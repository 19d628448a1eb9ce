"""
Exception taxonomy and FastAPI exception handlers for the lifecycle service
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger(__name__)


class LifecycleError(Exception):
    """Base exception for every error the service surfaces to callers"""

    def __init__(
        self,
        message: str,
        error_code: str = "INTERNAL_ERROR",
        status_code: int = 500,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        self.details = details or {}
        super().__init__(self.message)


class NotFoundOrUnauthorized(LifecycleError):
    """Resource is absent or the caller holds no share on it.

    Both cases produce the same error so callers cannot probe for other
    users' resources.
    """

    def __init__(self, resource: str = "Resource", details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=f"{resource} not found",
            error_code="NOT_FOUND",
            status_code=404,
            details=details,
        )


class ActivationError(LifecycleError):
    """Trigger registration failed; carries a human readable cause"""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=message, error_code="ACTIVATION_FAILED", status_code=400, details=details
        )


class ConflictError(LifecycleError):
    def __init__(self, message: str = "Resource conflict", details: Optional[Dict[str, Any]] = None):
        super().__init__(message=message, error_code="CONFLICT", status_code=409, details=details)


class WorkflowLockedError(ConflictError):
    """Another transition of the same workflow holds its lock"""

    def __init__(self, workflow_id: str):
        super().__init__(
            message=f"Workflow {workflow_id} is being modified by another request",
            details={"workflow_id": workflow_id},
        )
        self.error_code = "WORKFLOW_LOCKED"


class TransactionError(LifecycleError):
    """A multi-statement storage transaction failed and was rolled back"""

    def __init__(self, message: str = "Storage transaction failed", details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=message, error_code="TRANSACTION_FAILED", status_code=500, details=details
        )


class AuthenticationError(LifecycleError):
    def __init__(self, message: str = "Authentication failed"):
        super().__init__(message=message, error_code="AUTHENTICATION_FAILED", status_code=401)


class AuthorizationError(LifecycleError):
    def __init__(self, message: str = "Insufficient permissions"):
        super().__init__(message=message, error_code="AUTHORIZATION_FAILED", status_code=403)


class InstanceNotSetUpError(LifecycleError):
    def __init__(self):
        super().__init__(
            message="Instance owner is not set up yet",
            error_code="INSTANCE_NOT_SET_UP",
            status_code=400,
        )


class InvalidCursorError(LifecycleError):
    def __init__(self, message: str = "An invalid cursor was provided"):
        super().__init__(message=message, error_code="INVALID_CURSOR", status_code=400)


# =============================================================================
# Exception handlers
# =============================================================================


def create_error_response(
    request: Request,
    error_code: str,
    message: str,
    status_code: int = 500,
    details: Optional[Dict[str, Any]] = None,
) -> JSONResponse:
    """Build the uniform error body returned by every endpoint"""
    error_response: Dict[str, Any] = {
        "success": False,
        "error_code": error_code,
        "message": message,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "path": request.url.path,
        "method": request.method,
    }

    if details:
        error_response["details"] = details

    return JSONResponse(status_code=status_code, content=error_response)


async def lifecycle_exception_handler(request: Request, exc: LifecycleError) -> JSONResponse:
    log = logger.error if exc.status_code >= 500 else logger.info
    log(
        f"{exc.error_code} - {exc.message}",
        extra={"status_code": exc.status_code, "path": request.url.path, "method": request.method},
    )

    return create_error_response(
        request=request,
        error_code=exc.error_code,
        message=exc.message,
        status_code=exc.status_code,
        details=exc.details,
    )


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    error_code = f"HTTP_{exc.status_code}"
    if exc.status_code == 404:
        error_code = "NOT_FOUND"
    elif exc.status_code == 405:
        error_code = "METHOD_NOT_ALLOWED"

    return create_error_response(
        request=request,
        error_code=error_code,
        message=str(exc.detail),
        status_code=exc.status_code,
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(LifecycleError, lifecycle_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
