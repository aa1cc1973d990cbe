"""Error taxonomy and exception handlers for the queue service."""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from fastapi import Request, status
from fastapi.responses import JSONResponse

from branchqueue.core.logging import get_logger
from branchqueue.db.schemas import ErrorResponse

logger = get_logger(__name__)


class ErrorCode(str, Enum):
    """Standardized error codes for the API."""

    # Validation Errors
    VALIDATION_ERROR = "VALIDATION_ERROR"
    INVALID_DATE = "INVALID_DATE"

    # Resource Errors
    RESOURCE_NOT_FOUND = "RESOURCE_NOT_FOUND"
    RESOURCE_CONFLICT = "RESOURCE_CONFLICT"

    # Business Logic Errors
    INVALID_TRANSITION = "INVALID_TRANSITION"
    INVALID_SAMPLE = "INVALID_SAMPLE"
    APPOINTMENT_CANNOT_BE_RESCHEDULED = "APPOINTMENT_CANNOT_BE_RESCHEDULED"
    APPOINTMENT_ALREADY_QUEUED = "APPOINTMENT_ALREADY_QUEUED"

    # System Errors
    DATABASE_ERROR = "DATABASE_ERROR"
    CONFIGURATION_ERROR = "CONFIGURATION_ERROR"
    INTERNAL_SERVER_ERROR = "INTERNAL_SERVER_ERROR"


class APIException(Exception):
    """Base API exception with enhanced error information."""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.INTERNAL_SERVER_ERROR,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        field: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        self.field = field
        self.context = context or {}
        self.timestamp = datetime.now(timezone.utc)

        super().__init__(message)


class InvalidTransition(APIException):
    """A lifecycle or queue operation was attempted from an incompatible state."""

    def __init__(
        self,
        entity: str,
        entity_id: Optional[int],
        current_status: str,
        operation: str,
        reason: Optional[str] = None,
    ):
        message = f"Cannot {operation} {entity} {entity_id} in status '{current_status}'"
        if reason:
            message += f": {reason}"

        super().__init__(
            message=message,
            error_code=ErrorCode.INVALID_TRANSITION,
            status_code=status.HTTP_409_CONFLICT,
            context={
                "entity": entity,
                "entity_id": entity_id,
                "current_status": current_status,
                "operation": operation,
            },
        )
        self.current_status = current_status
        self.operation = operation


class InvalidSample(APIException):
    """A queue timing sample failed the validity bounds."""

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=message,
            error_code=ErrorCode.INVALID_SAMPLE,
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            context=context,
        )


class PersistenceError(APIException):
    """The repository layer failed."""

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=message,
            error_code=ErrorCode.DATABASE_ERROR,
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            context=context,
        )


class ConfigurationError(APIException):
    """Invalid scheduler configuration."""

    def __init__(self, message: str, field: Optional[str] = None, context: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=message,
            error_code=ErrorCode.CONFIGURATION_ERROR,
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            field=field,
            context=context,
        )


class ValidationException(APIException):
    """Validation error exception."""

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        error_code: ErrorCode = ErrorCode.VALIDATION_ERROR,
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(
            message=message,
            error_code=error_code,
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            field=field,
            context=context,
        )


class ResourceNotFoundException(APIException):
    """Resource not found exception."""

    def __init__(self, resource_type: str, resource_id: Optional[int] = None):
        message = f"{resource_type} not found"
        if resource_id is not None:
            message += f" with ID: {resource_id}"

        super().__init__(
            message=message,
            error_code=ErrorCode.RESOURCE_NOT_FOUND,
            status_code=status.HTTP_404_NOT_FOUND,
            context={"resource_type": resource_type, "resource_id": resource_id},
        )


class ResourceConflictException(APIException):
    """Resource conflict exception."""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.RESOURCE_CONFLICT,
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(
            message=message,
            error_code=error_code,
            status_code=status.HTTP_409_CONFLICT,
            context=context,
        )


def get_request_id(request: Request) -> str:
    """Get request ID from request state or generate new one."""
    if hasattr(request.state, "request_id"):
        return request.state.request_id
    return str(uuid.uuid4())


def create_error_response(exception: APIException, request: Optional[Request] = None) -> JSONResponse:
    """Create standardized error response."""
    request_id = get_request_id(request) if request else None

    error_response = ErrorResponse(
        detail=exception.message,
        error_code=exception.error_code.value,
        field=exception.field,
        timestamp=exception.timestamp,
        request_id=request_id,
        context=exception.context,
    )

    logger.warning(
        "API error",
        error_code=exception.error_code.value,
        message=exception.message,
        status_code=exception.status_code,
        request_id=request_id,
    )

    return JSONResponse(
        status_code=exception.status_code,
        content=error_response.model_dump(mode="json"),
    )


async def api_exception_handler(request: Request, exc: APIException) -> JSONResponse:
    """Handle APIException."""
    return create_error_response(exc, request)
