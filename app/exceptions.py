"""
Segmentation errors as RFC 7807 problem details.

Every error the engine raises is an ``AppException``: a FastAPI
``HTTPException`` that already knows its status code and can render itself
as a problem-details payload, so the HTTP layer maps nothing by hand.

See: https://datatracker.ietf.org/doc/html/rfc7807
"""

from typing import Optional, Dict, Any, List
from enum import Enum
from pydantic import BaseModel, Field
from fastapi import HTTPException
import logging
import uuid
from app.utils.dates import utc_now

logger = logging.getLogger(__name__)

FieldErrors = List[Dict[str, Any]]


def _new_trace_id() -> str:
    return uuid.uuid4().hex[:12]


class ErrorCode(str, Enum):
    """Machine-readable error codes."""

    # Validation
    VALIDATION_ERROR = "VAL_001"

    # Resource
    NOT_FOUND = "RES_001"

    # Business Logic
    OPERATION_NOT_ALLOWED = "BIZ_003"


STATUS_TITLES = {
    400: "Bad Request",
    404: "Not Found",
    409: "Conflict",
    422: "Validation Error",
    500: "Internal Server Error",
}


class ProblemDetail(BaseModel):
    """Problem details payload (``application/problem+json``)."""

    type: str = Field(default="about:blank", description="URI reference identifying the problem type")
    title: str
    status: int
    detail: str
    instance: Optional[str] = None
    code: str = Field(description="Machine-readable error code")
    timestamp: str = Field(description="ISO 8601 time the error was raised")
    trace_id: str = Field(description="Identifier to find the error in logs")
    errors: Optional[FieldErrors] = Field(default=None, description="Field-level validation errors")

    model_config = {
        "json_schema_extra": {
            "example": {
                "type": "/problems/biz-003",
                "title": "Bad Request",
                "status": 400,
                "detail": "Can only manually add customers for manual segments",
                "code": "BIZ_003",
                "timestamp": "2026-01-29T10:30:00Z",
                "trace_id": "3f9c2a1b7d44",
            }
        }
    }


class AppException(HTTPException):
    """
    Base class for segmentation errors.

    Usage:
        raise AppException(status_code=404, code=ErrorCode.NOT_FOUND, detail="Segment not found")
    """

    def __init__(
        self,
        status_code: int,
        code: ErrorCode,
        detail: str,
        title: Optional[str] = None,
        instance: Optional[str] = None,
        errors: Optional[FieldErrors] = None,
    ):
        super().__init__(status_code=status_code, detail=detail)
        self.code = code
        self.title = title or STATUS_TITLES.get(status_code, "Error")
        self.instance = instance
        self.errors = errors
        self.trace_id = _new_trace_id()
        self.timestamp = utc_now().isoformat() + "Z"

    def __str__(self) -> str:
        return str(self.detail)

    def to_problem_detail(self) -> ProblemDetail:
        return ProblemDetail(
            type="/problems/" + self.code.value.lower().replace("_", "-"),
            title=self.title,
            status=self.status_code,
            detail=self.detail,
            instance=self.instance,
            code=self.code.value,
            timestamp=self.timestamp,
            trace_id=self.trace_id,
            errors=self.errors,
        )


class NotFoundError(AppException):
    """Resource missing, or owned by someone else (404)."""

    def __init__(self, resource: str, resource_id: str, instance: Optional[str] = None):
        self.resource = resource
        self.resource_id = resource_id
        super().__init__(
            status_code=404,
            code=ErrorCode.NOT_FOUND,
            detail=f"{resource} with ID {resource_id} was not found",
            instance=instance,
        )


class ValidationError(AppException):
    """Invalid input, rejected before anything is written (422)."""

    def __init__(self, detail: str, errors: Optional[FieldErrors] = None):
        super().__init__(status_code=422, code=ErrorCode.VALIDATION_ERROR, detail=detail, errors=errors)

    @classmethod
    def from_pydantic(cls, exc, detail: str = "Validation failed") -> "ValidationError":
        """Wrap a pydantic ``ValidationError``, keeping one entry per failing field."""
        errors = [
            {
                "field": ".".join(str(loc) for loc in error["loc"]),
                "message": error["msg"],
                "type": error["type"],
            }
            for error in exc.errors()
        ]
        return cls(detail, errors=errors)


class InvalidOperationError(AppException):
    """Operation not allowed for the segment's type (400)."""

    def __init__(self, detail: str):
        super().__init__(status_code=400, code=ErrorCode.OPERATION_NOT_ALLOWED, detail=detail)
