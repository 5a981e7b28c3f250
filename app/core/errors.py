"""
Custom exception hierarchy for the Sage engine.

Rule: every HTTP error has a machine-readable `code` string so clients
can branch on it without parsing English messages. In particular the UI
must tell "already handled by another session" (409) apart from a
system error (500).

Consent denial and stale experiences are NOT exceptions: they are typed
outcomes returned by the services (see RecordResult / JobSummary).
"""
from __future__ import annotations

import logging
from typing import Any

from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette import status

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Exception classes
# ---------------------------------------------------------------------------

class SageException(Exception):
    """Base class for all application-level errors."""
    http_status: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    code: str = "INTERNAL_ERROR"

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict:
        payload: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.details:
            payload["details"] = self.details
        return payload


class DimensionMismatchError(SageException):
    http_status = status.HTTP_422_UNPROCESSABLE_ENTITY
    code = "DIMENSION_MISMATCH"

    def __init__(self, expected: int, received: int):
        super().__init__(
            message=f"Vector dimension mismatch: expected {expected}, received {received}.",
            details={"expected": expected, "received": received},
        )


class InvalidContextVectorError(SageException):
    http_status = status.HTTP_422_UNPROCESSABLE_ENTITY
    code = "INVALID_CONTEXT_VECTOR"

    def __init__(self, reason: str):
        super().__init__(
            message=f"Invalid context vector: {reason}.",
            details={"reason": reason},
        )


class ExperienceNotFoundError(SageException):
    http_status = status.HTTP_404_NOT_FOUND
    code = "EXPERIENCE_NOT_FOUND"

    def __init__(self, experience_id: int):
        super().__init__(
            message=f"Experience {experience_id} not found.",
            details={"id": experience_id},
        )


class DoubleFinalizeError(SageException):
    """A reward was about to be written twice. Always a scheduling/concurrency bug."""
    http_status = status.HTTP_409_CONFLICT
    code = "DOUBLE_FINALIZE"

    def __init__(self, experience_id: int):
        super().__init__(
            message=f"Experience {experience_id} is already finalized or excluded from learning.",
            details={"id": experience_id},
        )


class PolicyWriteConflictError(SageException):
    http_status = status.HTTP_409_CONFLICT
    code = "POLICY_WRITE_CONFLICT"

    def __init__(self, user_id: str, action: str):
        super().__init__(
            message=f"Concurrent policy update for ({user_id}, {action}); retry later.",
            details={"user_id": user_id, "action": action},
        )


class InvalidTransitionError(SageException):
    """Proposal / action state machine violation."""
    http_status = status.HTTP_409_CONFLICT
    code = "INVALID_TRANSITION"


class ProposalAlreadyReviewedError(InvalidTransitionError):
    code = "PROPOSAL_ALREADY_REVIEWED"

    def __init__(self, proposal_id: int, current_status: str):
        super().__init__(
            message=f"Proposal {proposal_id} was already reviewed (status: {current_status}).",
            details={"id": proposal_id, "status": current_status},
        )


class ProposalExpiredError(InvalidTransitionError):
    code = "PROPOSAL_EXPIRED"

    def __init__(self, proposal_id: int):
        super().__init__(
            message=f"Proposal {proposal_id} has expired.",
            details={"id": proposal_id, "status": "expired"},
        )


class ActionAlreadyUndoneError(InvalidTransitionError):
    code = "ACTION_ALREADY_UNDONE"

    def __init__(self, action_id: int):
        super().__init__(
            message=f"Action {action_id} was already undone.",
            details={"id": action_id, "status": "undone"},
        )


class ProposalNotFoundError(SageException):
    http_status = status.HTTP_404_NOT_FOUND
    code = "PROPOSAL_NOT_FOUND"

    def __init__(self, proposal_id: int):
        super().__init__(
            message=f"Proposal {proposal_id} not found.",
            details={"id": proposal_id},
        )


class ActionNotFoundError(SageException):
    http_status = status.HTTP_404_NOT_FOUND
    code = "ACTION_NOT_FOUND"

    def __init__(self, action_id: int):
        super().__init__(
            message=f"Agent action {action_id} not found.",
            details={"id": action_id},
        )


class UnsupportedEffectError(SageException):
    http_status = status.HTTP_422_UNPROCESSABLE_ENTITY
    code = "UNSUPPORTED_EFFECT"

    def __init__(self, op: str):
        super().__init__(
            message=f"Unsupported proposal effect: {op!r}.",
            details={"op": op},
        )


class UnknownConsentPurposeError(SageException):
    http_status = status.HTTP_422_UNPROCESSABLE_ENTITY
    code = "UNKNOWN_CONSENT_PURPOSE"

    def __init__(self, purpose: str):
        super().__init__(
            message=f"Unknown consent purpose: {purpose!r}.",
            details={"purpose": purpose},
        )


class JobAlreadyRunningError(SageException):
    http_status = status.HTTP_409_CONFLICT
    code = "JOB_ALREADY_RUNNING"

    def __init__(self, job_name: str):
        super().__init__(
            message=f"Job {job_name!r} is already running.",
            details={"job": job_name},
        )


# ---------------------------------------------------------------------------
# FastAPI exception handlers
# ---------------------------------------------------------------------------

async def sage_exception_handler(request: Request, exc: SageException) -> JSONResponse:
    return JSONResponse(
        status_code=exc.http_status,
        content=exc.to_dict(),
    )


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Return structured 422 with machine-readable field errors."""
    field_errors = []
    for error in exc.errors():
        field_errors.append({
            "field": ".".join(str(loc) for loc in error["loc"] if loc != "body"),
            "message": error["msg"],
            "type": error["type"],
        })
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "code": "VALIDATION_ERROR",
            "message": "Request validation failed.",
            "details": {"errors": field_errors},
        },
    )


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "code": "INTERNAL_ERROR",
            "message": "An unexpected error occurred.",
        },
    )
