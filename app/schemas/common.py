"""
Error envelope shared by every router's documented error responses.

Clients branch on `code` (e.g. PROPOSAL_ALREADY_REVIEWED vs INTERNAL_ERROR),
never on `message`.
"""
from typing import Any, Optional
from pydantic import BaseModel, Field


class ErrorResponse(BaseModel):
    code: str = Field(description="Machine-readable error code.", examples=["PROPOSAL_ALREADY_REVIEWED"])
    message: str = Field(description="Human-readable explanation.")
    details: Optional[dict[str, Any]] = Field(
        default=None,
        description="Error-specific context, e.g. the status a proposal was already moved to.",
    )
