"""
Proposal governance schemas.

GET  /proposals                 → ProposalListResponse
POST /proposals/{id}/approve    → ActionResultResponse
POST /proposals/{id}/reject     → ActionResultResponse
POST /proposals/expire          → ExpireResponse
POST /actions/{id}/undo         → ActionResultResponse
"""
from datetime import datetime
from typing import Any, Optional
from pydantic import BaseModel, ConfigDict, Field


class ProposalResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: str
    run_id: str
    type: str
    action_type: Optional[str] = None
    title: str
    proposed_actions: list[dict[str, Any]]
    reasoning: Optional[str] = None
    confidence_score: float
    priority: str
    status: str
    rejection_reason: Optional[str] = None
    created_at: datetime
    reviewed_at: Optional[datetime] = None
    expires_at: datetime


class ProposalListResponse(BaseModel):
    total: int
    items: list[ProposalResponse]


class RejectRequest(BaseModel):
    reason: Optional[str] = Field(default=None, max_length=500)


class ActionResultResponse(BaseModel):
    result: str = Field(description='"accepted" | "rejected" | "undone"')
    run_id: str
    action_id: Optional[int] = None
    action: Optional[dict[str, Any]] = Field(
        default=None, description="Effect result, on approval only."
    )
    details: dict[str, Any] = Field(default_factory=dict)


class ExpireResponse(BaseModel):
    expired: int
