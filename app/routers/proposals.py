"""
Proposal governance router.

GET  /proposals                 — list proposals (filter by user / status)
POST /proposals/{id}/approve    — execute the proposal's effect
POST /proposals/{id}/reject     — decline it
POST /proposals/expire          — expire overdue pending proposals (operators)
POST /actions/{id}/undo         — revert an executed action
"""
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.core.clock import as_utc
from app.core.errors import ProposalExpiredError
from app.db.base import get_db
from app.models.proposal import Proposal, ProposalStatus
from app.schemas.common import ErrorResponse
from app.schemas.proposal import (
    ActionResultResponse,
    ExpireResponse,
    ProposalListResponse,
    ProposalResponse,
    RejectRequest,
)
from app.services.proposals import ActionResult, ProposalGovernor

router = APIRouter(tags=["proposals"])

_TRANSITION_ERRORS = {
    404: {"model": ErrorResponse, "description": "Unknown proposal."},
    409: {
        "model": ErrorResponse,
        "description": "Already reviewed by another session, or expired.",
    },
}


def _proposal_to_response(p: Proposal) -> ProposalResponse:
    return ProposalResponse(
        id=p.id,
        user_id=p.user_id,
        run_id=p.run_id,
        type=p.type,
        action_type=p.action_type,
        title=p.title,
        proposed_actions=p.proposed_actions,
        reasoning=p.reasoning,
        confidence_score=p.confidence_score,
        priority=p.priority,
        status=p.status.value if hasattr(p.status, "value") else p.status,
        rejection_reason=p.rejection_reason,
        created_at=as_utc(p.created_at),
        reviewed_at=as_utc(p.reviewed_at),
        expires_at=as_utc(p.expires_at),
    )


def _result_to_response(r: ActionResult) -> ActionResultResponse:
    return ActionResultResponse(
        result=r.result,
        run_id=r.run_id,
        action_id=r.action_id,
        action=r.action,
        details=r.details,
    )


@router.get(
    "/proposals",
    response_model=ProposalListResponse,
    summary="List proposals (newest first)",
)
def list_proposals(
    user_id: Optional[str] = Query(default=None, description="Filter by user."),
    status: Optional[ProposalStatus] = Query(default=None, description="Filter by status."),
    limit: int = Query(default=50, ge=1, le=200, description="Page size."),
    offset: int = Query(default=0, ge=0, description="Skip N items."),
    db: Session = Depends(get_db),
):
    total, items = ProposalGovernor(db).list_proposals(
        user_id=user_id,
        status=status.value if status else None,
        limit=limit,
        offset=offset,
    )
    return ProposalListResponse(total=total, items=[_proposal_to_response(p) for p in items])


@router.post(
    "/proposals/expire",
    response_model=ExpireResponse,
    summary="Expire overdue pending proposals",
)
def expire_proposals(db: Session = Depends(get_db)):
    expired = ProposalGovernor(db).expire_stale()
    db.commit()
    return ExpireResponse(expired=expired)


@router.post(
    "/proposals/{proposal_id}/approve",
    response_model=ActionResultResponse,
    summary="Approve a pending proposal",
    responses=_TRANSITION_ERRORS,
)
def approve_proposal(proposal_id: int, db: Session = Depends(get_db)):
    """
    Executes the proposal's effect and records an `applied` action that can
    be undone. Returns `{result: "accepted", run_id, action_id, action}`.
    """
    try:
        result = ProposalGovernor(db).approve(proposal_id)
    except ProposalExpiredError:
        # Keep the pending → expired transition.
        db.commit()
        raise
    db.commit()
    return _result_to_response(result)


@router.post(
    "/proposals/{proposal_id}/reject",
    response_model=ActionResultResponse,
    summary="Reject a pending proposal",
    responses=_TRANSITION_ERRORS,
)
def reject_proposal(
    proposal_id: int,
    payload: Optional[RejectRequest] = None,
    db: Session = Depends(get_db),
):
    reason = payload.reason if payload else None
    try:
        result = ProposalGovernor(db).reject(proposal_id, reason=reason)
    except ProposalExpiredError:
        db.commit()
        raise
    db.commit()
    return _result_to_response(result)


@router.post(
    "/actions/{action_id}/undo",
    response_model=ActionResultResponse,
    summary="Undo an applied action",
    responses={
        404: {"model": ErrorResponse, "description": "Unknown action."},
        409: {"model": ErrorResponse, "description": "Action already undone."},
    },
)
def undo_action(action_id: int, db: Session = Depends(get_db)):
    """
    Restores the state captured when the action was applied. The earlier
    `accepted` feedback is kept; an `undone` signal is added next to it.
    """
    result = ProposalGovernor(db).undo(action_id)
    db.commit()
    return _result_to_response(result)
