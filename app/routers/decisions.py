"""
Decision router.

POST /sage/decide   — score the user's context and pick a coaching action
"""
from datetime import datetime

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.core.clock import utcnow
from app.db.base import get_db
from app.schemas.common import ErrorResponse
from app.schemas.decision import DecisionRequest, DecisionResponse
from app.services.decision import decide

router = APIRouter(prefix="/sage", tags=["sage"])


def get_now() -> datetime:
    return utcnow()


@router.post(
    "/decide",
    response_model=DecisionResponse,
    summary="Choose a coaching action for a user",
    responses={
        200: {"description": "Decision taken, or a consent_denied / safety_blocked no-op."},
        422: {"model": ErrorResponse, "description": "Invalid context vector or dimension mismatch."},
    },
)
def decide_action(
    payload: DecisionRequest,
    db: Session = Depends(get_db),
    now: datetime = Depends(get_now),
):
    """
    Scores all ten actions against the user's policy weights and records the
    decision as a pending experience.

    When the user has not granted both `ai_profiling` and `policy_learning`
    the response has `outcome="consent_denied"`, `action="silent"` and
    nothing is stored. The same holds for `outcome="safety_blocked"`, with
    the blocking rule in `reasoning` (quiet_hours, daily_limit,
    overload_protection, intervention_fatigue, consecutive_nudges).
    """
    outcome = decide(
        db,
        payload.user_id,
        context_vector=payload.context_vector,
        propose=payload.propose,
        now=now,
    )
    return DecisionResponse(**outcome.__dict__)
