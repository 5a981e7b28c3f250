"""
Proposal Governor — lifecycle of AI proposals and the actions they produce.

  pending ──approve──▶ accepted   (effect executed, AgentAction applied)
     │    ──reject───▶ rejected
     └────expire─────▶ expired
  AgentAction: applied ──undo──▶ undone

Every transition is a guarded UPDATE on the current status, so two
sessions reviewing the same proposal cannot both win: the loser gets
ProposalAlreadyReviewedError / ActionAlreadyUndoneError carrying the
status it lost to.

Every transition appends a feedback signal (keyed by the proposal's
run_id, read later by the learning job) and an audit entry.

Flush only; the router commits. ProposalExpiredError is raised after the
expiry itself has been flushed, so the caller should commit before
surfacing it.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Optional

from sqlalchemy.orm import Session

from app.core.clock import as_utc, utcnow
from app.core.config import settings
from app.core.errors import (
    ActionAlreadyUndoneError,
    ActionNotFoundError,
    ProposalAlreadyReviewedError,
    ProposalExpiredError,
    ProposalNotFoundError,
)
from app.models.agent_action import AgentAction, AgentActionStatus
from app.models.feedback import FeedbackSignal, FeedbackSignalType
from app.models.proposal import Proposal, ProposalStatus
from app.services import effects
from app.services.audit import record_audit

logger = logging.getLogger(__name__)


@dataclass
class ProposalDraft:
    user_id: str
    run_id: str
    type: str
    title: str
    proposed_actions: list[dict]
    reasoning: Optional[str] = None
    confidence_score: float = 0.0
    priority: str = "medium"
    action_type: Optional[str] = None


@dataclass
class ActionResult:
    result: str
    run_id: str
    action: Optional[dict[str, Any]] = None
    action_id: Optional[int] = None
    details: dict[str, Any] = field(default_factory=dict)


def _status(value) -> str:
    return value.value if hasattr(value, "value") else str(value)


class ProposalGovernor:
    def __init__(self, db: Session, ttl: Optional[timedelta] = None):
        self.db = db
        self.ttl = ttl if ttl is not None else timedelta(hours=settings.PROPOSAL_TTL_HOURS)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _get(self, proposal_id: int) -> Proposal:
        proposal = self.db.get(Proposal, proposal_id, populate_existing=True)
        if proposal is None:
            raise ProposalNotFoundError(proposal_id)
        return proposal

    def _transition(self, proposal: Proposal, to: ProposalStatus, now: datetime, **extra) -> None:
        matched = (
            self.db.query(Proposal)
            .filter(Proposal.id == proposal.id, Proposal.status == ProposalStatus.pending)
            .update(
                {Proposal.status: to, Proposal.reviewed_at: now, **extra},
                synchronize_session=False,
            )
        )
        if matched == 0:
            current = self._get(proposal.id)
            raise ProposalAlreadyReviewedError(proposal.id, _status(current.status))
        self.db.flush()
        self.db.refresh(proposal)

    def _signal(
        self,
        proposal: Proposal,
        signal: FeedbackSignalType,
        action_id: Optional[int] = None,
        reason: Optional[str] = None,
    ) -> None:
        self.db.add(FeedbackSignal(
            user_id=proposal.user_id,
            run_id=proposal.run_id,
            proposal_id=proposal.id,
            action_id=action_id,
            signal=signal.value,
            reason=reason,
        ))

    def _check_reviewable(self, proposal: Proposal, now: datetime) -> None:
        status = _status(proposal.status)
        if status != ProposalStatus.pending.value:
            raise ProposalAlreadyReviewedError(proposal.id, status)
        if as_utc(proposal.expires_at) <= now:
            self._expire(proposal, now)
            raise ProposalExpiredError(proposal.id)

    def _expire(self, proposal: Proposal, now: datetime) -> None:
        self._transition(proposal, ProposalStatus.expired, now)
        self._signal(proposal, FeedbackSignalType.ignored, reason="expired")
        record_audit(
            self.db,
            user_id=proposal.user_id,
            action="proposal_expired",
            entity="ai_proposals",
            entity_id=proposal.id,
            old_value={"status": "pending"},
            new_value={"status": "expired"},
        )
        self.db.flush()
        logger.info("Proposal %s expired (run %s)", proposal.id, proposal.run_id)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def generate(self, draft: ProposalDraft, now: Optional[datetime] = None) -> Proposal:
        effects.validate(draft.proposed_actions)
        now = now or utcnow()
        proposal = Proposal(
            user_id=draft.user_id,
            run_id=draft.run_id,
            type=draft.type,
            action_type=draft.action_type,
            title=draft.title,
            proposed_actions=list(draft.proposed_actions),
            reasoning=draft.reasoning,
            confidence_score=draft.confidence_score,
            priority=draft.priority,
            status=ProposalStatus.pending,
            created_at=now,
            expires_at=now + self.ttl,
        )
        self.db.add(proposal)
        self.db.flush()
        record_audit(
            self.db,
            user_id=draft.user_id,
            action="proposal_created",
            entity="ai_proposals",
            entity_id=proposal.id,
            new_value={"type": draft.type, "run_id": draft.run_id, "status": "pending"},
        )
        self.db.flush()
        return proposal

    def list_proposals(
        self,
        user_id: Optional[str] = None,
        status: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[int, list[Proposal]]:
        q = self.db.query(Proposal)
        if user_id:
            q = q.filter(Proposal.user_id == user_id)
        if status:
            q = q.filter(Proposal.status == ProposalStatus(status))
        total = q.count()
        items = q.order_by(Proposal.created_at.desc(), Proposal.id.desc()).offset(offset).limit(limit).all()
        return total, items

    def approve(self, proposal_id: int, now: Optional[datetime] = None) -> ActionResult:
        now = now or utcnow()
        proposal = self._get(proposal_id)
        self._check_reviewable(proposal, now)
        self._transition(proposal, ProposalStatus.accepted, now)

        result, previous_state = effects.execute(
            self.db, proposal.user_id, proposal.proposed_actions, now
        )
        action = AgentAction(
            proposal_id=proposal.id,
            user_id=proposal.user_id,
            run_id=proposal.run_id,
            previous_state=previous_state,
            result=result,
            status=AgentActionStatus.applied,
            executed_at=now,
        )
        self.db.add(action)
        self.db.flush()

        self._signal(proposal, FeedbackSignalType.accepted, action_id=action.id)
        record_audit(
            self.db,
            user_id=proposal.user_id,
            action="proposal_approved",
            entity="ai_proposals",
            entity_id=proposal.id,
            old_value={"status": "pending"},
            new_value={"status": "accepted", "action_id": action.id, "result": result},
        )
        self.db.flush()
        logger.info("Proposal %s approved → action %s (run %s)", proposal.id, action.id, proposal.run_id)
        return ActionResult(
            result="accepted",
            run_id=proposal.run_id,
            action=result,
            action_id=action.id,
        )

    def reject(
        self,
        proposal_id: int,
        reason: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> ActionResult:
        now = now or utcnow()
        proposal = self._get(proposal_id)
        self._check_reviewable(proposal, now)
        self._transition(proposal, ProposalStatus.rejected, now, rejection_reason=reason)

        self._signal(proposal, FeedbackSignalType.rejected, reason=reason)
        record_audit(
            self.db,
            user_id=proposal.user_id,
            action="proposal_rejected",
            entity="ai_proposals",
            entity_id=proposal.id,
            old_value={"status": "pending"},
            new_value={"status": "rejected", "reason": reason},
        )
        self.db.flush()
        logger.info("Proposal %s rejected (run %s)", proposal.id, proposal.run_id)
        return ActionResult(result="rejected", run_id=proposal.run_id)

    def undo(self, action_id: int, now: Optional[datetime] = None) -> ActionResult:
        now = now or utcnow()
        action = self.db.get(AgentAction, action_id, populate_existing=True)
        if action is None:
            raise ActionNotFoundError(action_id)
        if _status(action.status) != AgentActionStatus.applied.value:
            raise ActionAlreadyUndoneError(action_id)

        matched = (
            self.db.query(AgentAction)
            .filter(AgentAction.id == action_id, AgentAction.status == AgentActionStatus.applied)
            .update(
                {AgentAction.status: AgentActionStatus.undone, AgentAction.undone_at: now},
                synchronize_session=False,
            )
        )
        if matched == 0:
            raise ActionAlreadyUndoneError(action_id)

        restored = effects.restore(self.db, action.user_id, action.previous_state)
        self.db.add(FeedbackSignal(
            user_id=action.user_id,
            run_id=action.run_id,
            proposal_id=action.proposal_id,
            action_id=action.id,
            signal=FeedbackSignalType.undone.value,
        ))
        record_audit(
            self.db,
            user_id=action.user_id,
            action="action_undone",
            entity="agent_actions",
            entity_id=action.id,
            old_value={"status": "applied", "previous_state": action.previous_state},
            new_value={"status": "undone", **restored},
        )
        self.db.flush()
        self.db.refresh(action)
        logger.info("Action %s undone (run %s)", action.id, action.run_id)
        return ActionResult(
            result="undone",
            run_id=action.run_id,
            action_id=action.id,
            details=restored,
        )

    def expire_stale(self, now: Optional[datetime] = None) -> int:
        """Expire every pending proposal past its expires_at. Returns the count."""
        now = now or utcnow()
        stale = (
            self.db.query(Proposal)
            .filter(Proposal.status == ProposalStatus.pending, Proposal.expires_at <= now)
            .order_by(Proposal.id.asc())
            .all()
        )
        expired = 0
        for proposal in stale:
            try:
                self._expire(proposal, now)
            except ProposalAlreadyReviewedError:
                # Reviewed by another session since the select.
                continue
            expired += 1
        return expired
