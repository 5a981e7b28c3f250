"""
Decision path — one request-time decision for one user.

  consent gate → safety gate → metrics → context vector → score/choose
  → safety gate (chosen action) → record → propose

A single run_id is generated here and threaded through the Experience,
the Proposal and (once approved) the AgentAction and feedback signals.
Commits once at the end. Nothing is written when consent is off or the
safety gate blocks; both are outcomes, not errors.
"""
from __future__ import annotations

import logging
import random
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Sequence

from sqlalchemy.orm import Session

from app.core.clock import utcnow
from app.core.config import settings
from app.models.experience import SageAction
from app.services.behavioral_profile import BehavioralProfileEngine
from app.services.consent import ConsentOracle, sql_consent_oracle
from app.services.experience_ledger import ExperienceLedger, finite_vector
from app.services.metrics import compute_metrics, metrics_to_vector
from app.services.policy import choose_action
from app.services.policy_store import PolicyStore
from app.services.proposals import ProposalDraft, ProposalGovernor
from app.services.safety import SafetyGate, SafetyVerdict
from app.services.telemetry import SqlTelemetrySource, TelemetrySource

logger = logging.getLogger(__name__)


# action → (proposal type, title, priority, effect specs)
PROPOSAL_TEMPLATES: dict[str, tuple[str, str, str, list[dict]]] = {
    SageAction.suggest_task.value: (
        "suggestion", "Plan one focused task for today", "medium",
        [{"op": "create_task", "title": "One focused task for today", "priority": "medium", "due_in_days": 0}],
    ),
    SageAction.challenge.value: (
        "challenge", "Take on a small challenge", "high",
        [{"op": "create_task", "title": "Challenge: finish your hardest task before noon",
          "priority": "high", "due_in_days": 0}],
    ),
    SageAction.suggest_break.value: (
        "break", "Schedule a short break", "low",
        [{"op": "create_task", "title": "Take a 15 minute break", "priority": "low", "due_in_days": 0}],
    ),
    SageAction.weekly_review.value: (
        "review", "Run your weekly review", "medium",
        [{"op": "create_task", "title": "Weekly review", "priority": "medium", "due_in_days": 0}],
    ),
    SageAction.protect.value: (
        "overload", "Move non-urgent tasks to tomorrow", "high",
        [{"op": "postpone_tasks"}],
    ),
    SageAction.reframe.value: (
        "restructure", "Reduce work in progress", "medium",
        [{"op": "reduce_wip", "limit": 3}],
    ),
}


@dataclass
class DecisionOutcome:
    outcome: str                         # "decided" | "consent_denied" | "safety_blocked"
    user_id: str
    action: str
    score: float = 0.0
    confidence: float = 0.0
    reasoning: str = ""
    explored: bool = False
    run_id: Optional[str] = None
    experience_id: Optional[int] = None
    proposal_id: Optional[int] = None
    metrics: dict[str, float] = field(default_factory=dict)
    context_vector: list[float] = field(default_factory=list)


def _blocked(user_id: str, verdict: SafetyVerdict) -> DecisionOutcome:
    return DecisionOutcome(
        outcome="safety_blocked",
        user_id=user_id,
        action=SageAction.silent.value,
        reasoning=verdict.reason or "",
    )


def decide(
    db: Session,
    user_id: str,
    context_vector: Optional[Sequence[float]] = None,
    propose: bool = True,
    now: Optional[datetime] = None,
    rng: Optional[random.Random] = None,
    consent: Optional[ConsentOracle] = None,
    telemetry: Optional[TelemetrySource] = None,
    epsilon: Optional[float] = None,
) -> DecisionOutcome:
    now = now or utcnow()
    consent = consent or sql_consent_oracle(db)

    if not consent.learning_enabled(user_id):
        logger.debug("Decision for user %s: learning disabled, staying silent", user_id)
        return DecisionOutcome(
            outcome="consent_denied",
            user_id=user_id,
            action=SageAction.silent.value,
            reasoning="consent_denied",
        )

    telemetry = telemetry or SqlTelemetrySource(db)
    gate = SafetyGate(db, telemetry, BehavioralProfileEngine(db, consent=consent, telemetry=telemetry))
    verdict = gate.check_context(user_id, now)
    if not verdict.allowed:
        return _blocked(user_id, verdict)

    metrics = compute_metrics(telemetry, user_id, now)
    vector = finite_vector(context_vector) if context_vector is not None else metrics_to_vector(metrics)

    store = PolicyStore(db)
    weights = store.all_weights(user_id, len(vector))
    choice = choose_action(
        vector,
        weights,
        epsilon=settings.EXPLORATION_EPSILON if epsilon is None else epsilon,
        rng=rng,
    )
    verdict = gate.check_action(user_id, choice.action)
    if not verdict.allowed:
        return _blocked(user_id, verdict)

    run_id = uuid.uuid4().hex
    ledger = ExperienceLedger(db, consent)
    recorded = ledger.record(user_id, vector, choice.action, metrics, run_id=run_id, now=now)
    if not recorded.recorded:
        # Consent withdrawn between the gate and the write.
        db.rollback()
        return DecisionOutcome(
            outcome="consent_denied",
            user_id=user_id,
            action=SageAction.silent.value,
            reasoning="consent_denied",
        )

    proposal_id = None
    template = PROPOSAL_TEMPLATES.get(choice.action)
    if propose and template is not None:
        proposal_type, title, priority, specs = template
        proposal = ProposalGovernor(db).generate(
            ProposalDraft(
                user_id=user_id,
                run_id=run_id,
                type=proposal_type,
                title=title,
                proposed_actions=specs,
                reasoning=choice.reasoning,
                confidence_score=round(choice.confidence, 4),
                priority=priority,
                action_type=choice.action,
            ),
            now=now,
        )
        proposal_id = proposal.id

    db.commit()
    logger.info(
        "Decision for user %s: %s (score=%.4f, explored=%s, run %s)",
        user_id, choice.action, choice.score, choice.explored, run_id,
    )
    return DecisionOutcome(
        outcome="decided",
        user_id=user_id,
        action=choice.action,
        score=choice.score,
        confidence=choice.confidence,
        reasoning=choice.reasoning,
        explored=choice.explored,
        run_id=run_id,
        experience_id=recorded.experience_id,
        proposal_id=proposal_id,
        metrics=metrics,
        context_vector=vector,
    )
