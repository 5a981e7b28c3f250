"""
Experience Ledger — append-only record of (context, action, deferred reward).

Public API
----------
record(user_id, context_vector, action, metrics_before, run_id) -> RecordResult
select_pending(min_age, max_age, limit)                         -> list[Experience]
count_stale(max_age)                                            -> int
finalize(experience_id, metrics_after, reward, feedback_type)   -> Experience
disable_learning(experience_id)                                 -> bool
resolve_feedback(run_id)                                        -> str
stats(user_id)                                                  -> LedgerStats (incl. replay of current weights)

Invariants
----------
- A row is only written while ConsentOracle.learning_enabled(user) holds;
  otherwise record() returns a `consent_denied` result and writes nothing.
- `reward` goes from NULL to a value at most once. finalize() is a
  conditional UPDATE (reward IS NULL AND learning_enabled); a second call
  raises DoubleFinalizeError and leaves the first reward untouched.
- A row with learning_enabled=False never receives a reward.
- Rows are never deleted.

Flush only; the caller owns the transaction.
"""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Optional, Sequence

from sqlalchemy import func
from sqlalchemy.orm import Session

from app.core.clock import utcnow
from app.core.errors import DoubleFinalizeError, ExperienceNotFoundError, InvalidContextVectorError
from app.models.experience import ACTIONS, Experience, FeedbackType
from app.models.feedback import FeedbackSignal, FeedbackSignalType
from app.services.consent import ConsentOracle
from app.services.policy import ReplayItem, evaluate_policy, regret
from app.services.policy_store import PolicyStore

logger = logging.getLogger(__name__)

# Signals that count as the user's review of a decision. `undone` comes
# later and does not rewrite history.
_REVIEW_SIGNALS = (
    FeedbackSignalType.accepted.value,
    FeedbackSignalType.rejected.value,
    FeedbackSignalType.ignored.value,
)

_TREND_WINDOW = 20


def finite_vector(values: Sequence[float]) -> list[float]:
    """Context vector as floats; InvalidContextVectorError if empty or not finite."""
    try:
        vector = [float(c) for c in values]
    except (TypeError, ValueError) as exc:
        raise InvalidContextVectorError("values must be numbers") from exc
    if not vector:
        raise InvalidContextVectorError("vector is empty")
    if not all(math.isfinite(c) for c in vector):
        raise InvalidContextVectorError("values must be finite")
    return vector


# ---------------------------------------------------------------------------
# Result types
# ---------------------------------------------------------------------------

@dataclass
class RecordResult:
    status: str                          # "recorded" | "consent_denied"
    experience_id: Optional[int] = None

    @property
    def recorded(self) -> bool:
        return self.status == "recorded"


@dataclass
class LedgerStats:
    total_experiences: int
    processed_experiences: int
    average_reward: float
    action_distribution: dict[str, int] = field(default_factory=dict)
    recent_trend: float = 0.0
    replay_value: float = 0.0
    replay_regret: float = 0.0


class ExperienceLedger:
    def __init__(self, db: Session, consent: ConsentOracle):
        self.db = db
        self.consent = consent

    # ------------------------------------------------------------------
    # Decision time
    # ------------------------------------------------------------------

    def record(
        self,
        user_id: str,
        context_vector: Sequence[float],
        action: str,
        metrics_before: dict[str, float],
        run_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> RecordResult:
        if action not in ACTIONS:
            raise ValueError(f"unknown action {action!r}")
        vector = finite_vector(context_vector)

        if not self.consent.learning_enabled(user_id):
            logger.debug("Learning disabled by consent for user %s; experience not recorded", user_id)
            return RecordResult(status="consent_denied")

        exp = Experience(
            user_id=user_id,
            run_id=run_id,
            context_vector=vector,
            action_type=action,
            metrics_before=dict(metrics_before),
            learning_enabled=True,
            created_at=now or utcnow(),
        )
        self.db.add(exp)
        self.db.flush()
        return RecordResult(status="recorded", experience_id=exp.id)

    # ------------------------------------------------------------------
    # Batch time
    # ------------------------------------------------------------------

    def _pending_query(self):
        return self.db.query(Experience).filter(
            Experience.reward.is_(None),
            Experience.learning_enabled.is_(True),
        )

    def select_pending(
        self,
        min_age: timedelta,
        max_age: timedelta,
        limit: int,
        now: Optional[datetime] = None,
    ) -> list[Experience]:
        """
        Unfinalized, learning-enabled experiences created within
        [now - max_age, now - min_age], oldest first (creation order keeps
        successive updates of one (user, action) in decision order).
        """
        now = now or utcnow()
        return (
            self._pending_query()
            .filter(
                Experience.created_at >= now - max_age,
                Experience.created_at <= now - min_age,
            )
            .order_by(Experience.created_at.asc(), Experience.id.asc())
            .limit(limit)
            .all()
        )

    def count_stale(self, max_age: timedelta, now: Optional[datetime] = None) -> int:
        """Pending experiences past max_age: abandoned, never processed."""
        now = now or utcnow()
        return (
            self._pending_query()
            .filter(Experience.created_at < now - max_age)
            .count()
        )

    def finalize(
        self,
        experience_id: int,
        metrics_after: dict[str, float],
        reward: float,
        feedback_type: str = FeedbackType.none.value,
        now: Optional[datetime] = None,
    ) -> Experience:
        if not math.isfinite(reward):
            raise ValueError("reward must be finite")

        matched = (
            self.db.query(Experience)
            .filter(
                Experience.id == experience_id,
                Experience.reward.is_(None),
                Experience.learning_enabled.is_(True),
            )
            .update(
                {
                    Experience.metrics_after: dict(metrics_after),
                    Experience.reward: float(reward),
                    Experience.feedback_type: feedback_type,
                    Experience.finalized_at: now or utcnow(),
                },
                synchronize_session=False,
            )
        )
        if matched == 0:
            if self.db.get(Experience, experience_id) is None:
                raise ExperienceNotFoundError(experience_id)
            logger.error(
                "Double finalize attempted on experience %s; "
                "check for overlapping learning job runs",
                experience_id,
            )
            raise DoubleFinalizeError(experience_id)

        self.db.flush()
        exp = self.db.get(Experience, experience_id, populate_existing=True)
        return exp

    def disable_learning(self, experience_id: int) -> bool:
        """
        Permanently exclude an unfinalized experience from learning.
        Returns False if the row was already finalized or already disabled.
        """
        matched = (
            self.db.query(Experience)
            .filter(Experience.id == experience_id, Experience.reward.is_(None))
            .filter(Experience.learning_enabled.is_(True))
            .update({Experience.learning_enabled: False}, synchronize_session=False)
        )
        self.db.flush()
        return matched > 0

    def resolve_feedback(self, run_id: Optional[str]) -> str:
        """First review signal recorded for the run, or "none"."""
        if not run_id:
            return FeedbackType.none.value
        signal = (
            self.db.query(FeedbackSignal.signal)
            .filter(
                FeedbackSignal.run_id == run_id,
                FeedbackSignal.signal.in_(_REVIEW_SIGNALS),
            )
            .order_by(FeedbackSignal.created_at.asc(), FeedbackSignal.id.asc())
            .first()
        )
        return signal[0] if signal else FeedbackType.none.value

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------

    def finalized(self, user_id: str, limit: int = 1000) -> list[Experience]:
        """Finalized experiences for a user, newest first."""
        return (
            self.db.query(Experience)
            .filter(Experience.user_id == user_id, Experience.reward.is_not(None))
            .order_by(Experience.created_at.desc(), Experience.id.desc())
            .limit(limit)
            .all()
        )

    def stats(self, user_id: str) -> LedgerStats:
        total = (
            self.db.query(func.count(Experience.id))
            .filter(Experience.user_id == user_id)
            .scalar()
            or 0
        )
        distribution = dict(
            self.db.query(Experience.action_type, func.count(Experience.id))
            .filter(Experience.user_id == user_id)
            .group_by(Experience.action_type)
            .all()
        )
        history = self.finalized(user_id, limit=100)
        rewards = [e.reward for e in history]
        if not rewards:
            return LedgerStats(
                total_experiences=total,
                processed_experiences=0,
                average_reward=0.0,
                action_distribution=distribution,
            )

        processed = (
            self.db.query(func.count(Experience.id))
            .filter(Experience.user_id == user_id, Experience.reward.is_not(None))
            .scalar()
            or 0
        )
        recent = rewards[:_TREND_WINDOW]
        older = rewards[_TREND_WINDOW:2 * _TREND_WINDOW]
        recent_avg = sum(recent) / len(recent)
        older_avg = sum(older) / len(older) if older else recent_avg
        trend = (recent_avg - older_avg) / abs(older_avg) if older_avg != 0 else 0.0
        replay, replay_regret = self._replay(user_id, history)

        return LedgerStats(
            total_experiences=total,
            processed_experiences=processed,
            average_reward=sum(rewards) / len(rewards),
            action_distribution=distribution,
            recent_trend=trend,
            replay_value=replay,
            replay_regret=replay_regret,
        )

    def _replay(self, user_id: str, history: list[Experience]) -> tuple[float, float]:
        """
        Replay value and regret of the current weights over finalized
        history. Only experiences and weights with the newest context
        dimension take part.
        """
        dim = len(history[0].context_vector)
        items = [
            ReplayItem(list(e.context_vector), e.action_type, float(e.reward))
            for e in history
            if len(e.context_vector) == dim
        ]
        weights = {
            action: vector
            for action, vector in PolicyStore(self.db).all_weights(user_id, dim).items()
            if len(vector) == dim
        }
        if not weights:
            return 0.0, 0.0
        return evaluate_policy(items, weights), regret(items, weights)
