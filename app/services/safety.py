"""
Safety gate — decides whether Sage may act for a user right now.

  check_context(user_id, now)  -> SafetyVerdict   before scoring
  check_action(user_id, action) -> SafetyVerdict  once an action is chosen

Rules, in the order they are checked (first failure wins):

  quiet_hours          now.hour in [QUIET_HOURS_START, QUIET_HOURS_END), UTC,
                       wrapping midnight
  daily_limit          MAX_ACTIONS_PER_DAY experiences already recorded today
  overload_protection  more than OVERLOAD_OVERDUE_TASKS overdue open tasks and
                       a cached dropout risk above OVERLOAD_DROPOUT_RISK
  intervention_fatigue more than FATIGUE_MIN_FEEDBACK reviews in the last
                       FATIGUE_WINDOW_DAYS with an acceptance rate below
                       FATIGUE_HELPFUL_RATE
  consecutive_nudges   the last MAX_CONSECUTIVE_NUDGES decisions were all
                       nudges and the chosen action is another one

A blocked decision is an outcome, not an error: the caller stays silent
and stores nothing. Read only.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from app.core.config import Settings, settings as default_settings
from app.models.experience import Experience, SageAction
from app.models.feedback import FeedbackSignal, FeedbackSignalType
from app.services.behavioral_profile import BehavioralProfileEngine
from app.services.telemetry import TelemetrySource

logger = logging.getLogger(__name__)

_OPEN_TASK_STATUSES = ("pending", "in_progress")

_REVIEWED = (
    FeedbackSignalType.accepted.value,
    FeedbackSignalType.rejected.value,
    FeedbackSignalType.ignored.value,
)


@dataclass(frozen=True)
class SafetyVerdict:
    allowed: bool
    reason: Optional[str] = None


ALLOWED = SafetyVerdict(allowed=True)


class SafetyGate:
    def __init__(
        self,
        db: Session,
        telemetry: TelemetrySource,
        profiles: BehavioralProfileEngine,
        config: Settings = default_settings,
    ):
        self.db = db
        self.telemetry = telemetry
        self.profiles = profiles
        self.config = config

    def _blocked(self, user_id: str, reason: str) -> SafetyVerdict:
        logger.info("Safety gate blocked a decision for user %s: %s", user_id, reason)
        return SafetyVerdict(allowed=False, reason=reason)

    # ------------------------------------------------------------------
    # Rules
    # ------------------------------------------------------------------

    def in_quiet_hours(self, now: datetime) -> bool:
        start, end = self.config.QUIET_HOURS_START, self.config.QUIET_HOURS_END
        if start == end:
            return False
        if start > end:
            return now.hour >= start or now.hour < end
        return start <= now.hour < end

    def actions_today(self, user_id: str, now: datetime) -> int:
        day_start = now.replace(hour=0, minute=0, second=0, microsecond=0)
        return (
            self.db.query(func.count(Experience.id))
            .filter(
                Experience.user_id == user_id,
                Experience.created_at >= day_start,
                Experience.created_at <= now,
            )
            .scalar()
            or 0
        )

    def overloaded(self, user_id: str, now: datetime) -> bool:
        today = now.date()
        overdue = sum(
            1 for t in self.telemetry.tasks(user_id)
            if t.status in _OPEN_TASK_STATUSES and t.due_date is not None and t.due_date < today
        )
        if overdue <= self.config.OVERLOAD_OVERDUE_TASKS:
            return False
        profile = self.profiles.load(user_id)
        if not profile:
            return False
        risk = profile.get("predictions", {}).get("dropout_risk_72h", 0)
        return risk > self.config.OVERLOAD_DROPOUT_RISK

    def fatigued(self, user_id: str, now: datetime) -> bool:
        since = now - timedelta(days=self.config.FATIGUE_WINDOW_DAYS)
        signals = [
            s for (s,) in self.db.query(FeedbackSignal.signal)
            .filter(
                FeedbackSignal.user_id == user_id,
                FeedbackSignal.signal.in_(_REVIEWED),
                FeedbackSignal.created_at >= since,
                FeedbackSignal.created_at <= now,
            )
            .all()
        ]
        if len(signals) <= self.config.FATIGUE_MIN_FEEDBACK:
            return False
        accepted = sum(1 for s in signals if s == FeedbackSignalType.accepted.value)
        return accepted / len(signals) < self.config.FATIGUE_HELPFUL_RATE

    def nudge_streak(self, user_id: str) -> int:
        limit = self.config.MAX_CONSECUTIVE_NUDGES
        recent = (
            self.db.query(Experience.action_type)
            .filter(Experience.user_id == user_id)
            .order_by(Experience.created_at.desc(), Experience.id.desc())
            .limit(limit)
            .all()
        )
        streak = 0
        for (action,) in recent:
            if action != SageAction.nudge.value:
                break
            streak += 1
        return streak

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def check_context(self, user_id: str, now: datetime) -> SafetyVerdict:
        if self.in_quiet_hours(now):
            return self._blocked(user_id, "quiet_hours")
        if self.actions_today(user_id, now) >= self.config.MAX_ACTIONS_PER_DAY:
            return self._blocked(user_id, "daily_limit")
        if self.overloaded(user_id, now):
            return self._blocked(user_id, "overload_protection")
        if self.fatigued(user_id, now):
            return self._blocked(user_id, "intervention_fatigue")
        return ALLOWED

    def check_action(self, user_id: str, action: str) -> SafetyVerdict:
        if action != SageAction.nudge.value:
            return ALLOWED
        if self.nudge_streak(user_id) >= self.config.MAX_CONSECUTIVE_NUDGES:
            return self._blocked(user_id, "consecutive_nudges")
        return ALLOWED
