"""
Tests for the safety gate and its effect on the decision path.

Covered:
  - quiet hours (wrapping midnight, disabled, same-day window)
  - daily action limit counts today's experiences only
  - overload protection needs both overdue tasks and a high dropout risk
  - intervention fatigue over the recent review window
  - consecutive nudges
  - a blocked decision is silent and writes nothing
"""
from datetime import timedelta

import pytest

from app.core.config import settings
from app.models.behavioral_profile import BehavioralProfileSnapshot
from app.models.experience import Experience
from app.models.feedback import FeedbackSignal
from app.models.proposal import Proposal
from app.models.task import Task
from app.services.behavioral_profile import BehavioralProfileEngine
from app.services.consent import sql_consent_oracle
from app.services.decision import decide
from app.services.experience_ledger import ExperienceLedger
from app.services.safety import SafetyGate
from app.services.telemetry import SqlTelemetrySource

USER = "u-safe"


def _gate(db, **overrides):
    config = settings.model_copy(update=overrides) if overrides else settings
    return SafetyGate(db, SqlTelemetrySource(db), BehavioralProfileEngine(db), config=config)


def _record(db, now, action="celebrate", hours_ago=1):
    result = ExperienceLedger(db, sql_consent_oracle(db)).record(
        USER, [0.2, 0.5], action, {}, now=now - timedelta(hours=hours_ago),
    )
    db.commit()
    assert result.recorded


def _overdue_tasks(db, now, count):
    for i in range(count):
        db.add(Task(user_id=USER, title=f"late {i}", due_date=now.date() - timedelta(days=2)))
    db.commit()


def _cached_risk(db, now, risk):
    db.add(BehavioralProfileSnapshot(
        user_id=USER, version=1, generated_at=now,
        profile={"predictions": {"dropout_risk_72h": risk}},
    ))
    db.commit()


def _reviews(db, now, accepted, rejected, days_ago=1):
    at = now - timedelta(days=days_ago)
    for signal, count in (("accepted", accepted), ("rejected", rejected)):
        for i in range(count):
            db.add(FeedbackSignal(user_id=USER, run_id=f"{signal}-{i}", signal=signal, created_at=at))
    db.commit()


class TestQuietHours:
    @pytest.mark.parametrize("hour", [22, 23, 0, 3, 6])
    def test_night_is_quiet(self, db, now, hour):
        assert _gate(db).in_quiet_hours(now.replace(hour=hour)) is True

    @pytest.mark.parametrize("hour", [7, 9, 12, 21])
    def test_day_is_open(self, db, now, hour):
        assert _gate(db).in_quiet_hours(now.replace(hour=hour)) is False

    def test_equal_bounds_disable_quiet_hours(self, db, now):
        gate = _gate(db, QUIET_HOURS_START=0, QUIET_HOURS_END=0)
        assert gate.in_quiet_hours(now.replace(hour=0)) is False

    def test_window_inside_one_day(self, db, now):
        gate = _gate(db, QUIET_HOURS_START=12, QUIET_HOURS_END=14)
        assert gate.in_quiet_hours(now.replace(hour=13)) is True
        assert gate.in_quiet_hours(now.replace(hour=14)) is False
        assert gate.in_quiet_hours(now.replace(hour=23)) is False

    def test_check_context_reason(self, db, now):
        verdict = _gate(db).check_context(USER, now.replace(hour=23))
        assert verdict.allowed is False
        assert verdict.reason == "quiet_hours"


class TestDailyLimit:
    def test_limit_reached(self, db, consent, now):
        consent.grant(USER)
        for h in range(1, 6):
            _record(db, now, hours_ago=h)

        verdict = _gate(db).check_context(USER, now)
        assert verdict.allowed is False
        assert verdict.reason == "daily_limit"

    def test_yesterday_does_not_count(self, db, consent, now):
        consent.grant(USER)
        for h in range(10, 15):
            _record(db, now, hours_ago=h)

        assert _gate(db).actions_today(USER, now) == 0
        assert _gate(db).check_context(USER, now).allowed is True


class TestOverload:
    def test_overdue_and_high_risk(self, db, consent, now):
        consent.grant(USER)
        _overdue_tasks(db, now, 6)
        _cached_risk(db, now, 80)

        verdict = _gate(db).check_context(USER, now)
        assert verdict.allowed is False
        assert verdict.reason == "overload_protection"

    def test_risk_at_threshold_is_allowed(self, db, consent, now):
        consent.grant(USER)
        _overdue_tasks(db, now, 6)
        _cached_risk(db, now, 70)
        assert _gate(db).check_context(USER, now).allowed is True

    def test_few_overdue_tasks_are_allowed(self, db, consent, now):
        consent.grant(USER)
        _overdue_tasks(db, now, 5)
        _cached_risk(db, now, 95)
        assert _gate(db).check_context(USER, now).allowed is True

    def test_no_profile_without_ai_profiling(self, db, consent, now):
        consent.grant(USER, "policy_learning")
        _overdue_tasks(db, now, 8)
        _cached_risk(db, now, 95)
        assert _gate(db).overloaded(USER, now) is False


class TestFatigue:
    def test_low_acceptance_blocks(self, db, now):
        _reviews(db, now, accepted=3, rejected=8)

        verdict = _gate(db).check_context(USER, now)
        assert verdict.allowed is False
        assert verdict.reason == "intervention_fatigue"

    def test_needs_more_than_min_feedback(self, db, now):
        _reviews(db, now, accepted=0, rejected=10)
        assert _gate(db).fatigued(USER, now) is False

    def test_helpful_rate_at_threshold_is_allowed(self, db, now):
        # 6 / 20 = 0.3
        _reviews(db, now, accepted=6, rejected=14)
        assert _gate(db).fatigued(USER, now) is False

    def test_old_reviews_ignored(self, db, now):
        _reviews(db, now, accepted=0, rejected=20, days_ago=8)
        assert _gate(db).fatigued(USER, now) is False


class TestConsecutiveNudges:
    def test_fourth_nudge_blocked(self, db, consent, now):
        consent.grant(USER)
        for h in (3, 2, 1):
            _record(db, now, action="nudge", hours_ago=h)

        gate = _gate(db)
        verdict = gate.check_action(USER, "nudge")
        assert verdict.allowed is False
        assert verdict.reason == "consecutive_nudges"
        assert gate.check_action(USER, "celebrate").allowed is True

    def test_streak_broken_by_other_action(self, db, consent, now):
        consent.grant(USER)
        _record(db, now, action="nudge", hours_ago=4)
        _record(db, now, action="nudge", hours_ago=3)
        _record(db, now, action="celebrate", hours_ago=2)
        _record(db, now, action="nudge", hours_ago=1)

        gate = _gate(db)
        assert gate.nudge_streak(USER) == 1
        assert gate.check_action(USER, "nudge").allowed is True


class TestDecisionPath:
    def test_quiet_hours_decision_is_silent(self, db, consent, now):
        consent.grant(USER)

        outcome = decide(db, USER, context_vector=[0.2, 0.5], now=now.replace(hour=23), epsilon=0.0)

        assert outcome.outcome == "safety_blocked"
        assert outcome.action == "silent"
        assert outcome.reasoning == "quiet_hours"
        assert outcome.run_id is None
        assert db.query(Experience).count() == 0

    def test_nudge_streak_blocks_after_choice(self, db, consent, now):
        consent.grant(USER)
        for h in (3, 2, 1):
            _record(db, now, action="nudge", hours_ago=h)

        # zero weights tie, and ties go to nudge
        outcome = decide(db, USER, context_vector=[0.2, 0.5], now=now, epsilon=0.0)

        assert outcome.outcome == "safety_blocked"
        assert outcome.reasoning == "consecutive_nudges"
        assert db.query(Experience).count() == 3
        assert db.query(Proposal).count() == 0
