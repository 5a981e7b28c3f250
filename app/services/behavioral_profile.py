"""
Behavioral Profile Engine ("behavioral DNA").

generate(user_id, now) -> BehavioralProfile | None

None is the normal answer when the user has not granted ai_profiling;
any cached profile is dropped in that case. Otherwise the profile is
derived from telemetry over the last TELEMETRY_WINDOW_DAYS, the user's
finalized experiences, feedback signals and policy weights, and cached
in `behavioral_profiles`. Pure function of those inputs and `now`.

Flush only; the caller commits.
"""
from __future__ import annotations

import logging
from collections import Counter, defaultdict
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.orm import Session

from app.core.clock import utcnow
from app.core.config import settings
from app.models.behavioral_profile import BehavioralProfileSnapshot
from app.models.experience import ACTIONS
from app.models.feedback import FeedbackSignal, FeedbackSignalType
from app.services.consent import ConsentOracle, sql_consent_oracle
from app.services.experience_ledger import ExperienceLedger
from app.services.metrics import compute_metrics
from app.services.policy_store import PolicyStore
from app.services.telemetry import HabitRecord, JournalRecord, SqlTelemetrySource, TelemetrySource

logger = logging.getLogger(__name__)

DEFAULT_PEAK_HOURS = [9, 14, 20]
DEFAULT_LOW_HOURS = [3, 4, 5]


@dataclass
class Chronotype:
    peak_hours: list[int]
    low_hours: list[int]
    weekend_pattern: str                 # similar | different | inverted


@dataclass
class DisciplineProfile:
    streak_sensitivity: float
    recovery_speed_days: float
    motivation_triggers: list[str]
    demotivation_triggers: list[str]
    optimal_load_capacity: int
    responsive_actions: list[str]


@dataclass
class Signal:
    type: str
    weight: float
    detected: bool


@dataclass
class DropoutSignals:
    early_warnings: list[Signal] = field(default_factory=list)
    immediate_triggers: list[Signal] = field(default_factory=list)
    recovery_indicators: list[Signal] = field(default_factory=list)


@dataclass
class Predictions:
    dropout_risk_72h: int                # percent
    streak_probability_30d: int          # percent
    score_in_30_days: int
    score_in_90_days: int


@dataclass
class BehavioralProfile:
    user_id: str
    generated_at: datetime
    chronotype: Chronotype
    discipline: DisciplineProfile
    dropout_signals: DropoutSignals
    predictions: Predictions

    def to_dict(self) -> dict:
        data = asdict(self)
        data["generated_at"] = self.generated_at.isoformat()
        return data


# ---------------------------------------------------------------------------
# Analysis helpers (pure)
# ---------------------------------------------------------------------------

def _analyze_chronotype(activity: list[datetime]) -> Chronotype:
    hour_counts = Counter(ts.hour for ts in activity)
    by_count = sorted(hour_counts.items(), key=lambda kv: (-kv[1], kv[0]))
    peak = [h for h, _ in by_count[:3]]
    low = sorted(h for h, _ in sorted(hour_counts.items(), key=lambda kv: (kv[1], kv[0]))[:3])

    weekend = sum(1 for ts in activity if ts.weekday() >= 5)
    weekday = len(activity) - weekend
    weekday_avg = weekday / 5
    weekend_avg = weekend / 2
    ratio = weekend_avg / weekday_avg if weekday_avg > 0 else 1.0
    if 0.8 <= ratio <= 1.2:
        pattern = "similar"
    elif ratio > 1.2:
        pattern = "inverted"
    else:
        pattern = "different"

    return Chronotype(
        peak_hours=peak or list(DEFAULT_PEAK_HOURS),
        low_hours=low or list(DEFAULT_LOW_HOURS),
        weekend_pattern=pattern,
    )


def _by_habit(logs: list[HabitRecord]) -> dict[str, list[HabitRecord]]:
    grouped: dict[str, list[HabitRecord]] = defaultdict(list)
    for log in sorted(logs, key=lambda l: (l.habit_id, l.day)):
        grouped[log.habit_id].append(log)
    return grouped


def _streak_breaks(logs: list[HabitRecord]) -> list[HabitRecord]:
    """Logs where a completed day was followed by a missed one (same habit)."""
    breaks = []
    for series in _by_habit(logs).values():
        for prev, cur in zip(series, series[1:]):
            if prev.completed and not cur.completed:
                breaks.append(cur)
    return breaks


def _recovery_days(logs: list[HabitRecord]) -> float:
    gaps = []
    for series in _by_habit(logs).values():
        for i in range(1, len(series)):
            if series[i - 1].completed and not series[i].completed:
                nxt = next((l for l in series[i + 1:] if l.completed), None)
                if nxt is not None:
                    gaps.append((nxt.day - series[i].day).days)
    if gaps:
        return round(sum(gaps) / len(gaps), 2)
    return 2.0 if logs else 3.0


def _rate(part: int, whole: int) -> float:
    return part / whole if whole else 0.0


def _responsive_actions(rewards_by_action: dict[str, list[float]], weights: dict[str, list[float]]) -> list[str]:
    ranked = []
    for action in ACTIONS:
        rewards = rewards_by_action.get(action)
        if rewards:
            score = sum(rewards) / len(rewards)
        else:
            score = sum(weights.get(action, []))
        if score > 0:
            ranked.append((score, action))
    ranked.sort(key=lambda item: (-item[0], ACTIONS.index(item[1])))
    return [action for _, action in ranked[:3]]


def _mood_declining(journals: list[JournalRecord]) -> bool:
    moods = [j.mood for j in sorted(journals, key=lambda j: j.day, reverse=True) if j.mood is not None]
    if len(moods) < 3:
        return False
    return sum(moods[:3]) / 3 < 2.5


def _predict(discipline: DisciplineProfile, signals: DropoutSignals, momentum: float) -> Predictions:
    active = [s for s in signals.early_warnings + signals.immediate_triggers if s.detected]
    risk = min(1.0, sum(s.weight for s in active))
    streak = max(0.0, 1 - risk - (1 - discipline.streak_sensitivity) * 0.2)
    score_30 = round((momentum + streak) / 2 * 100)
    score_90 = min(100, round(score_30 * (1 + (1 - risk) * 0.2)))
    return Predictions(
        dropout_risk_72h=round(risk * 100),
        streak_probability_30d=round(streak * 100),
        score_in_30_days=score_30,
        score_in_90_days=score_90,
    )


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------

class BehavioralProfileEngine:
    def __init__(
        self,
        db: Session,
        consent: Optional[ConsentOracle] = None,
        telemetry: Optional[TelemetrySource] = None,
        window_days: Optional[int] = None,
    ):
        self.db = db
        self.consent = consent or sql_consent_oracle(db)
        self.telemetry = telemetry or SqlTelemetrySource(db)
        self.window_days = settings.TELEMETRY_WINDOW_DAYS if window_days is None else window_days

    def _cached(self, user_id: str) -> Optional[BehavioralProfileSnapshot]:
        return (
            self.db.query(BehavioralProfileSnapshot)
            .filter(BehavioralProfileSnapshot.user_id == user_id)
            .first()
        )

    def load(self, user_id: str) -> Optional[dict]:
        """Last cached profile, only while ai_profiling is granted."""
        if not self.consent.snapshot(user_id).ai_profiling:
            return None
        cached = self._cached(user_id)
        return cached.profile if cached is not None else None

    def generate(self, user_id: str, now: Optional[datetime] = None) -> Optional[BehavioralProfile]:
        if not self.consent.snapshot(user_id).ai_profiling:
            cached = self._cached(user_id)
            if cached is not None:
                self.db.delete(cached)
                self.db.flush()
                logger.info("Dropped cached behavioral profile for user %s (no ai_profiling consent)", user_id)
            return None

        now = now or utcnow()
        today = now.date()
        start = today - timedelta(days=self.window_days)

        habits = self.telemetry.habit_logs(user_id, start, today)
        tasks = self.telemetry.tasks(user_id)
        journals = self.telemetry.journal_entries(user_id, start, today)
        window_start = now - timedelta(days=self.window_days)

        activity = [h.logged_at for h in habits]
        activity += [j.created_at for j in journals]
        for t in tasks:
            activity += [ts for ts in (t.created_at, t.completed_at) if ts is not None]
        activity = sorted(ts for ts in activity if window_start <= ts <= now)

        signals_q = (
            self.db.query(FeedbackSignal.signal)
            .filter(FeedbackSignal.user_id == user_id, FeedbackSignal.created_at >= window_start)
            .all()
        )
        signal_counts = Counter(s for (s,) in signals_q)
        reviewed = sum(signal_counts[s.value] for s in (
            FeedbackSignalType.accepted, FeedbackSignalType.rejected, FeedbackSignalType.ignored,
        ))
        helpful_rate = _rate(signal_counts[FeedbackSignalType.accepted.value], reviewed)

        rewards_by_action: dict[str, list[float]] = defaultdict(list)
        for exp in ExperienceLedger(self.db, self.consent).finalized(user_id, limit=1000):
            rewards_by_action[exp.action_type].append(exp.reward)
        # Stored vectors come back as-is; unseen actions get an empty vector.
        weights = PolicyStore(self.db).all_weights(user_id, 0)

        # --- discipline ---
        completed = sum(1 for h in habits if h.completed)
        completion_rate = _rate(completed, len(habits))
        motivation = (["streaks"] if completion_rate > 0.7 else []) + ["progress_visibility", "small_wins"]
        demotivation = (["overwhelm"] if len(habits) - completed > len(habits) * 0.3 else []) + ["lack_of_progress"]
        done_recently = sum(
            1 for t in tasks
            if t.status == "done" and t.completed_at is not None and t.completed_at >= window_start
        )
        optimal_load = max(3, min(10, round(done_recently / max(self.window_days, 1) * 1.2)))

        discipline = DisciplineProfile(
            streak_sensitivity=round((completion_rate + helpful_rate) / 2, 4),
            recovery_speed_days=_recovery_days(habits),
            motivation_triggers=motivation,
            demotivation_triggers=demotivation,
            optimal_load_capacity=optimal_load,
            responsive_actions=_responsive_actions(rewards_by_action, weights),
        )

        # --- dropout signals ---
        last_3d = sum(1 for ts in activity if ts > now - timedelta(days=3))
        prev_3d = sum(1 for ts in activity if now - timedelta(days=6) < ts <= now - timedelta(days=3))
        recent_logs = sorted(habits, key=lambda h: (h.day, h.habit_id), reverse=True)[:7]
        recent_break = any(b.day >= today - timedelta(days=2) for b in _streak_breaks(habits))
        morning_habit = any(
            h.completed and h.logged_at >= now - timedelta(hours=24) and h.logged_at.hour < 10
            for h in habits
        )
        signals = DropoutSignals(
            early_warnings=[
                Signal("activity_decline", 0.3, len(activity) >= 6 and last_3d < prev_3d * 0.7),
                Signal("mood_decline", 0.25, _mood_declining(journals)),
                Signal("habit_skip_pattern", 0.2, sum(1 for h in recent_logs if not h.completed) >= 3),
            ],
            immediate_triggers=[
                Signal("streak_broken", 0.4, recent_break),
                Signal("no_activity_24h", 0.35, not activity or now - activity[-1] > timedelta(hours=24)),
            ],
            recovery_indicators=[
                Signal("morning_habit", 0.3, morning_habit),
                Signal("journal_entry", 0.25, any(j.day >= today - timedelta(days=2) for j in journals)),
            ],
        )

        momentum = compute_metrics(self.telemetry, user_id, now)["momentum_index"]

        profile = BehavioralProfile(
            user_id=user_id,
            generated_at=now,
            chronotype=_analyze_chronotype(activity),
            discipline=discipline,
            dropout_signals=signals,
            predictions=_predict(discipline, signals, momentum),
        )

        cached = self._cached(user_id)
        if cached is None:
            cached = BehavioralProfileSnapshot(user_id=user_id, version=0)
            self.db.add(cached)
        # The cache row counts regenerations; the profile itself stays a
        # pure function of its inputs.
        cached.version += 1
        cached.profile = profile.to_dict()
        cached.generated_at = now
        self.db.flush()
        return profile
