"""
Canonical behavioral metrics and the context vector derived from them.

Public API
----------
compute_metrics(telemetry, user_id, now)  -> dict[str, float]
metrics_to_vector(metrics)                -> list[float]   (FEATURE_NAMES order)

All values are in [0, 1]. Pure arithmetic over telemetry records; the
same telemetry and `now` always give the same numbers, which the nightly
job relies on when an experience has to be reprocessed.
"""
from __future__ import annotations

from datetime import datetime, timedelta

from app.services.telemetry import TelemetrySource

FEATURE_NAMES: tuple[str, ...] = (
    "habits_rate_7d",
    "task_overdue_ratio",
    "task_completion_rate",
    "momentum_index",
    "friction_index",
    "burnout_risk",
    "mood_index",
    "hour_of_day",
    "is_weekend",
    "data_quality",
)

_OPEN_STATUSES = ("pending", "in_progress")
_OVERLOAD_OPEN_TASKS = 15
_STALLED_AFTER = timedelta(days=3)
_NEUTRAL_MOOD = 0.5


def _ratio(part: int, whole: int) -> float:
    return part / whole if whole > 0 else 0.0


def compute_metrics(telemetry: TelemetrySource, user_id: str, now: datetime) -> dict[str, float]:
    today = now.date()
    week_start = today - timedelta(days=6)

    habits = telemetry.habit_logs(user_id, week_start, today)
    tasks = [t for t in telemetry.tasks(user_id) if t.status != "cancelled"]
    journals = telemetry.journal_entries(user_id, week_start, today)

    habits_rate = _ratio(sum(1 for h in habits if h.completed), len(habits))

    open_tasks = [t for t in tasks if t.status in _OPEN_STATUSES]
    done = sum(1 for t in tasks if t.status == "done")
    overdue = [t for t in open_tasks if t.due_date is not None and t.due_date < today]
    stalled = [
        t for t in open_tasks
        if t.status == "in_progress" and now - t.updated_at > _STALLED_AFTER
    ]

    overdue_ratio = _ratio(len(overdue), len(tasks))
    completion_rate = _ratio(done, len(tasks))
    momentum = (habits_rate + completion_rate) / 2
    friction = min(1.0, _ratio(len(overdue) + len(stalled), len(open_tasks)))
    burnout = min(1.0, len(open_tasks) / _OVERLOAD_OPEN_TASKS) * (1 - 0.5 * habits_rate)

    moods = [j.mood for j in journals if j.mood is not None]
    mood_index = (sum(moods) / len(moods) - 1) / 4 if moods else _NEUTRAL_MOOD
    mood_index = max(0.0, min(1.0, mood_index))

    sources_with_data = sum(1 for rows in (habits, tasks, journals) if rows)

    metrics = {
        "habits_rate_7d": habits_rate,
        "task_overdue_ratio": overdue_ratio,
        "task_completion_rate": completion_rate,
        "momentum_index": momentum,
        "friction_index": friction,
        "burnout_risk": burnout,
        "mood_index": mood_index,
        "hour_of_day": now.hour / 23,
        "is_weekend": 1.0 if now.weekday() >= 5 else 0.0,
        "data_quality": sources_with_data / 3,
    }
    return {k: round(v, 6) for k, v in metrics.items()}


def metrics_to_vector(metrics: dict[str, float]) -> list[float]:
    return [float(metrics.get(name, 0.0)) for name in FEATURE_NAMES]
