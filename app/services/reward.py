"""
Reward shaping — turns explicit feedback plus before/after metric snapshots
into the scalar used to update policy weights.

Formula
-------
  m = data_quality * Σ w_k · clamp(±Δmetric_k, -1, 1) / Σ w_k      ∈ [-1, 1]

  monitored metric        weight   direction
  momentum_index           1.5     up is good
  task_overdue_ratio       1.8     down is good
  habits_rate_7d           1.2     up is good
  friction_index           1.0     down is good

  accepted          →  1.25 + 0.75·m   ∈ [ 0.5,  2.0]
  rejected          → -1.25 + 0.75·m   ∈ [-2.0, -0.5]
  ignored / none    →  m               ∈ [-1.0,  1.0]

Explicit feedback dominates: the best possible rejected reward (-0.5) is
below the worst possible accepted reward (0.5), so a coincidental metric
improvement can never teach the policy to prefer an action the user turned
down. If both flags are set, rejection wins.

Total function: missing, non-numeric and non-finite metric values count as 0.
data_quality comes from metrics_after, clamped to [0.25, 1]; 1 when absent.
"""
from __future__ import annotations

import math
from typing import Any, Mapping, Optional

# (metric, weight, +1 if higher is better else -1)
MONITORED_METRICS: tuple[tuple[str, float, int], ...] = (
    ("momentum_index", 1.5, 1),
    ("task_overdue_ratio", 1.8, -1),
    ("habits_rate_7d", 1.2, 1),
    ("friction_index", 1.0, -1),
)

ACCEPTED_BASE = 1.25
REJECTED_BASE = -1.25
FEEDBACK_METRIC_SCALE = 0.75

_MIN_QUALITY = 0.25


def _clamp(x: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, x))


def _num(metrics: Optional[Mapping[str, Any]], key: str, default: float = 0.0) -> float:
    if not metrics:
        return default
    value = metrics.get(key)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return default
    value = float(value)
    return value if math.isfinite(value) else default


def metric_component(
    metrics_before: Optional[Mapping[str, Any]],
    metrics_after: Optional[Mapping[str, Any]],
) -> float:
    """Signed, normalized metric delta in [-1, 1]."""
    total_weight = sum(w for _, w, _ in MONITORED_METRICS)
    acc = 0.0
    for key, weight, direction in MONITORED_METRICS:
        delta = _num(metrics_after, key) - _num(metrics_before, key)
        acc += weight * _clamp(direction * delta, -1.0, 1.0)
    quality = _clamp(_num(metrics_after, "data_quality", 1.0), _MIN_QUALITY, 1.0)
    return _clamp(quality * acc / total_weight, -1.0, 1.0)


def compute_reward(
    accepted: bool,
    rejected: bool,
    ignored: bool,
    metrics_before: Optional[Mapping[str, Any]],
    metrics_after: Optional[Mapping[str, Any]],
) -> float:
    m = metric_component(metrics_before, metrics_after)
    if rejected:
        return REJECTED_BASE + FEEDBACK_METRIC_SCALE * m
    if accepted:
        return ACCEPTED_BASE + FEEDBACK_METRIC_SCALE * m
    # ignored or no feedback: the measured impact is all there is
    return m


def reward_for_feedback(
    feedback_type: str,
    metrics_before: Optional[Mapping[str, Any]],
    metrics_after: Optional[Mapping[str, Any]],
) -> float:
    return compute_reward(
        accepted=feedback_type == "accepted",
        rejected=feedback_type == "rejected",
        ignored=feedback_type == "ignored",
        metrics_before=metrics_before,
        metrics_after=metrics_after,
    )
