"""
Policy updater — one bounded contextual-bandit step.

    step = learning_rate · reward · context
    step is rescaled so that ‖step‖₂ ≤ max_step_norm
    new  = clamp(old + step, -weight_bound, weight_bound)   (element-wise)

Pure and deterministic: the nightly job may redo an update after a crash
and must land on the same vector. Vectors of different length are a hard
error, never padded or truncated.
"""
from __future__ import annotations

import math
from typing import Sequence

from app.core.config import settings
from app.core.errors import DimensionMismatchError


def _check_finite(name: str, values: Sequence[float]) -> None:
    if not all(math.isfinite(v) for v in values):
        raise ValueError(f"{name} contains non-finite values")


def update(
    old_vector: Sequence[float],
    context_vector: Sequence[float],
    reward: float,
    learning_rate: float | None = None,
    max_step_norm: float | None = None,
    weight_bound: float | None = None,
) -> list[float]:
    lr = settings.LEARNING_RATE if learning_rate is None else learning_rate
    max_norm = settings.MAX_STEP_NORM if max_step_norm is None else max_step_norm
    bound = settings.WEIGHT_BOUND if weight_bound is None else weight_bound

    if len(old_vector) != len(context_vector):
        raise DimensionMismatchError(expected=len(old_vector), received=len(context_vector))
    if not math.isfinite(reward):
        raise ValueError("reward must be finite")
    _check_finite("old_vector", old_vector)
    _check_finite("context_vector", context_vector)

    gain = lr * reward
    context = [float(c) for c in context_vector]
    # Norms are taken on the context scaled into [-1, 1] so that huge
    # components cannot overflow to inf before the step is clipped.
    peak = max((abs(c) for c in context), default=0.0)
    if peak == 0.0 or gain == 0.0:
        step = [0.0] * len(context)
    else:
        unit = [c / peak for c in context]
        unit_norm = math.hypot(*unit)
        step_norm = abs(gain) * peak * unit_norm
        if step_norm > max_norm > 0:
            scale = math.copysign(max_norm, gain) / unit_norm
            step = [u * scale for u in unit]
        else:
            step = [gain * c for c in context]

    return [
        max(-bound, min(bound, float(w) + s))
        for w, s in zip(old_vector, step)
    ]
