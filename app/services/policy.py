"""
Action selection over policy weights (epsilon-greedy contextual bandit),
plus offline replay helpers.

Pure functions over plain lists/dicts; persistence lives in PolicyStore.
"""
from __future__ import annotations

import math
import random
from dataclasses import dataclass
from typing import Iterable, Mapping, Optional, Sequence

from app.core.errors import DimensionMismatchError
from app.models.experience import ACTIONS
from app.services.metrics import FEATURE_NAMES


@dataclass
class ActionDecision:
    action: str
    score: float
    confidence: float
    reasoning: str
    explored: bool = False


def dot(context: Sequence[float], weights: Sequence[float]) -> float:
    if len(context) != len(weights):
        raise DimensionMismatchError(expected=len(weights), received=len(context))
    return sum(float(c) * float(w) for c, w in zip(context, weights))


def softmax_confidence(scores: Mapping[str, float], action: str) -> float:
    top = max(scores.values())
    exps = {a: math.exp(s - top) for a, s in scores.items()}
    return exps[action] / sum(exps.values())


def explain(context: Sequence[float], weights: Sequence[float], top_n: int = 3) -> str:
    """Top contributing features as 'name: +0.12, ...'."""
    contributions = [
        (FEATURE_NAMES[i] if i < len(FEATURE_NAMES) else f"feature_{i}", c * w)
        for i, (c, w) in enumerate(zip(context, weights))
    ]
    contributions = [c for c in contributions if c[1] != 0]
    if not contributions:
        return "no learned preference yet"
    contributions.sort(key=lambda item: abs(item[1]), reverse=True)
    return ", ".join(
        f"{name}: {'+' if value > 0 else ''}{value:.2f}"
        for name, value in contributions[:top_n]
    )


def choose_action(
    context: Sequence[float],
    weights: Mapping[str, Sequence[float]],
    epsilon: float = 0.0,
    rng: Optional[random.Random] = None,
) -> ActionDecision:
    """
    Exploit the best-scoring action; with probability `epsilon` explore a
    uniformly random one instead. Ties go to the earlier action in ACTIONS.
    """
    rng = rng or random.Random()
    scores = {a: dot(context, weights[a]) for a in ACTIONS}

    if epsilon > 0 and rng.random() < epsilon:
        action = rng.choice(ACTIONS)
        return ActionDecision(
            action=action,
            score=scores[action],
            confidence=softmax_confidence(scores, action),
            reasoning="exploration",
            explored=True,
        )

    best = ACTIONS[0]
    for action in ACTIONS[1:]:
        if scores[action] > scores[best]:
            best = action
    return ActionDecision(
        action=best,
        score=scores[best],
        confidence=softmax_confidence(scores, best),
        reasoning=explain(context, weights[best]),
    )


# ---------------------------------------------------------------------------
# Offline replay
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ReplayItem:
    context_vector: Sequence[float]
    action: str
    reward: float


def _greedy(context: Sequence[float], weights: Mapping[str, Sequence[float]]) -> tuple[str, float]:
    best, best_score = "", -math.inf
    for action, w in weights.items():
        score = dot(context, w)
        if score > best_score:
            best, best_score = action, score
    return best, best_score


def evaluate_policy(
    items: Iterable[ReplayItem],
    weights: Mapping[str, Sequence[float]],
) -> float:
    """
    Mean reward over the logged decisions the given weights would have
    taken themselves (replay estimator). 0 when there is no overlap.
    """
    total, count = 0.0, 0
    for item in items:
        if item.action == _greedy(item.context_vector, weights)[0]:
            total += item.reward
            count += 1
    return total / count if count else 0.0


def regret(
    items: Iterable[ReplayItem],
    weights: Mapping[str, Sequence[float]],
) -> float:
    """Mean score gap between the greedy action and the action actually taken."""
    items = list(items)
    if not items:
        return 0.0
    gap = 0.0
    for item in items:
        _, best_score = _greedy(item.context_vector, weights)
        chosen = weights.get(item.action)
        chosen_score = dot(item.context_vector, chosen) if chosen is not None else 0.0
        gap += best_score - chosen_score
    return gap / len(items)
