"""
Decision request / response schemas.

POST /sage/decide → DecisionResponse
"""
from typing import Optional
from pydantic import BaseModel, Field, FiniteFloat


class DecisionRequest(BaseModel):
    user_id: str = Field(min_length=1, max_length=64)
    context_vector: Optional[list[FiniteFloat]] = Field(
        default=None,
        min_length=1,
        description="Optional explicit context. Omit to derive it from the user's telemetry.",
    )
    propose: bool = Field(
        default=True,
        description="Create a reviewable proposal when the chosen action has an effect.",
    )


class DecisionResponse(BaseModel):
    outcome: str = Field(description='"decided" | "consent_denied" | "safety_blocked"')
    user_id: str
    action: str
    score: float
    confidence: float
    reasoning: str
    explored: bool
    run_id: Optional[str] = None
    experience_id: Optional[int] = None
    proposal_id: Optional[int] = None
    metrics: dict[str, float] = Field(default_factory=dict)
    context_vector: list[float] = Field(default_factory=list)
