"""
Learning job and ledger stats schemas.
"""
from datetime import datetime
from typing import Optional
from pydantic import BaseModel, ConfigDict, Field


class LearningRunRequest(BaseModel):
    batch_limit: Optional[int] = Field(default=None, ge=1, le=10_000)
    time_budget_seconds: Optional[float] = Field(default=None, gt=0)


class JobSummaryResponse(BaseModel):
    run_id: str
    success: bool
    processed: int
    skipped: int
    deferred: int = 0
    stale: int
    errors: int
    avg_reward: float
    duration_ms: int
    timed_out: bool
    error: Optional[str] = None


class LearningJobRunResponse(JobSummaryResponse):
    model_config = ConfigDict(from_attributes=True)

    trigger: str
    started_at: datetime


class LearningJobRunListResponse(BaseModel):
    total: int
    items: list[LearningJobRunResponse]


class LedgerStatsResponse(BaseModel):
    user_id: str
    total_experiences: int
    processed_experiences: int
    average_reward: float
    action_distribution: dict[str, int]
    recent_trend: float
    replay_value: float = 0.0
    replay_regret: float = 0.0
