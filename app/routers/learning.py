"""
Learning router.

POST /learning/run              — manual trigger of the nightly job (operators)
GET  /learning/runs             — job summaries for dashboards
GET  /learning/stats/{user_id}  — experience ledger stats
"""
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.core.clock import as_utc
from app.db.base import SessionLocal, get_db
from app.models.learning_job_run import LearningJobRun
from app.schemas.common import ErrorResponse
from app.schemas.learning import (
    JobSummaryResponse,
    LearningJobRunListResponse,
    LearningJobRunResponse,
    LearningRunRequest,
    LedgerStatsResponse,
)
from app.services.consent import sql_consent_oracle
from app.services.experience_ledger import ExperienceLedger
from app.services.learning_job import NightlyLearningJob

router = APIRouter(prefix="/learning", tags=["learning"])


def get_learning_job() -> NightlyLearningJob:
    return NightlyLearningJob(session_factory=SessionLocal)


@router.post(
    "/run",
    response_model=JobSummaryResponse,
    summary="Run the learning job now",
    responses={409: {"model": ErrorResponse, "description": "A run is already in progress."}},
)
def run_learning(
    payload: LearningRunRequest | None = None,
    job: NightlyLearningJob = Depends(get_learning_job),
):
    payload = payload or LearningRunRequest()
    summary = job.run(
        batch_limit=payload.batch_limit,
        time_budget=payload.time_budget_seconds,
        trigger="manual",
    )
    return JobSummaryResponse(**summary.to_dict())


@router.get(
    "/runs",
    response_model=LearningJobRunListResponse,
    summary="List learning job runs (newest first)",
)
def list_runs(
    limit: int = Query(default=20, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
):
    q = db.query(LearningJobRun)
    total = q.count()
    rows = q.order_by(LearningJobRun.id.desc()).offset(offset).limit(limit).all()
    items = []
    for r in rows:
        item = LearningJobRunResponse.model_validate(r)
        item.started_at = as_utc(r.started_at)
        items.append(item)
    return LearningJobRunListResponse(total=total, items=items)


@router.get(
    "/stats/{user_id}",
    response_model=LedgerStatsResponse,
    summary="Experience ledger stats for a user",
)
def ledger_stats(user_id: str, db: Session = Depends(get_db)):
    stats = ExperienceLedger(db, sql_consent_oracle(db)).stats(user_id)
    return LedgerStatsResponse(user_id=user_id, **stats.__dict__)
