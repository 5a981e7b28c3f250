"""
Nightly Learning Job — turns pending experiences into policy updates.

  acquire lock → expire overdue proposals → select batch → for each experience:
      consent re-check ─ off ─▶ disable_learning            (skipped)
      proposal still pending ─▶ left untouched              (deferred)
      otherwise ─▶ metrics_after → feedback → reward
                   → policy update (CAS) → finalize         (processed)
  → summarize → release lock

Rules
-----
- One run at a time: the `nightly_learning` row in job_locks. A lock older
  than JOB_LOCK_TTL_SECONDS is taken over (the previous worker died).
- Selecting the batch is the startup step. If the ledger cannot be read
  the run aborts with success=False.
- Each experience commits or rolls back on its own. The policy update
  and finalize share that transaction, so a crash between them leaves
  nothing behind and the experience is simply redone next run.
- An item error is counted and logged; it never aborts the batch. A run
  with item errors is still a success.
- The time budget is checked before each item; once spent, no new item
  is pulled (timed_out=True). The rest is picked up next run.
- Experiences older than LEARNING_MAX_AGE_HOURS are stale: counted,
  never processed.
- A reward is written once, so it must not be written while the user can
  still review the proposal made for the same run_id. Such experiences
  are deferred to a later run; overdue proposals are expired first, and
  PROPOSAL_TTL_HOURS < LEARNING_MAX_AGE_HOURS guarantees the review
  window closes before the experience goes stale.
"""
from __future__ import annotations

import logging
import time
import uuid
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.clock import utcnow
from app.core.config import Settings, settings as default_settings
from app.core.errors import JobAlreadyRunningError
from app.db.base import SessionLocal
from app.models.job_lock import JobLock
from app.models.learning_job_run import LearningJobRun
from app.models.proposal import Proposal, ProposalStatus
from app.services.consent import ConsentOracle, ConsentStore, SqlConsentStore
from app.services.experience_ledger import ExperienceLedger
from app.services.metrics import compute_metrics
from app.services.policy_store import PolicyStore
from app.services.policy_updater import update
from app.services.proposals import ProposalGovernor
from app.services.reward import reward_for_feedback
from app.services.telemetry import SqlTelemetrySource, TelemetrySource

logger = logging.getLogger(__name__)

JOB_NAME = "nightly_learning"


@dataclass
class JobSummary:
    run_id: str
    success: bool = True
    processed: int = 0
    skipped: int = 0
    deferred: int = 0
    stale: int = 0
    errors: int = 0
    avg_reward: float = 0.0
    duration_ms: int = 0
    timed_out: bool = False
    error: Optional[str] = None

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class _PendingItem:
    id: int
    user_id: str
    run_id: Optional[str]
    action_type: str
    context_vector: list
    metrics_before: dict


class NightlyLearningJob:
    def __init__(
        self,
        session_factory: Callable[[], Session] = SessionLocal,
        consent_store_factory: Callable[[Session], ConsentStore] = SqlConsentStore,
        telemetry_factory: Callable[[Session], TelemetrySource] = SqlTelemetrySource,
        config: Settings = default_settings,
        clock: Callable[[], datetime] = utcnow,
        monotonic: Callable[[], float] = time.monotonic,
    ):
        self.session_factory = session_factory
        self.consent_store_factory = consent_store_factory
        self.telemetry_factory = telemetry_factory
        self.config = config
        self.clock = clock
        self.monotonic = monotonic

    # ------------------------------------------------------------------
    # Lock
    # ------------------------------------------------------------------

    def _acquire_lock(self, db: Session, owner: str, now: datetime) -> None:
        stale_before = now - timedelta(seconds=self.config.JOB_LOCK_TTL_SECONDS)
        taken_over = (
            db.query(JobLock)
            .filter(JobLock.name == JOB_NAME, JobLock.acquired_at < stale_before)
            .delete(synchronize_session=False)
        )
        if taken_over:
            logger.warning("Taking over stale %s lock (older than %ss)", JOB_NAME, self.config.JOB_LOCK_TTL_SECONDS)
        db.add(JobLock(name=JOB_NAME, owner=owner, acquired_at=now))
        try:
            db.commit()
        except IntegrityError as exc:
            db.rollback()
            raise JobAlreadyRunningError(JOB_NAME) from exc

    def _release_lock(self, db: Session, owner: str) -> None:
        db.rollback()
        db.query(JobLock).filter(JobLock.name == JOB_NAME, JobLock.owner == owner).delete(
            synchronize_session=False
        )
        db.commit()

    # ------------------------------------------------------------------
    # Per item
    # ------------------------------------------------------------------

    def _awaiting_review(self, db: Session, run_id: Optional[str], now: datetime) -> bool:
        if run_id is None:
            return False
        return db.query(
            db.query(Proposal)
            .filter(
                Proposal.run_id == run_id,
                Proposal.status == ProposalStatus.pending,
                Proposal.expires_at > now,
            )
            .exists()
        ).scalar()

    def _process_one(self, db: Session, item: _PendingItem, now: datetime) -> tuple[str, Optional[float]]:
        """(outcome, reward); outcome is "processed", "skipped" or "deferred"."""
        oracle = ConsentOracle(self.consent_store_factory(db))
        ledger = ExperienceLedger(db, oracle)

        if not oracle.learning_enabled(item.user_id):
            ledger.disable_learning(item.id)
            logger.info("Experience %s skipped: consent revoked for user %s", item.id, item.user_id)
            return "skipped", None

        if self._awaiting_review(db, item.run_id, now):
            logger.debug("Experience %s deferred: proposal for run %s still pending", item.id, item.run_id)
            return "deferred", None

        metrics_after = compute_metrics(self.telemetry_factory(db), item.user_id, now)
        feedback = ledger.resolve_feedback(item.run_id)
        reward = reward_for_feedback(feedback, item.metrics_before, metrics_after)

        context = [float(c) for c in item.context_vector]
        PolicyStore(db, cas_retries=self.config.POLICY_CAS_RETRIES).apply_update(
            item.user_id,
            item.action_type,
            lambda old: update(
                old,
                context,
                reward,
                learning_rate=self.config.LEARNING_RATE,
                max_step_norm=self.config.MAX_STEP_NORM,
                weight_bound=self.config.WEIGHT_BOUND,
            ),
            dim=len(context),
        )
        ledger.finalize(item.id, metrics_after, reward, feedback_type=feedback, now=now)
        return "processed", reward

    # ------------------------------------------------------------------
    # Run
    # ------------------------------------------------------------------

    def _select(self, db: Session, now: datetime, limit: int) -> tuple[list[_PendingItem], int]:
        # The ledger reads here never consult consent.
        expired = ProposalGovernor(db).expire_stale(now=now)
        if expired:
            logger.info("Expired %d overdue proposals before selecting experiences", expired)
        ledger = ExperienceLedger(db, ConsentOracle(self.consent_store_factory(db)))
        min_age = timedelta(hours=self.config.LEARNING_MIN_AGE_HOURS)
        max_age = timedelta(hours=self.config.LEARNING_MAX_AGE_HOURS)
        rows = ledger.select_pending(min_age, max_age, limit, now=now)
        items = [
            _PendingItem(
                id=r.id,
                user_id=r.user_id,
                run_id=r.run_id,
                action_type=r.action_type,
                context_vector=list(r.context_vector),
                metrics_before=dict(r.metrics_before or {}),
            )
            for r in rows
        ]
        stale = ledger.count_stale(max_age, now=now)
        db.commit()
        return items, stale

    def _persist(self, db: Session, summary: JobSummary, trigger: str, started_at: datetime) -> None:
        try:
            db.add(LearningJobRun(
                run_id=summary.run_id,
                trigger=trigger,
                success=summary.success,
                processed=summary.processed,
                skipped=summary.skipped,
                deferred=summary.deferred,
                stale=summary.stale,
                errors=summary.errors,
                avg_reward=summary.avg_reward,
                duration_ms=summary.duration_ms,
                timed_out=summary.timed_out,
                error=summary.error,
                started_at=started_at,
            ))
            db.commit()
        except SQLAlchemyError:
            db.rollback()
            logger.exception("Could not persist summary of learning run %s", summary.run_id)

    def run(
        self,
        batch_limit: Optional[int] = None,
        time_budget: Optional[float] = None,
        trigger: str = "scheduled",
    ) -> JobSummary:
        limit = self.config.LEARNING_BATCH_LIMIT if batch_limit is None else batch_limit
        budget = self.config.LEARNING_TIME_BUDGET_SECONDS if time_budget is None else time_budget
        started = self.monotonic()
        now = self.clock()
        summary = JobSummary(run_id=uuid.uuid4().hex)
        logger.info("Learning run %s started (limit=%d, budget=%.0fs)", summary.run_id, limit, budget)

        db = self.session_factory()
        try:
            try:
                self._acquire_lock(db, summary.run_id, now)
            except SQLAlchemyError as exc:
                db.rollback()
                logger.exception("Learning run %s aborted: job lock unavailable", summary.run_id)
                summary.success = False
                summary.error = f"lock: {exc.__class__.__name__}"
                summary.duration_ms = int((self.monotonic() - started) * 1000)
                return summary

            try:
                self._run_batch(db, summary, now, limit, budget, started)
            finally:
                self._release_lock(db, summary.run_id)

            summary.duration_ms = int((self.monotonic() - started) * 1000)
            self._persist(db, summary, trigger, now)
        finally:
            db.close()

        log = logger.info if summary.success else logger.error
        log(
            "Learning run %s finished: processed=%d skipped=%d deferred=%d stale=%d errors=%d "
            "avg_reward=%.4f duration_ms=%d timed_out=%s",
            summary.run_id, summary.processed, summary.skipped, summary.deferred, summary.stale,
            summary.errors, summary.avg_reward, summary.duration_ms, summary.timed_out,
        )
        return summary

    def _run_batch(
        self,
        db: Session,
        summary: JobSummary,
        now: datetime,
        limit: int,
        budget: float,
        started: float,
    ) -> None:
        try:
            items, summary.stale = self._select(db, now, limit)
        except SQLAlchemyError as exc:
            db.rollback()
            logger.exception("Learning run %s aborted: cannot read the experience ledger", summary.run_id)
            summary.success = False
            summary.error = f"select_batch: {exc.__class__.__name__}"
            return

        rewards: list[float] = []
        for item in items:
            if self.monotonic() - started >= budget:
                summary.timed_out = True
                logger.warning(
                    "Learning run %s hit its %.0fs budget; %d experiences left for the next run",
                    summary.run_id, budget,
                    len(items) - summary.processed - summary.skipped - summary.deferred - summary.errors,
                )
                break
            try:
                outcome, reward = self._process_one(db, item, now)
                db.commit()
            except Exception:
                db.rollback()
                summary.errors += 1
                logger.exception("Learning run %s: experience %s failed", summary.run_id, item.id)
                continue
            if outcome == "skipped":
                summary.skipped += 1
            elif outcome == "deferred":
                summary.deferred += 1
            else:
                summary.processed += 1
                rewards.append(reward)

        summary.avg_reward = round(sum(rewards) / len(rewards), 6) if rewards else 0.0
