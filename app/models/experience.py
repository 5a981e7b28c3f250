"""
Experience — one decision instance of the coaching policy.

Append-only ledger row:
  - written by the decision path with reward / metrics_after unset
  - mutated exactly once by the nightly learning job: either finalized
    (reward + metrics_after + feedback_type) or flagged learning_enabled=False
    when consent was revoked before processing
  - never deleted

run_id links the row to the Proposal / AgentAction / feedback signals
produced by the same decision.
"""
from datetime import datetime
import enum

from sqlalchemy import JSON, Boolean, DateTime, Float, Index, Integer, String, func
from sqlalchemy.orm import Mapped, mapped_column

from app.core.clock import utcnow
from app.db.base import Base


class SageAction(str, enum.Enum):
    nudge = "nudge"
    reframe = "reframe"
    challenge = "challenge"
    celebrate = "celebrate"
    protect = "protect"
    observe = "observe"
    suggest_task = "suggest_task"
    suggest_break = "suggest_break"
    weekly_review = "weekly_review"
    silent = "silent"


# Declaration order doubles as the tie-break order when scoring.
ACTIONS: tuple[str, ...] = tuple(a.value for a in SageAction)


class FeedbackType(str, enum.Enum):
    accepted = "accepted"
    rejected = "rejected"
    ignored = "ignored"
    none = "none"


class Experience(Base):
    __tablename__ = "sage_experiences"
    __table_args__ = (
        Index("ix_sage_experiences_pending", "learning_enabled", "created_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    run_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    context_vector: Mapped[list] = mapped_column(JSON, nullable=False)
    action_type: Mapped[str] = mapped_column(String(32), nullable=False, index=True)
    feedback_type: Mapped[str | None] = mapped_column(
        String(16), nullable=True,
        comment="accepted | rejected | ignored | none; set at finalize time",
    )
    metrics_before: Mapped[dict] = mapped_column(JSON, nullable=False)
    metrics_after: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    reward: Mapped[float | None] = mapped_column(Float, nullable=True)
    learning_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )
    finalized_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
