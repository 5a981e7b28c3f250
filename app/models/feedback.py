"""
FeedbackSignal — append-only review signals emitted by the ProposalGovernor.

The learning job reads them (by run_id) when it computes an experience's
reward. An `undone` signal is recorded after the fact; it never replaces
the `accepted` signal that preceded it.
"""
from datetime import datetime
import enum

from sqlalchemy import DateTime, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from app.core.clock import utcnow
from app.db.base import Base


class FeedbackSignalType(str, enum.Enum):
    accepted = "accepted"
    rejected = "rejected"
    ignored = "ignored"
    undone = "undone"


class FeedbackSignal(Base):
    __tablename__ = "sage_feedback"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    run_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    proposal_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    action_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    signal: Mapped[str] = mapped_column(String(16), nullable=False)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )
