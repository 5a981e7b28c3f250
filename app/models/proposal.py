"""
Proposal — reviewable, not-yet-executed suggestion produced by the policy.

status: pending → accepted | rejected | expired (all three terminal).
Mutated only by the ProposalGovernor.
"""
from datetime import datetime
import enum

from sqlalchemy import JSON, DateTime, Enum, Float, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from app.core.clock import utcnow
from app.db.base import Base


class ProposalStatus(str, enum.Enum):
    pending = "pending"
    accepted = "accepted"
    rejected = "rejected"
    expired = "expired"


TERMINAL_STATUSES = frozenset({
    ProposalStatus.accepted, ProposalStatus.rejected, ProposalStatus.expired,
})


class Proposal(Base):
    __tablename__ = "ai_proposals"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    run_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    type: Mapped[str] = mapped_column(String(32), nullable=False)
    action_type: Mapped[str | None] = mapped_column(
        String(32), nullable=True, comment="Sage action that produced the proposal"
    )
    title: Mapped[str] = mapped_column(String(256), nullable=False)
    proposed_actions: Mapped[list] = mapped_column(JSON, nullable=False)
    reasoning: Mapped[str | None] = mapped_column(Text, nullable=True)
    confidence_score: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    priority: Mapped[str] = mapped_column(String(16), nullable=False, default="medium")
    status: Mapped[str] = mapped_column(
        Enum(ProposalStatus, name="proposal_status_enum"),
        nullable=False,
        default=ProposalStatus.pending,
        index=True,
    )
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )
    reviewed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
