"""
AgentAction — executed effect of an accepted proposal.

previous_state is an opaque snapshot produced by the effect executor;
it is all that is needed to reverse the action. status: applied → undone.
"""
from datetime import datetime
import enum

from sqlalchemy import JSON, DateTime, Enum, ForeignKey, Integer, String, func
from sqlalchemy.orm import Mapped, mapped_column

from app.core.clock import utcnow
from app.db.base import Base


class AgentActionStatus(str, enum.Enum):
    applied = "applied"
    undone = "undone"


class AgentAction(Base):
    __tablename__ = "agent_actions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    proposal_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("ai_proposals.id"), nullable=False, unique=True
    )
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    run_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    previous_state: Mapped[dict] = mapped_column(JSON, nullable=False)
    result: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    status: Mapped[str] = mapped_column(
        Enum(AgentActionStatus, name="agent_action_status_enum"),
        nullable=False,
        default=AgentActionStatus.applied,
    )
    executed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )
    undone_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
