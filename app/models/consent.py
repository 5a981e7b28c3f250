"""
UserConsent — consent store backing the ConsentOracle.

One row per (user_id, purpose). Withdrawal keeps the row (granted=False)
so the audit trail of when consent changed stays intact.
"""
from datetime import datetime
import enum

from sqlalchemy import Boolean, DateTime, Integer, String, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column

from app.core.clock import utcnow
from app.db.base import Base


class ConsentPurpose(str, enum.Enum):
    ai_profiling = "ai_profiling"
    policy_learning = "policy_learning"
    behavioral_tracking = "behavioral_tracking"
    data_export = "data_export"


class UserConsent(Base):
    __tablename__ = "user_consents"
    __table_args__ = (
        UniqueConstraint("user_id", "purpose", name="uq_user_consent_purpose"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    purpose: Mapped[str] = mapped_column(String(32), nullable=False)
    granted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    consent_version: Mapped[str] = mapped_column(String(16), nullable=False, default="1.0")
    granted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    withdrawn_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )
