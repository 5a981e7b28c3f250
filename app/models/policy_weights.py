"""
PolicyWeights — learned linear weights per (user, action).

Owned by PolicyStore. `version` is bumped on every write and used as a
compare-and-set token so two concurrent read-modify-write cycles on the
same key cannot silently lose an update.
"""
from datetime import datetime

from sqlalchemy import JSON, DateTime, Integer, String, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column

from app.core.clock import utcnow
from app.db.base import Base


class PolicyWeights(Base):
    __tablename__ = "sage_policy_weights"
    __table_args__ = (
        UniqueConstraint("user_id", "action_type", name="uq_policy_weights_user_action"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    action_type: Mapped[str] = mapped_column(String(32), nullable=False)
    weights: Mapped[list] = mapped_column(JSON, nullable=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )
