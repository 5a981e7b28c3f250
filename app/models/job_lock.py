"""
JobLock — one row while a named batch job is running.

The primary key on `name` is the mutual-exclusion guarantee; a row older
than JOB_LOCK_TTL_SECONDS is considered abandoned by a crashed worker.
"""
from datetime import datetime

from sqlalchemy import DateTime, String
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base


class JobLock(Base):
    __tablename__ = "job_locks"

    name: Mapped[str] = mapped_column(String(64), primary_key=True)
    owner: Mapped[str] = mapped_column(String(64), nullable=False)
    acquired_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
