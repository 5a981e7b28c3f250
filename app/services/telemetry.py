"""
Behavioral telemetry reader.

Read-only view over habit logs, tasks and journal entries, queried by date
range per user. The engine only ever depends on the TelemetrySource
protocol; SqlTelemetrySource is the adapter for the local tables.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from typing import Optional, Protocol

from sqlalchemy.orm import Session

from app.core.clock import as_utc
from app.models.habit_log import HabitLog
from app.models.journal_entry import JournalEntry
from app.models.task import Task


# ---------------------------------------------------------------------------
# Record types (plain dataclasses, no ORM objects leave this module)
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class HabitRecord:
    habit_id: str
    day: date
    completed: bool
    logged_at: datetime


@dataclass(frozen=True)
class TaskRecord:
    id: int
    status: str
    priority: str
    due_date: Optional[date]
    created_at: datetime
    updated_at: datetime
    completed_at: Optional[datetime]


@dataclass(frozen=True)
class JournalRecord:
    day: date
    mood: Optional[int]
    created_at: datetime


class TelemetrySource(Protocol):
    def habit_logs(self, user_id: str, start: date, end: date) -> list[HabitRecord]:
        ...

    def tasks(self, user_id: str) -> list[TaskRecord]:
        ...

    def journal_entries(self, user_id: str, start: date, end: date) -> list[JournalRecord]:
        ...


def _ev(v) -> str:
    return v.value if hasattr(v, "value") else str(v)


class SqlTelemetrySource:
    def __init__(self, db: Session):
        self.db = db

    def habit_logs(self, user_id: str, start: date, end: date) -> list[HabitRecord]:
        rows = (
            self.db.query(HabitLog)
            .filter(HabitLog.user_id == user_id, HabitLog.day >= start, HabitLog.day <= end)
            .order_by(HabitLog.day.asc(), HabitLog.id.asc())
            .all()
        )
        return [
            HabitRecord(
                habit_id=r.habit_id,
                day=r.day,
                completed=bool(r.completed),
                logged_at=as_utc(r.logged_at),
            )
            for r in rows
        ]

    def tasks(self, user_id: str) -> list[TaskRecord]:
        rows = (
            self.db.query(Task)
            .filter(Task.user_id == user_id)
            .order_by(Task.id.asc())
            .all()
        )
        return [
            TaskRecord(
                id=r.id,
                status=_ev(r.status),
                priority=_ev(r.priority),
                due_date=r.due_date,
                created_at=as_utc(r.created_at),
                updated_at=as_utc(r.updated_at),
                completed_at=as_utc(r.completed_at),
            )
            for r in rows
        ]

    def journal_entries(self, user_id: str, start: date, end: date) -> list[JournalRecord]:
        rows = (
            self.db.query(JournalEntry)
            .filter(
                JournalEntry.user_id == user_id,
                JournalEntry.day >= start,
                JournalEntry.day <= end,
            )
            .order_by(JournalEntry.day.asc(), JournalEntry.id.asc())
            .all()
        )
        return [
            JournalRecord(day=r.day, mood=r.mood, created_at=as_utc(r.created_at))
            for r in rows
        ]
