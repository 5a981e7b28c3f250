"""
Proposal effects — the only code that mutates user data on behalf of Sage.

A proposal's `proposed_actions` is a list of effect specs:

    {"op": "create_task",    "title": "...", "priority": "medium", "due_in_days": 0}
    {"op": "postpone_tasks"}                 non-urgent open tasks due today → tomorrow
    {"op": "reduce_wip",     "limit": 3}     in-progress tasks → pending (lowest priority first)
    {"op": "acknowledge"}                    no state change

execute(db, user_id, specs, now) -> (result, previous_state)
restore(db, user_id, previous_state)

previous_state is opaque to the governor; restore() is its only reader.
Flush only; the caller owns the transaction.
"""
from __future__ import annotations

from datetime import date, datetime, timedelta
from typing import Any, Callable, Optional

from sqlalchemy.orm import Session

from app.core.clock import utcnow
from app.core.errors import UnsupportedEffectError
from app.models.task import Task, TaskPriority, TaskStatus

_PRIORITY_RANK = {"low": 0, "medium": 1, "high": 2, "urgent": 3}
_OPEN_STATUSES = (TaskStatus.pending, TaskStatus.in_progress)


def _ev(v) -> str:
    return v.value if hasattr(v, "value") else str(v)


# ---------------------------------------------------------------------------
# Executors: (db, user_id, spec, now) -> (result, undo_state)
# ---------------------------------------------------------------------------

def _create_task(db: Session, user_id: str, spec: dict, now: datetime):
    priority = spec.get("priority", TaskPriority.medium.value)
    if priority not in _PRIORITY_RANK:
        priority = TaskPriority.medium.value
    due_in_days = spec.get("due_in_days")
    task = Task(
        user_id=user_id,
        title=str(spec.get("title") or "Sage suggestion")[:256],
        description=spec.get("description"),
        priority=priority,
        status=TaskStatus.pending,
        source="ai",
        due_date=now.date() + timedelta(days=int(due_in_days)) if due_in_days is not None else None,
    )
    db.add(task)
    db.flush()
    return (
        {"op": "create_task", "task_id": task.id, "title": task.title},
        {"created_task_ids": [task.id]},
    )


def _postpone_tasks(db: Session, user_id: str, spec: dict, now: datetime):
    today = now.date()
    tomorrow = today + timedelta(days=1)
    tasks = (
        db.query(Task)
        .filter(
            Task.user_id == user_id,
            Task.due_date == today,
            Task.status.in_(_OPEN_STATUSES),
            Task.priority != TaskPriority.urgent,
        )
        .order_by(Task.id.asc())
        .all()
    )
    previous = []
    for task in tasks:
        previous.append({"id": task.id, "due_date": task.due_date.isoformat()})
        task.due_date = tomorrow
    db.flush()
    return (
        {"op": "postpone_tasks", "count": len(tasks), "task_ids": [t.id for t in tasks]},
        {"due_dates": previous},
    )


def _reduce_wip(db: Session, user_id: str, spec: dict, now: datetime):
    keep = max(0, int(spec.get("limit", 3)))
    wip = (
        db.query(Task)
        .filter(Task.user_id == user_id, Task.status == TaskStatus.in_progress)
        .all()
    )
    # Highest priority, then oldest, stays in progress.
    wip.sort(key=lambda t: (-_PRIORITY_RANK.get(_ev(t.priority), 1), t.id))
    moved = wip[keep:]
    previous = []
    for task in moved:
        previous.append({"id": task.id, "status": _ev(task.status)})
        task.status = TaskStatus.pending
    db.flush()
    return (
        {"op": "reduce_wip", "count": len(moved), "task_ids": [t.id for t in moved]},
        {"statuses": previous},
    )


def _acknowledge(db: Session, user_id: str, spec: dict, now: datetime):
    return {"op": "acknowledge"}, {}


EXECUTORS: dict[str, Callable[..., tuple[dict, dict]]] = {
    "create_task": _create_task,
    "postpone_tasks": _postpone_tasks,
    "reduce_wip": _reduce_wip,
    "acknowledge": _acknowledge,
}


def validate(specs: list[dict]) -> None:
    for spec in specs:
        op = spec.get("op") if isinstance(spec, dict) else None
        if op not in EXECUTORS:
            raise UnsupportedEffectError(str(op))


def execute(
    db: Session,
    user_id: str,
    specs: list[dict],
    now: Optional[datetime] = None,
) -> tuple[dict[str, Any], dict[str, Any]]:
    validate(specs)
    now = now or utcnow()
    results, undo = [], []
    for spec in specs:
        result, state = EXECUTORS[spec["op"]](db, user_id, spec, now)
        results.append(result)
        undo.append({"op": spec["op"], "state": state})
    return {"effects": results}, {"effects": undo}


# ---------------------------------------------------------------------------
# Undo
# ---------------------------------------------------------------------------

def _user_tasks(db: Session, user_id: str, ids: list[int]) -> list[Task]:
    if not ids:
        return []
    return db.query(Task).filter(Task.user_id == user_id, Task.id.in_(ids)).all()


def restore(db: Session, user_id: str, previous_state: dict[str, Any]) -> dict[str, Any]:
    """Reverse executed effects, last first. Tasks deleted since are skipped."""
    restored = 0
    for entry in reversed(previous_state.get("effects", [])):
        op, state = entry.get("op"), entry.get("state") or {}
        if op == "create_task":
            for task in _user_tasks(db, user_id, state.get("created_task_ids", [])):
                db.delete(task)
                restored += 1
        elif op == "postpone_tasks":
            by_id = {p["id"]: p["due_date"] for p in state.get("due_dates", [])}
            for task in _user_tasks(db, user_id, list(by_id)):
                task.due_date = date.fromisoformat(by_id[task.id])
                restored += 1
        elif op == "reduce_wip":
            by_id = {p["id"]: p["status"] for p in state.get("statuses", [])}
            for task in _user_tasks(db, user_id, list(by_id)):
                task.status = TaskStatus(by_id[task.id])
                restored += 1
        elif op != "acknowledge":
            raise UnsupportedEffectError(str(op))
    db.flush()
    return {"restored": restored}
