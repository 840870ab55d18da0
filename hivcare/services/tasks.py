"""
Care coordination tasks: listing, manual creation and status transitions.
"""

from datetime import datetime, timedelta
from typing import Optional, Tuple

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from hivcare.constants import Action, Resource, Role, TaskStatus, TaskType
from hivcare.database import utcnow
from hivcare.dates import start_of_day
from hivcare.entities import Client, Task
from hivcare.errors import ValidationFailed
from hivcare.models import ResourceRecord, SessionData
from hivcare.rbac import require_permission
from hivcare.services.common import (
    apply_scope,
    clamp_limit,
    get_or_404,
    parse_bool,
    parse_datetime,
    parse_enum,
    require_fields,
    task_record,
)

# Open tasks may only move to one of these.
TERMINAL_STATUSES = (TaskStatus.DONE, TaskStatus.DISMISSED)


def _count(db: Session, stmt) -> int:
    return db.scalar(select(func.count()).select_from(stmt.subquery()))


def list_tasks(db: Session, session: SessionData, status: Optional[str] = None,
               task_type: Optional[str] = None, client_id: Optional[str] = None,
               assigned_role: Optional[str] = None, overdue=None, limit=None,
               now: Optional[datetime] = None) -> Tuple[list, dict]:
    """Return (tasks, summary) where summary counts overdue and due-today tasks."""
    now = now or utcnow()
    limit = clamp_limit(limit)
    status = parse_enum(TaskStatus, status, "status", TaskStatus.OPEN)
    task_type = parse_enum(TaskType, task_type, "type")
    assigned_role = parse_enum(Role, assigned_role, "assigned_role")

    stmt = select(Task).join(Task.client)
    if client_id:
        client = get_or_404(db, Client, client_id, "Client")
        stmt = stmt.where(Task.client_id == client.id)
    stmt = apply_scope(
        stmt, session, Action.LIST, Resource.TASKS,
        facility_column=Client.facility_id,
        assigned_column=Task.assigned_user_id,
        owner_column=Task.created_by_id,
    )

    stmt = stmt.where(Task.status == status.value)
    if task_type:
        stmt = stmt.where(Task.type == task_type.value)
    if assigned_role:
        stmt = stmt.where(Task.assigned_role == assigned_role.value)
    if parse_bool(overdue, False):
        stmt = stmt.where(Task.due_date < now)

    today = start_of_day(now)
    summary = {
        "overdue": _count(db, stmt.where(Task.due_date < now)),
        "due_today": _count(db, stmt.where(Task.due_date >= today,
                                           Task.due_date < today + timedelta(days=1))),
    }

    tasks = list(db.scalars(
        stmt.order_by(Task.due_date, Task.created_at.desc()).limit(limit)
    ).all())
    summary["total"] = len(tasks)
    return tasks, summary


def create_task(db: Session, session: SessionData, data: dict) -> Task:
    require_fields(data, ("client_id", "type", "title"))
    client = get_or_404(db, Client, data["client_id"], "Client")
    require_permission(
        session, Action.CREATE, Resource.TASKS,
        ResourceRecord(
            user_id=session.user_id,
            facility_id=client.facility_id,
            assigned_user_id=data.get("assigned_user_id"),
        ),
    )
    assigned_role = parse_enum(Role, data.get("assigned_role"), "assigned_role")
    payload = data.get("payload")
    if payload is not None and not isinstance(payload, dict):
        raise ValidationFailed("Validation failed", {"payload": "must be an object"})

    task = Task(
        client_id=client.id,
        type=parse_enum(TaskType, data["type"], "type").value,
        title=data["title"],
        description=data.get("description"),
        due_date=parse_datetime(data.get("due_date"), "due_date"),
        status=TaskStatus.OPEN.value,
        payload=payload or {},
        assigned_user_id=data.get("assigned_user_id"),
        assigned_role=assigned_role.value if assigned_role else None,
        created_by_id=session.user_id,
    )
    db.add(task)
    db.flush()
    return task


def transition_task(db: Session, session: SessionData, task_id: str, new_status) -> Task:
    """Close an Open task as Done or Dismissed; every other transition is rejected."""
    task = get_or_404(db, Task, task_id, "Task")
    require_permission(session, Action.UPDATE, Resource.TASKS, task_record(task))

    target = parse_enum(TaskStatus, new_status, "status")
    if target is None:
        raise ValidationFailed("Validation failed", {"missing": ["status"]})
    if task.status != TaskStatus.OPEN.value or target not in TERMINAL_STATUSES:
        raise ValidationFailed(f"Cannot move task from {task.status} to {target.value}")

    now = utcnow()
    task.status = target.value
    task.completed_at = now
    task.updated_at = now
    db.flush()
    return task

