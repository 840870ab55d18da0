"""
Helpers shared by the clinical services: ownership records for the
authorization facade, scope filters for list queries, and input coercion.
"""

from datetime import date, datetime, timezone
from typing import Iterable, Optional, Type

from sqlalchemy import false, or_
from sqlalchemy.orm import Session

from hivcare.config import DEFAULT_LIST_LIMIT, MAX_LIST_LIMIT
from hivcare.constants import Action, Resource, Scope
from hivcare.entities import Client, Task
from hivcare.errors import AuthorizationDenied, RecordNotFound, ValidationFailed
from hivcare.models import ResourceRecord, SessionData
from hivcare.rbac import granted_scopes


# ── Ownership records ────────────────────────────────────────────────

def client_record(client: Client) -> ResourceRecord:
    return ResourceRecord(
        id=client.id,
        user_id=client.created_by_id,
        facility_id=client.facility_id,
        assigned_user_id=client.case_manager_id,
    )


def clinical_record(client: Client, owner_id: Optional[str], record_id: Optional[str] = None) -> ResourceRecord:
    """Ownership of a record hanging off a client (encounter, lab, prescription, ...)."""
    return ResourceRecord(
        id=record_id,
        user_id=owner_id,
        facility_id=client.facility_id,
        assigned_user_id=client.case_manager_id,
    )


def task_record(task: Task) -> ResourceRecord:
    return ResourceRecord(
        id=task.id,
        user_id=task.created_by_id,
        facility_id=task.client.facility_id if task.client else None,
        assigned_user_id=task.assigned_user_id,
    )


# ── Scope filtering for list queries ─────────────────────────────────

def apply_scope(stmt, session: SessionData, action: Action, resource: Resource, *,
                facility_column, assigned_column=None, owner_column=None):
    """
    Narrow a list query to the rows the caller's grants admit.

    Raises AuthorizationDenied when no held role grants *action* at all.
    """
    scopes = granted_scopes(session, action, resource)
    if not scopes:
        raise AuthorizationDenied(
            f"Insufficient permissions to {Action(action).value} {Resource(resource).value}"
        )
    if Scope.ALL in scopes:
        return stmt

    clauses = []
    if Scope.FACILITY in scopes and session.facility_id:
        clauses.append(facility_column == session.facility_id)
    if Scope.ASSIGNED in scopes:
        if assigned_column is not None:
            clauses.append(assigned_column == session.user_id)
        if owner_column is not None:
            clauses.append(owner_column == session.user_id)
    if Scope.OWN in scopes and owner_column is not None:
        clauses.append(owner_column == session.user_id)

    if not clauses:
        return stmt.where(false())
    return stmt.where(or_(*clauses))


# ── Lookups ──────────────────────────────────────────────────────────

def get_or_404(db: Session, entity: Type, record_id: Optional[str], label: str):
    obj = db.get(entity, record_id) if record_id else None
    if obj is None:
        raise RecordNotFound(f"{label} not found")
    return obj


# ── Input coercion ───────────────────────────────────────────────────

def require_fields(data: dict, fields: Iterable[str]) -> None:
    missing = [f for f in fields if data.get(f) in (None, "")]
    if missing:
        raise ValidationFailed("Validation failed", {"missing": missing})


def parse_datetime(value, field: str) -> Optional[datetime]:
    """Parse an ISO-8601 string into naive UTC; None passes through."""
    if value in (None, ""):
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        try:
            parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
        except ValueError:
            raise ValidationFailed("Validation failed", {field: "invalid datetime"})
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def parse_date(value, field: str) -> Optional[date]:
    parsed = parse_datetime(value, field)
    return parsed.date() if parsed else None


def parse_enum(enum_cls, value, field: str, default=None):
    if value in (None, ""):
        return default
    try:
        return enum_cls(value)
    except ValueError:
        raise ValidationFailed(
            "Validation failed",
            {field: f"must be one of {', '.join(e.value for e in enum_cls)}"},
        )


def parse_number(value, field: str) -> Optional[float]:
    if value in (None, ""):
        return None
    if isinstance(value, bool):
        raise ValidationFailed("Validation failed", {field: "must be a number"})
    try:
        return float(value)
    except (TypeError, ValueError):
        raise ValidationFailed("Validation failed", {field: "must be a number"})


def parse_bool(value, default: bool) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in {"1", "true", "yes", "on"}


def clamp_limit(value) -> int:
    if value in (None, ""):
        return DEFAULT_LIST_LIMIT
    try:
        limit = int(value)
    except (TypeError, ValueError):
        raise ValidationFailed("Validation failed", {"limit": "must be an integer"})
    if limit < 1 or limit > MAX_LIST_LIMIT:
        raise ValidationFailed("Validation failed", {"limit": f"must be between 1 and {MAX_LIST_LIMIT}"})
    return limit
