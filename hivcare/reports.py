"""
Dashboard reporting – facility metrics aggregated with pandas.
"""

from datetime import datetime, timedelta
from typing import Dict, List, Optional

import pandas as pd
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from hivcare.constants import LifecycleStatus, ResultStatus, TaskStatus, TaskType
from hivcare.database import utcnow
from hivcare.dates import add_months, start_of_day
from hivcare.entities import (
    Client,
    ClientPopulation,
    ClinicalSummary,
    Dispense,
    Encounter,
    Facility,
    LabPanel,
    Lookup,
    Prescription,
    Task,
)

# Open tasks of these types that are already due count as critical.
CRITICAL_TASK_TYPES = (TaskType.LTFU_REVIEW, TaskType.VL_MONITOR, TaskType.LABS_PENDING)

UPCOMING_TASK_DAYS = 7
RECENT_ACTIVITY_DAYS = 7
ENROLLMENT_TREND_MONTHS = 12


# ── Loading ──────────────────────────────────────────────────────────

def _frame(db: Session, stmt, columns: List[str]) -> pd.DataFrame:
    rows = db.execute(stmt).all()
    return pd.DataFrame.from_records([tuple(r) for r in rows], columns=columns)


def _for_facility(stmt, facility_id: Optional[str]):
    return stmt.where(Client.facility_id == facility_id) if facility_id else stmt


def _value_counts(df: pd.DataFrame, column: str) -> List[Dict]:
    if df.empty:
        return []
    counts = df[column].dropna().value_counts()
    return [{column: key, "count": int(n)} for key, n in counts.items()]


# ── Metrics ──────────────────────────────────────────────────────────

def enrollments_by_month(dates: pd.Series, now: datetime,
                         months: int = ENROLLMENT_TREND_MONTHS) -> List[Dict]:
    """Enrolment counts for the last *months* calendar months, zero-filled."""
    first = pd.Period(add_months(now, -(months - 1)), freq="M")
    periods = pd.period_range(start=first, periods=months, freq="M")
    enrolled = pd.to_datetime(dates.dropna())
    counts = enrolled.dt.to_period("M").value_counts() if not enrolled.empty else pd.Series(dtype=int)
    counts = counts.reindex(periods, fill_value=0)
    return [{"month": str(period), "count": int(n)} for period, n in counts.items()]


def task_summary(tasks: pd.DataFrame, now: datetime) -> Dict:
    """Counts of Open tasks that are overdue, due today, and critical."""
    if tasks.empty:
        return {"overdue": 0, "due_today": 0, "critical": 0}
    open_tasks = tasks[tasks["status"] == TaskStatus.OPEN.value]
    due = pd.to_datetime(open_tasks["due_date"])
    today = start_of_day(now)
    critical_types = [t.value for t in CRITICAL_TASK_TYPES]
    return {
        "overdue": int((due < now).sum()),
        "due_today": int(((due >= today) & (due < today + timedelta(days=1))).sum()),
        "critical": int((open_tasks["type"].isin(critical_types) & (due <= now)).sum()),
    }


def build_dashboard(db: Session, facility_id: Optional[str] = None,
                    now: Optional[datetime] = None) -> Dict:
    """Dashboard metrics, restricted to one facility when *facility_id* is given."""
    now = now or utcnow()

    clients = _frame(
        db,
        _for_facility(select(Client.id, Client.status, Client.date_enrolled), facility_id),
        ["id", "status", "date_enrolled"],
    )
    populations = _frame(
        db,
        _for_facility(
            select(Lookup.label)
            .select_from(ClientPopulation)
            .join(Lookup, Lookup.id == ClientPopulation.population_id)
            .join(Client, Client.id == ClientPopulation.client_id),
            facility_id,
        ),
        ["population"],
    )
    prescriptions = _frame(
        db,
        _for_facility(
            select(Prescription.category).join(Client, Client.id == Prescription.client_id)
            .where(Prescription.is_active.is_(True)),
            facility_id,
        ),
        ["category"],
    )
    tasks = _frame(
        db,
        _for_facility(
            select(Task.id, Task.type, Task.status, Task.due_date, Task.title,
                   Client.id, Client.client_code)
            .join(Client, Client.id == Task.client_id),
            facility_id,
        ),
        ["id", "type", "status", "due_date", "title", "client_id", "client_code"],
    )
    encounters = _frame(
        db,
        _for_facility(
            select(Encounter.id).join(Client, Client.id == Encounter.client_id)
            .where(Encounter.date >= now - timedelta(days=RECENT_ACTIVITY_DAYS)),
            facility_id,
        ),
        ["id"],
    )
    pending_labs = _frame(
        db,
        _for_facility(
            select(LabPanel.id).join(Client, Client.id == LabPanel.client_id)
            .where(LabPanel.status == ResultStatus.PENDING.value),
            facility_id,
        ),
        ["id"],
    )
    vl_status = _frame(
        db,
        _for_facility(
            select(ClinicalSummary.viral_load_status)
            .join(Client, Client.id == ClinicalSummary.client_id),
            facility_id,
        ),
        ["status"],
    )

    month_start = start_of_day(now).replace(day=1)
    enrolled = pd.to_datetime(clients["date_enrolled"]) if not clients.empty else pd.Series(dtype="datetime64[ns]")
    summary = task_summary(tasks, now)

    upcoming: List[Dict] = []
    if not tasks.empty:
        due = pd.to_datetime(tasks["due_date"])
        window = tasks[
            (tasks["status"] == TaskStatus.OPEN.value)
            & (due >= now)
            & (due <= now + timedelta(days=UPCOMING_TASK_DAYS))
        ].assign(due_date=due).sort_values("due_date").head(10)
        upcoming = [
            {
                "id": row.id,
                "type": row.type,
                "title": row.title,
                "due_date": row.due_date.isoformat(),
                "client_id": row.client_id,
                "client_code": row.client_code,
            }
            for row in window.itertuples(index=False)
        ]

    by_population = _value_counts(populations, "population")[:10]

    return {
        "overview": {
            "total_clients": int(len(clients)),
            "recent_enrollments": int((enrolled >= month_start).sum()),
            "recent_encounters": int(len(encounters)),
            "pending_labs_count": int(len(pending_labs)),
        },
        "clients": {
            "by_status": _value_counts(clients, "status"),
            "by_population": by_population,
        },
        "prescriptions": {
            "active_by_category": _value_counts(prescriptions, "category"),
        },
        "tasks": {
            "overdue": summary["overdue"],
            "due_today": summary["due_today"],
            "upcoming": upcoming,
        },
        "trends": {
            "enrollments_by_month": enrollments_by_month(clients["date_enrolled"], now),
            "viral_load_status": _value_counts(vl_status, "status"),
        },
        "critical_tasks_count": summary["critical"],
    }


def facility_metrics(db: Session) -> List[Dict]:
    """Per-facility client totals, active clients and open tasks, largest first."""
    clients = _frame(
        db,
        select(Facility.code, Facility.name, Client.id, Client.status)
        .select_from(Facility)
        .outerjoin(Client, Client.facility_id == Facility.id),
        ["code", "name", "client_id", "status"],
    )
    open_tasks = _frame(
        db,
        select(Client.facility_id, Task.id)
        .join(Client, Client.id == Task.client_id)
        .where(Task.status == TaskStatus.OPEN.value),
        ["facility_id", "task_id"],
    )
    if clients.empty:
        return []

    clients["active"] = clients["status"] == LifecycleStatus.ACTIVE.value
    grouped = clients.groupby(["code", "name"], as_index=False).agg(
        total_clients=("client_id", "count"),
        active_clients=("active", "sum"),
    )
    facility_ids = dict(db.execute(select(Facility.code, Facility.id)).all())
    task_counts = open_tasks.groupby("facility_id").size() if not open_tasks.empty else pd.Series(dtype=int)

    grouped = grouped.sort_values(["total_clients", "code"], ascending=[False, True])
    return [
        {
            "code": row.code,
            "name": row.name,
            "total_clients": int(row.total_clients),
            "active_clients": int(row.active_clients),
            "open_tasks": int(task_counts.get(facility_ids.get(row.code), 0)),
        }
        for row in grouped.itertuples(index=False)
    ]


def recent_activity(db: Session, now: Optional[datetime] = None,
                    days: int = RECENT_ACTIVITY_DAYS) -> List[Dict]:
    now = now or utcnow()
    since = start_of_day(now) - timedelta(days=days)
    counts = {
        "encounter": select(func.count(Encounter.id)).where(Encounter.date >= since),
        "dispense": select(func.count(Dispense.id)).where(Dispense.dispensed_at >= since),
        "lab_result": select(func.count(LabPanel.id)).where(LabPanel.reported_at >= since),
    }
    return [{"type": kind, "count": int(db.scalar(stmt) or 0)} for kind, stmt in counts.items()]


def refresh_dashboard_metrics(db: Session, now: Optional[datetime] = None) -> Dict:
    """System-wide metrics recomputed for the scheduled dashboard refresh."""
    now = now or utcnow()
    dashboard = build_dashboard(db, None, now)
    return {
        "enrollment_trends": dashboard["trends"]["enrollments_by_month"],
        "status_counts": dashboard["clients"]["by_status"],
        "population_counts": dashboard["clients"]["by_population"],
        "task_summary": {
            "overdue": dashboard["tasks"]["overdue"],
            "due_today": dashboard["tasks"]["due_today"],
        },
        "facility_metrics": facility_metrics(db),
        "recent_activity": recent_activity(db, now),
        "critical_tasks_count": dashboard["critical_tasks_count"],
    }
