"""
Scheduled task generation.

Four independent scans run inside one transaction and write disjoint task
types:

1. LTFU review   – Active clients with no encounter and no dispense in the
                   last LTFU_DAYS.
2. Labs pending  – Active clients on an active ARV prescription with no viral
                   load panel reported in the last LAB_DUE_MONTHS.
3. Refill due    – dispenses whose next refill date falls inside the next
                   REFILL_WINDOW_DAYS.
4. VL monitor    – Active clients on an active ARV prescription with no viral
                   load panel reported in the last VL_MONITOR_MONTHS.

Each scan checks for an existing Open task before inserting, so re-running the
job does not duplicate Open tasks; once a task is Done or Dismissed the
condition can raise a new one. The check and the insert are not atomic, so two
overlapping runs may still duplicate a task.
"""

import logging
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import exists, select
from sqlalchemy.orm import Session, sessionmaker

from hivcare.config import (
    HIV_VL_PANEL_CODE,
    LAB_DUE_MONTHS,
    LTFU_DAYS,
    REFILL_WINDOW_DAYS,
    VL_MONITOR_MONTHS,
)
from hivcare.constants import (
    LifecycleStatus,
    LookupType,
    MedicationCategory,
    TaskStatus,
    TaskType,
)
from hivcare.dates import add_months
from hivcare.database import session_scope, utcnow
from hivcare.entities import (
    Client,
    Dispense,
    Encounter,
    LabPanel,
    Lookup,
    Prescription,
    Task,
)
from hivcare.errors import TransactionFailure

logger = logging.getLogger(__name__)

REFILL_TASK_TYPES = {
    MedicationCategory.ARV.value: TaskType.REFILL_ARV,
    MedicationCategory.PREP.value: TaskType.REFILL_PREP,
}


@dataclass
class TaskGenerationReport:
    ltfu_review: int = 0
    labs_pending: int = 0
    refills: int = 0
    vl_monitor: int = 0

    @property
    def total(self) -> int:
        return self.ltfu_review + self.labs_pending + self.refills + self.vl_monitor

    def to_dict(self) -> dict:
        data = asdict(self)
        data["total"] = self.total
        return data


# ── Shared query fragments ───────────────────────────────────────────

def _open_task_exists(task_type: TaskType):
    return exists().where(
        Task.client_id == Client.id,
        Task.type == task_type.value,
        Task.status == TaskStatus.OPEN.value,
    )


def _viral_load_reported_since(cutoff: datetime):
    return (
        exists()
        .where(
            LabPanel.client_id == Client.id,
            LabPanel.panel_type_id == Lookup.id,
            Lookup.type == LookupType.LAB_PANEL.value,
            Lookup.code == HIV_VL_PANEL_CODE,
            LabPanel.reported_at > cutoff,
        )
    )


def _active_arv_prescription():
    return exists().where(
        Prescription.client_id == Client.id,
        Prescription.category == MedicationCategory.ARV.value,
        Prescription.is_active.is_(True),
    )


def _add_task(db: Session, client: Client, task_type: TaskType, title: str,
              due_date: datetime, payload: dict) -> Task:
    task = Task(
        client_id=client.id,
        type=task_type.value,
        title=title,
        due_date=due_date,
        status=TaskStatus.OPEN.value,
        payload=payload,
    )
    db.add(task)
    # Later existence checks in the same run must see this row.
    db.flush()
    return task


def _client_label(client: Client) -> str:
    return f"{client.legal_surname}, {client.legal_first}"


# ── Scans ────────────────────────────────────────────────────────────

def generate_ltfu_tasks(db: Session, now: datetime) -> int:
    cutoff = now - timedelta(days=LTFU_DAYS)

    recent_encounter = exists().where(
        Encounter.client_id == Client.id,
        Encounter.date > cutoff,
    )
    recent_dispense = (
        exists()
        .where(
            Prescription.client_id == Client.id,
            Dispense.prescription_id == Prescription.id,
            Dispense.dispensed_at > cutoff,
        )
    )
    stmt = (
        select(Client)
        .where(
            Client.status == LifecycleStatus.ACTIVE.value,
            ~recent_encounter,
            ~recent_dispense,
            ~_open_task_exists(TaskType.LTFU_REVIEW),
        )
        .order_by(Client.client_code)
    )

    created = 0
    for client in db.scalars(stmt).all():
        _add_task(
            db, client, TaskType.LTFU_REVIEW,
            title=f"LTFU Review: {_client_label(client)}",
            due_date=now,
            payload={
                "client_code": client.client_code,
                "last_visit_threshold": cutoff.isoformat(),
            },
        )
        created += 1
    return created


def _has_open_viral_load_lab_task(db: Session, client_id: str) -> bool:
    payloads = db.scalars(
        select(Task.payload).where(
            Task.client_id == client_id,
            Task.type == TaskType.LABS_PENDING.value,
            Task.status == TaskStatus.OPEN.value,
        )
    ).all()
    # Manually created tasks may carry any JSON payload.
    return any(
        isinstance(payload, dict)
        and isinstance(payload.get("missing_labs"), list)
        and HIV_VL_PANEL_CODE in payload["missing_labs"]
        for payload in payloads
    )


def generate_lab_tasks(db: Session, now: datetime) -> int:
    cutoff = add_months(now, -LAB_DUE_MONTHS)

    stmt = (
        select(Client)
        .where(
            Client.status == LifecycleStatus.ACTIVE.value,
            _active_arv_prescription(),
            ~_viral_load_reported_since(cutoff),
        )
        .order_by(Client.client_code)
    )

    created = 0
    for client in db.scalars(stmt).all():
        if _has_open_viral_load_lab_task(db, client.id):
            continue
        _add_task(
            db, client, TaskType.LABS_PENDING,
            title=f"HIV Viral Load Due: {_client_label(client)}",
            due_date=now,
            payload={
                "client_code": client.client_code,
                "missing_labs": [HIV_VL_PANEL_CODE],
                "reason": "Six-month monitoring requirement",
            },
        )
        created += 1
    return created


def _has_open_refill_task(db: Session, client_id: str, task_type: TaskType,
                          prescription_id: str) -> bool:
    payloads = db.scalars(
        select(Task.payload).where(
            Task.client_id == client_id,
            Task.type == task_type.value,
            Task.status == TaskStatus.OPEN.value,
        )
    ).all()
    return any(
        payload.get("prescription_id") == prescription_id
        for payload in payloads
        if isinstance(payload, dict)
    )


def generate_refill_tasks(db: Session, now: datetime) -> int:
    window_end = now + timedelta(days=REFILL_WINDOW_DAYS)

    stmt = (
        select(Dispense)
        .join(Dispense.prescription)
        .where(
            Dispense.next_refill_date >= now,
            Dispense.next_refill_date <= window_end,
            Prescription.category.in_(list(REFILL_TASK_TYPES)),
        )
        .order_by(Dispense.next_refill_date)
    )

    created = 0
    for dispense in db.scalars(stmt).all():
        prescription = dispense.prescription
        task_type = REFILL_TASK_TYPES[prescription.category]
        if _has_open_refill_task(db, prescription.client_id, task_type, prescription.id):
            continue
        _add_task(
            db, prescription.client, task_type,
            title=f"{prescription.category} Refill Due: {_client_label(prescription.client)}",
            due_date=dispense.next_refill_date,
            payload={
                "prescription_id": prescription.id,
                "regimen_name": prescription.regimen.name if prescription.regimen else None,
                "days_supply": dispense.days_supply,
            },
        )
        created += 1
    return created


def generate_vl_monitor_tasks(db: Session, now: datetime) -> int:
    cutoff = add_months(now, -VL_MONITOR_MONTHS)

    stmt = (
        select(Client)
        .where(
            Client.status == LifecycleStatus.ACTIVE.value,
            _active_arv_prescription(),
            ~_viral_load_reported_since(cutoff),
            ~_open_task_exists(TaskType.VL_MONITOR),
        )
        .order_by(Client.client_code)
    )

    created = 0
    for client in db.scalars(stmt).all():
        _add_task(
            db, client, TaskType.VL_MONITOR,
            title=f"VL Monitoring Due: {_client_label(client)}",
            due_date=now,
            payload={
                "client_code": client.client_code,
                "reason": "Annual monitoring requirement",
            },
        )
        created += 1
    return created


# ── Entry points ─────────────────────────────────────────────────────

def generate_tasks(db: Session, now: Optional[datetime] = None) -> TaskGenerationReport:
    """Run all four scans against *db* without committing."""
    now = now or utcnow()
    report = TaskGenerationReport()
    report.ltfu_review = generate_ltfu_tasks(db, now)
    report.labs_pending = generate_lab_tasks(db, now)
    report.refills = generate_refill_tasks(db, now)
    report.vl_monitor = generate_vl_monitor_tasks(db, now)
    return report


def run_task_generation(session_factory: sessionmaker,
                        now: Optional[datetime] = None) -> TaskGenerationReport:
    """Run every scan in a single transaction; nothing is committed on failure."""
    try:
        with session_scope(session_factory) as db:
            report = generate_tasks(db, now)
    except Exception as e:
        logger.exception("Task generation failed; transaction rolled back")
        raise TransactionFailure(f"Task generation failed: {e}") from e

    logger.info("Task generation complete: %s", report.to_dict())
    return report

