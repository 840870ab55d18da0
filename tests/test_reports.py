"""
Tests for dashboard metrics.
"""

from datetime import datetime, timedelta

import pandas as pd

from conftest import NOW, lookup, make_client, make_prescription
from hivcare.constants import LifecycleStatus, LookupType, ResultStatus, TaskStatus, TaskType
from hivcare.entities import ClientPopulation, ClinicalSummary, Facility, LabPanel, Task
from hivcare.reports import (
    build_dashboard,
    enrollments_by_month,
    facility_metrics,
    refresh_dashboard_metrics,
    task_summary,
)


def add_task(db, client, task_type, due, status=TaskStatus.OPEN):
    db.add(Task(client_id=client.id, type=task_type.value, title=task_type.value,
                due_date=due, status=status.value))
    db.flush()


# ── Tests: pure aggregations ─────────────────────────────────────────

def test_enrollments_by_month_zero_fills():
    dates = pd.Series([datetime(2026, 3, 2), datetime(2026, 3, 20), datetime(2026, 1, 5), None])
    trend = enrollments_by_month(dates, NOW, months=4)
    assert trend == [
        {"month": "2025-12", "count": 0},
        {"month": "2026-01", "count": 1},
        {"month": "2026-02", "count": 0},
        {"month": "2026-03", "count": 2},
    ]


def test_enrollments_by_month_with_no_clients():
    trend = enrollments_by_month(pd.Series([], dtype="datetime64[ns]"), NOW, months=3)
    assert [m["count"] for m in trend] == [0, 0, 0]


def test_task_summary():
    tasks = pd.DataFrame([
        {"type": TaskType.LTFU_REVIEW.value, "status": "OPEN", "due_date": NOW - timedelta(days=3)},
        {"type": TaskType.FOLLOW_UP.value, "status": "OPEN", "due_date": NOW - timedelta(days=1)},
        {"type": TaskType.REFILL_ARV.value, "status": "OPEN", "due_date": NOW + timedelta(hours=2)},
        {"type": TaskType.VL_MONITOR.value, "status": "DONE", "due_date": NOW - timedelta(days=9)},
    ])
    assert task_summary(tasks, NOW) == {"overdue": 2, "due_today": 1, "critical": 1}


def test_task_summary_empty():
    assert task_summary(pd.DataFrame(), NOW) == {"overdue": 0, "due_today": 0, "critical": 0}


# ── Tests: database-backed dashboard ─────────────────────────────────

def test_build_dashboard(db, facility):
    recent = make_client(db, facility, code="C-1", enrolled=datetime(2026, 3, 3))
    older = make_client(db, facility, code="C-2", enrolled=datetime(2025, 11, 20),
                        status=LifecycleStatus.LOST_TO_FOLLOW_UP)
    db.add(ClientPopulation(client_id=recent.id,
                            population_id=lookup(db, LookupType.POPULATION, "MSM").id))
    db.add(ClinicalSummary(client_id=recent.id, viral_load_status="SUPPRESSED"))
    db.add(LabPanel(client_id=older.id, panel_type_id=lookup(db, LookupType.LAB_PANEL, "CD4").id,
                    status=ResultStatus.PENDING.value))
    make_prescription(db, recent)
    add_task(db, recent, TaskType.REFILL_ARV, NOW + timedelta(days=2))
    add_task(db, older, TaskType.LTFU_REVIEW, NOW - timedelta(days=1))
    db.flush()

    dashboard = build_dashboard(db, facility.id, NOW)

    assert dashboard["overview"] == {
        "total_clients": 2,
        "recent_enrollments": 1,
        "recent_encounters": 0,
        "pending_labs_count": 1,
    }
    statuses = {row["status"]: row["count"] for row in dashboard["clients"]["by_status"]}
    assert statuses == {"ACTIVE": 1, "LOST_TO_FOLLOW_UP": 1}
    assert dashboard["prescriptions"]["active_by_category"] == [{"category": "ARV", "count": 1}]
    assert dashboard["tasks"]["overdue"] == 1
    [upcoming] = dashboard["tasks"]["upcoming"]
    assert upcoming["client_code"] == "C-1"
    assert dashboard["critical_tasks_count"] == 1
    assert dashboard["trends"]["viral_load_status"] == [{"status": "SUPPRESSED", "count": 1}]
    assert len(dashboard["trends"]["enrollments_by_month"]) == 12


def test_dashboard_is_restricted_to_facility(db, facility):
    other = Facility(code="NORTH", name="North Clinic")
    db.add(other)
    db.flush()
    make_client(db, facility, code="C-1")
    make_client(db, other, code="C-2")

    assert build_dashboard(db, other.id, NOW)["overview"]["total_clients"] == 1
    assert build_dashboard(db, None, NOW)["overview"]["total_clients"] == 2


def test_facility_metrics(db, facility):
    empty = Facility(code="EMPTY", name="Empty Clinic")
    db.add(empty)
    db.flush()
    client = make_client(db, facility, code="C-1")
    make_client(db, facility, code="C-2", status=LifecycleStatus.INACTIVE)
    add_task(db, client, TaskType.FOLLOW_UP, NOW)

    metrics = facility_metrics(db)

    assert metrics[0] == {
        "code": facility.code,
        "name": facility.name,
        "total_clients": 2,
        "active_clients": 1,
        "open_tasks": 1,
    }
    assert metrics[1]["code"] == "EMPTY"
    assert metrics[1]["total_clients"] == 0


def test_refresh_dashboard_metrics_shape(db, facility):
    make_client(db, facility)
    metrics = refresh_dashboard_metrics(db, NOW)
    assert set(metrics) == {
        "enrollment_trends", "status_counts", "population_counts", "task_summary",
        "facility_metrics", "recent_activity", "critical_tasks_count",
    }
    assert [a["type"] for a in metrics["recent_activity"]] == ["encounter", "dispense", "lab_result"]
