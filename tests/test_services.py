"""
Tests for the clinical services behind the REST API.
"""

from datetime import date, datetime, timedelta

import pytest
from sqlalchemy import select

from conftest import NOW, lookup, make_client, make_prescription, make_user, regimen, session_for
from hivcare.constants import LookupType, MedicationCategory, ResultStatus, Role, TaskStatus, TaskType
from hivcare.dates import add_months, start_of_day
from hivcare.entities import ClinicalSummary, LabPanel, Prescription, Task
from hivcare.errors import AuthorizationDenied, Conflict, RecordNotFound, ValidationFailed
from hivcare.services.clients import create_client, update_client
from hivcare.services.common import clamp_limit, parse_bool, parse_datetime, parse_enum, parse_number
from hivcare.services.labs import add_lab_result, add_lab_results, create_lab_panel
from hivcare.services.pharmacy import create_dispense, create_prescription
from hivcare.services.tasks import create_task, transition_task


# ── Tests: dates ─────────────────────────────────────────────────────

@pytest.mark.parametrize("moment, months, expected", [
    (datetime(2026, 1, 31), 1, datetime(2026, 2, 28)),
    (datetime(2024, 1, 31), 1, datetime(2024, 2, 29)),
    (datetime(2026, 3, 15), -3, datetime(2025, 12, 15)),
    (datetime(2026, 11, 30), 3, datetime(2027, 2, 28)),
    (datetime(2026, 5, 10, 8, 45), 0, datetime(2026, 5, 10, 8, 45)),
])
def test_add_months_clamps_to_month_end(moment, months, expected):
    assert add_months(moment, months) == expected


def test_start_of_day():
    assert start_of_day(datetime(2026, 3, 15, 23, 59, 1, 5)) == datetime(2026, 3, 15)


# ── Tests: input coercion ────────────────────────────────────────────

def test_parse_datetime_normalises_to_naive_utc():
    assert parse_datetime("2026-03-15T10:00:00+08:00", "at") == datetime(2026, 3, 15, 2, 0)
    assert parse_datetime("2026-03-15T10:00:00Z", "at") == datetime(2026, 3, 15, 10, 0)
    assert parse_datetime(None, "at") is None


def test_parse_datetime_rejects_garbage():
    with pytest.raises(ValidationFailed) as exc:
        parse_datetime("next tuesday", "dispensed_at")
    assert exc.value.details == {"dispensed_at": "invalid datetime"}


def test_parse_number_and_enum():
    assert parse_number("12.5", "v") == 12.5
    assert parse_number("", "v") is None
    with pytest.raises(ValidationFailed):
        parse_number(True, "v")
    with pytest.raises(ValidationFailed):
        parse_number("lots", "v")
    assert parse_enum(ResultStatus, "POSITIVE", "status") == ResultStatus.POSITIVE
    assert parse_enum(ResultStatus, None, "status", ResultStatus.PENDING) == ResultStatus.PENDING
    with pytest.raises(ValidationFailed):
        parse_enum(ResultStatus, "MAYBE", "status")


def test_parse_bool():
    assert parse_bool(None, True) is True
    assert parse_bool("yes", False) is True
    assert parse_bool("0", True) is False


def test_clamp_limit():
    assert clamp_limit(None) == 50
    assert clamp_limit("10") == 10
    for bad in ("0", "101", "ten"):
        with pytest.raises(ValidationFailed):
            clamp_limit(bad)


# ── Tests: clients ───────────────────────────────────────────────────

def client_payload(**overrides):
    payload = {
        "client_code": "C-0100",
        "uic": "UIC-0100",
        "legal_surname": "Reyes",
        "legal_first": "Jose",
        "sex_at_birth": "MALE",
        "date_of_birth": "1990-04-02",
    }
    payload.update(overrides)
    return payload


def test_create_client_links_populations_and_summary(db, facility):
    user = make_user(db, facility, [Role.CASE_MANAGER])
    msm = lookup(db, LookupType.POPULATION, "MSM")

    client = create_client(db, session_for(user, [Role.CASE_MANAGER]),
                           client_payload(population_ids=[msm.id, msm.id]))

    assert client.facility_id == facility.id
    assert client.date_of_birth == date(1990, 4, 2)
    assert [p.population_id for p in client.populations] == [msm.id]
    assert db.get(ClinicalSummary, client.id) is not None


def test_create_client_rejects_duplicates_and_unknown_populations(db, facility):
    user = make_user(db, facility, [Role.CASE_MANAGER])
    session = session_for(user, [Role.CASE_MANAGER])
    create_client(db, session, client_payload())

    with pytest.raises(Conflict):
        create_client(db, session, client_payload(client_code="C-0200"))
    with pytest.raises(ValidationFailed):
        create_client(db, session, client_payload(client_code="C-0300", uic="UIC-0300",
                                                  population_ids=["nope"]))


def test_create_client_requires_facility(db, facility):
    user = make_user(db, None, [Role.DIRECTOR])
    with pytest.raises(ValidationFailed):
        create_client(db, session_for(user, [Role.DIRECTOR]), client_payload())


def test_update_client_replaces_populations(db, facility):
    user = make_user(db, facility, [Role.CASE_MANAGER])
    session = session_for(user, [Role.CASE_MANAGER])
    msm = lookup(db, LookupType.POPULATION, "MSM")
    pwid = lookup(db, LookupType.POPULATION, "PWID")
    client = create_client(db, session, client_payload(population_ids=[msm.id]))

    updated = update_client(db, session, client.id,
                            {"population_ids": [pwid.id], "status": "INACTIVE"})

    assert [p.population_id for p in updated.populations] == [pwid.id]
    assert updated.status == "INACTIVE"


def test_update_client_code_collision(db, facility):
    user = make_user(db, facility, [Role.NURSE])
    session = session_for(user, [Role.NURSE])
    make_client(db, facility, code="C-TAKEN")
    client = make_client(db, facility, code="C-FREE")

    with pytest.raises(Conflict):
        update_client(db, session, client.id, {"client_code": "C-TAKEN"})


# ── Tests: labs ──────────────────────────────────────────────────────

def test_lab_panel_and_results(db, facility):
    user = make_user(db, facility, [Role.PHYSICIAN])
    session = session_for(user, [Role.PHYSICIAN])
    client = make_client(db, facility)
    vl = lookup(db, LookupType.LAB_PANEL, "HIV_VL")
    copies = lookup(db, LookupType.LAB_TEST, "VL_COPIES")

    panel = create_lab_panel(db, session, {"client_id": client.id, "panel_type_id": vl.id})
    assert panel.status == ResultStatus.PENDING.value
    assert panel.reported_at is None

    results = add_lab_results(db, session, {
        "panel_id": panel.id,
        "status": "POSITIVE",
        "results": [{"test_type_id": copies.id, "value_num": "40", "unit": "copies/mL"}],
    })

    db.refresh(panel)
    assert results[0].value_num == 40.0
    assert panel.status == ResultStatus.POSITIVE.value
    assert panel.reported_at is not None


def test_lab_result_needs_a_value(db, facility):
    user = make_user(db, facility, [Role.PHYSICIAN])
    session = session_for(user, [Role.PHYSICIAN])
    client = make_client(db, facility)
    panel = create_lab_panel(db, session, {
        "client_id": client.id,
        "panel_type_id": lookup(db, LookupType.LAB_PANEL, "CD4").id,
    })

    with pytest.raises(ValidationFailed):
        add_lab_result(db, session, {
            "panel_id": panel.id,
            "test_type_id": lookup(db, LookupType.LAB_TEST, "CD4_ABS").id,
        })


def test_unknown_panel_type(db, facility):
    user = make_user(db, facility, [Role.PHYSICIAN])
    client = make_client(db, facility)
    with pytest.raises(RecordNotFound):
        create_lab_panel(db, session_for(user, [Role.PHYSICIAN]),
                         {"client_id": client.id, "panel_type_id": "missing"})


def test_encoder_cannot_enter_results(db, facility):
    encoder = make_user(db, facility, [Role.ENCODER])
    session = session_for(encoder, [Role.ENCODER])
    client = make_client(db, facility)
    panel = create_lab_panel(db, session, {
        "client_id": client.id,
        "panel_type_id": lookup(db, LookupType.LAB_PANEL, "CD4").id,
    })

    with pytest.raises(AuthorizationDenied):
        add_lab_result(db, session, {
            "panel_id": panel.id,
            "test_type_id": lookup(db, LookupType.LAB_TEST, "CD4_ABS").id,
            "value_num": 350,
        })
    assert db.get(LabPanel, panel.id).reported_at is None


# ── Tests: pharmacy ──────────────────────────────────────────────────

def test_new_arv_prescription_ends_previous(db, facility):
    user = make_user(db, facility, [Role.PHYSICIAN])
    client = make_client(db, facility)
    old = make_prescription(db, client)
    arv = regimen(db, MedicationCategory.ARV)

    new = create_prescription(db, session_for(user, [Role.PHYSICIAN]), {
        "client_id": client.id,
        "category": "ARV",
        "regimen_id": arv.id,
        "start_date": "2026-03-01T00:00:00",
    })

    assert old.is_active is False
    assert old.end_date is not None
    active = db.scalars(select(Prescription).where(Prescription.is_active.is_(True))).all()
    assert [p.id for p in active] == [new.id]
    assert db.get(ClinicalSummary, client.id).current_arv_regimen_id == arv.id


def test_prescription_needs_regimen_or_medication(db, facility):
    user = make_user(db, facility, [Role.PHYSICIAN])
    client = make_client(db, facility)
    with pytest.raises(ValidationFailed):
        create_prescription(db, session_for(user, [Role.PHYSICIAN]), {
            "client_id": client.id, "category": "ARV", "start_date": "2026-03-01",
        })


def test_dispense_defaults_next_refill(db, facility):
    user = make_user(db, facility, [Role.PHARMACIST])
    client = make_client(db, facility)
    prescription = make_prescription(db, client)

    dispense = create_dispense(db, session_for(user, [Role.PHARMACIST]), {
        "prescription_id": prescription.id,
        "dispensed_at": "2026-03-01T08:00:00",
        "days_supply": 90,
        "quantity": 90,
    })

    assert dispense.next_refill_date == datetime(2026, 3, 1, 8) + timedelta(days=90)


def test_dispense_rejects_inactive_prescription(db, facility):
    user = make_user(db, facility, [Role.PHARMACIST])
    client = make_client(db, facility)
    prescription = make_prescription(db, client, is_active=False)

    with pytest.raises(ValidationFailed):
        create_dispense(db, session_for(user, [Role.PHARMACIST]),
                        {"prescription_id": prescription.id, "days_supply": 30})


# ── Tests: tasks ─────────────────────────────────────────────────────

def open_task(db, client):
    task = Task(client_id=client.id, type=TaskType.FOLLOW_UP.value, title="Call client",
                due_date=NOW, status=TaskStatus.OPEN.value)
    db.add(task)
    db.flush()
    return task


def test_task_can_be_closed_once(db, facility):
    user = make_user(db, facility, [Role.PHYSICIAN])
    session = session_for(user, [Role.PHYSICIAN])
    task = open_task(db, make_client(db, facility))

    done = transition_task(db, session, task.id, "DONE")
    assert done.status == TaskStatus.DONE.value

    with pytest.raises(ValidationFailed):
        transition_task(db, session, task.id, "OPEN")
    with pytest.raises(ValidationFailed):
        transition_task(db, session, task.id, "DISMISSED")


@pytest.mark.parametrize("payload", [["HIV_VL"], "HIV_VL", 3])
def test_create_task_rejects_non_object_payload(db, facility, payload):
    user = make_user(db, facility, [Role.PHYSICIAN])
    client = make_client(db, facility)

    with pytest.raises(ValidationFailed) as exc:
        create_task(db, session_for(user, [Role.PHYSICIAN]), {
            "client_id": client.id, "type": "LABS_PENDING", "title": "Labs", "payload": payload,
        })
    assert exc.value.details == {"payload": "must be an object"}
    assert db.scalars(select(Task)).all() == []


def test_create_task_defaults_payload(db, facility):
    user = make_user(db, facility, [Role.PHYSICIAN])
    client = make_client(db, facility)

    task = create_task(db, session_for(user, [Role.PHYSICIAN]), {
        "client_id": client.id, "type": "FOLLOW_UP", "title": "Call client",
    })
    assert task.payload == {}
    assert task.created_by_id == user.id
