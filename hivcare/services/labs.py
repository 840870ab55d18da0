"""
Lab panels and their results.
"""

from typing import List

from sqlalchemy import select
from sqlalchemy.orm import Session

from hivcare.constants import Action, LookupType, Resource, ResultStatus
from hivcare.database import utcnow
from hivcare.entities import Client, Encounter, LabPanel, LabResult, Lookup
from hivcare.errors import RecordNotFound, ValidationFailed
from hivcare.models import SessionData
from hivcare.rbac import require_permission
from hivcare.services.common import (
    clinical_record,
    get_or_404,
    parse_datetime,
    parse_enum,
    parse_number,
    require_fields,
)


def _active_lookup(db: Session, lookup_id, lookup_type: LookupType):
    if not lookup_id:
        return None
    return db.scalars(
        select(Lookup).where(
            Lookup.id == lookup_id,
            Lookup.type == lookup_type.value,
            Lookup.active.is_(True),
        )
    ).first()


def create_lab_panel(db: Session, session: SessionData, data: dict) -> LabPanel:
    require_fields(data, ("client_id", "panel_type_id"))
    client = get_or_404(db, Client, data["client_id"], "Client")
    require_permission(session, Action.CREATE, Resource.LAB_PANELS,
                       clinical_record(client, session.user_id))

    encounter_id = data.get("encounter_id")
    if encounter_id:
        encounter = db.get(Encounter, encounter_id)
        if encounter is None or encounter.client_id != client.id:
            raise RecordNotFound("Encounter not found for this client")

    if _active_lookup(db, data["panel_type_id"], LookupType.LAB_PANEL) is None:
        raise RecordNotFound("Lab panel type not found")

    panel = LabPanel(
        client_id=client.id,
        encounter_id=encounter_id,
        panel_type_id=data["panel_type_id"],
        ordered_at=parse_datetime(data.get("ordered_at"), "ordered_at") or utcnow(),
        collected_at=parse_datetime(data.get("collected_at"), "collected_at"),
        reported_at=parse_datetime(data.get("reported_at"), "reported_at"),
        lab_name=data.get("lab_name"),
        status=parse_enum(ResultStatus, data.get("status"), "status", ResultStatus.PENDING).value,
        created_by_id=session.user_id,
    )
    db.add(panel)
    db.flush()
    return panel


def _panel_for_results(db: Session, session: SessionData, panel_id) -> LabPanel:
    panel = get_or_404(db, LabPanel, panel_id, "Lab panel")
    client = db.get(Client, panel.client_id)
    # Entering results counts as updating the panel.
    require_permission(session, Action.UPDATE, Resource.LAB_PANELS,
                       clinical_record(client, panel.created_by_id, panel.id))
    return panel


def _build_result(panel_id: str, item: dict, index=None) -> LabResult:
    prefix = f"results[{index}]." if index is not None else ""
    value_num = parse_number(item.get("value_num"), f"{prefix}value_num")
    value_text = item.get("value_text")
    if value_num is None and value_text in (None, ""):
        raise ValidationFailed(
            "Validation failed",
            {f"{prefix}value": "Either value_num or value_text must be provided"},
        )
    abnormal = item.get("abnormal")
    return LabResult(
        panel_id=panel_id,
        test_type_id=item.get("test_type_id"),
        value_num=value_num,
        value_text=value_text,
        unit=item.get("unit"),
        ref_low=parse_number(item.get("ref_low"), f"{prefix}ref_low"),
        ref_high=parse_number(item.get("ref_high"), f"{prefix}ref_high"),
        abnormal=bool(abnormal) if abnormal is not None else None,
    )


def add_lab_result(db: Session, session: SessionData, data: dict) -> LabResult:
    require_fields(data, ("panel_id", "test_type_id"))
    panel = _panel_for_results(db, session, data["panel_id"])
    if _active_lookup(db, data["test_type_id"], LookupType.LAB_TEST) is None:
        raise RecordNotFound("Lab test type not found")

    result = _build_result(panel.id, data)
    db.add(result)
    db.flush()
    return result


def add_lab_results(db: Session, session: SessionData, data: dict) -> List[LabResult]:
    """
    Store a batch of results for one panel and stamp the panel as reported now.

    An optional ``status`` also sets the panel's result status.
    """
    require_fields(data, ("panel_id",))
    items = data.get("results")
    if not isinstance(items, list) or not items:
        raise ValidationFailed("Validation failed", {"results": "must be a non-empty list"})

    panel = _panel_for_results(db, session, data["panel_id"])

    test_type_ids = [item.get("test_type_id") for item in items]
    found = set(db.scalars(
        select(Lookup.id).where(
            Lookup.id.in_([t for t in test_type_ids if t]),
            Lookup.type == LookupType.LAB_TEST.value,
            Lookup.active.is_(True),
        )
    ).all())
    if any(t not in found for t in test_type_ids):
        raise RecordNotFound("One or more test types not found")

    results = [_build_result(panel.id, item, i) for i, item in enumerate(items)]
    db.add_all(results)

    panel.reported_at = utcnow()
    if data.get("status"):
        panel.status = parse_enum(ResultStatus, data["status"], "status").value
    db.flush()
    return results
