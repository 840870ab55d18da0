"""
Prescriptions and dispensing.
"""

import logging
from datetime import timedelta
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from hivcare.constants import Action, MedicationCategory, Resource
from hivcare.database import utcnow
from hivcare.entities import (
    Client,
    ClinicalSummary,
    Dispense,
    Medication,
    Prescription,
    Regimen,
)
from hivcare.errors import RecordNotFound, ValidationFailed
from hivcare.models import SessionData
from hivcare.rbac import require_permission
from hivcare.services.common import (
    apply_scope,
    clamp_limit,
    clinical_record,
    get_or_404,
    parse_bool,
    parse_datetime,
    parse_enum,
    parse_number,
    require_fields,
)

logger = logging.getLogger(__name__)

# A new prescription in these categories replaces the client's current one.
SINGLE_ACTIVE_CATEGORIES = (MedicationCategory.ARV, MedicationCategory.PREP)


def list_prescriptions(db: Session, session: SessionData, client_id: Optional[str] = None,
                       category: Optional[str] = None, is_active=None, limit=None) -> List[Prescription]:
    limit = clamp_limit(limit)
    category = parse_enum(MedicationCategory, category, "category")

    stmt = select(Prescription).join(Prescription.client)
    if client_id:
        client = get_or_404(db, Client, client_id, "Client")
        require_permission(session, Action.LIST, Resource.PRESCRIPTIONS,
                           clinical_record(client, None))
        stmt = stmt.where(Prescription.client_id == client.id)
    else:
        stmt = apply_scope(
            stmt, session, Action.LIST, Resource.PRESCRIPTIONS,
            facility_column=Client.facility_id,
            assigned_column=Client.case_manager_id,
            owner_column=Prescription.prescriber_id,
        )

    stmt = stmt.where(Prescription.is_active.is_(parse_bool(is_active, True)))
    if category:
        stmt = stmt.where(Prescription.category == category.value)
    stmt = stmt.order_by(Prescription.start_date.desc()).limit(limit)
    return list(db.scalars(stmt).all())


def _check_catalogue_entry(db: Session, entity, entity_id, category: MedicationCategory, label: str):
    found = db.scalars(
        select(entity).where(
            entity.id == entity_id,
            entity.active.is_(True),
            entity.category == category.value,
        )
    ).first()
    if found is None:
        raise RecordNotFound(f"{label} not found or category mismatch")
    return found


def create_prescription(db: Session, session: SessionData, data: dict) -> Prescription:
    """
    Prescribe a regimen or a single medication.

    An ARV or PrEP prescription ends the client's other active prescriptions of
    the same category and becomes the summary's current regimen.
    """
    require_fields(data, ("client_id", "category", "start_date"))
    if not data.get("regimen_id") and not data.get("medication_id"):
        raise ValidationFailed("Validation failed",
                               {"regimen_id": "Either regimen_id or medication_id must be provided"})

    client = get_or_404(db, Client, data["client_id"], "Client")
    require_permission(session, Action.CREATE, Resource.PRESCRIPTIONS,
                       clinical_record(client, session.user_id))

    category = parse_enum(MedicationCategory, data["category"], "category")
    if data.get("regimen_id"):
        _check_catalogue_entry(db, Regimen, data["regimen_id"], category, "Regimen")
    if data.get("medication_id"):
        _check_catalogue_entry(db, Medication, data["medication_id"], category, "Medication")

    now = utcnow()
    if category in SINGLE_ACTIVE_CATEGORIES:
        previous = db.scalars(
            select(Prescription).where(
                Prescription.client_id == client.id,
                Prescription.category == category.value,
                Prescription.is_active.is_(True),
            )
        ).all()
        for old in previous:
            old.is_active = False
            old.end_date = now
        if previous:
            logger.info("Ended %d active %s prescription(s) for client %s",
                        len(previous), category.value, client.id)

    prescription = Prescription(
        client_id=client.id,
        regimen_id=data.get("regimen_id"),
        medication_id=data.get("medication_id"),
        category=category.value,
        start_date=parse_datetime(data["start_date"], "start_date"),
        end_date=parse_datetime(data.get("end_date"), "end_date"),
        is_active=True,
        prescriber_id=session.user_id,
        instructions=data.get("instructions"),
        reason_change=data.get("reason_change"),
    )
    db.add(prescription)

    if category in SINGLE_ACTIVE_CATEGORIES:
        summary = db.get(ClinicalSummary, client.id)
        if summary is None:
            summary = ClinicalSummary(client_id=client.id)
            db.add(summary)
        if category == MedicationCategory.ARV:
            summary.current_arv_regimen_id = prescription.regimen_id
        else:
            summary.current_prep_regimen_id = prescription.regimen_id
        summary.updated_at = now

    db.flush()
    return prescription


def create_dispense(db: Session, session: SessionData, data: dict) -> Dispense:
    """Record a dispense; the next refill defaults to dispensed_at + days_supply."""
    require_fields(data, ("prescription_id",))
    prescription = get_or_404(db, Prescription, data["prescription_id"], "Prescription")
    require_permission(session, Action.CREATE, Resource.DISPENSES,
                       clinical_record(prescription.client, session.user_id))
    if not prescription.is_active:
        raise ValidationFailed("Prescription is not active")

    dispensed_at = parse_datetime(data.get("dispensed_at"), "dispensed_at") or utcnow()
    days_supply = data.get("days_supply")
    if days_supply is not None:
        days_supply = int(parse_number(days_supply, "days_supply"))
        if days_supply < 0:
            raise ValidationFailed("Validation failed", {"days_supply": "must not be negative"})

    next_refill = parse_datetime(data.get("next_refill_date"), "next_refill_date")
    if next_refill is None and days_supply:
        next_refill = dispensed_at + timedelta(days=days_supply)

    dispense = Dispense(
        prescription_id=prescription.id,
        dispensed_at=dispensed_at,
        quantity=parse_number(data.get("quantity"), "quantity"),
        unit=data.get("unit"),
        days_supply=days_supply,
        next_refill_date=next_refill,
        dispensed_by_id=session.user_id,
        note=data.get("note"),
    )
    db.add(dispense)
    db.flush()
    return dispense
