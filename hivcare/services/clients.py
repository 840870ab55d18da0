"""
Client registry: search, enrolment, detail view and updates.
"""

import logging
from typing import List, Optional

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from hivcare.constants import (
    Action,
    LifecycleStatus,
    LookupType,
    Resource,
    SexAtBirth,
    TaskStatus,
)
from hivcare.database import utcnow
from hivcare.entities import (
    Client,
    ClientPopulation,
    ClinicalSummary,
    Encounter,
    LabPanel,
    Lookup,
    Prescription,
    Task,
)
from hivcare.errors import Conflict, ValidationFailed
from hivcare.models import ResourceRecord, SessionData
from hivcare.rbac import require_permission
from hivcare.services.common import (
    apply_scope,
    clamp_limit,
    client_record,
    get_or_404,
    parse_date,
    parse_enum,
    require_fields,
)

logger = logging.getLogger(__name__)

# Request fields copied verbatim onto the client row.
_TEXT_FIELDS = (
    "phil_health", "legal_middle", "suffix", "preferred_name", "contact_number",
    "email", "home_address", "occupation", "case_manager_id", "notes",
)


def list_clients(db: Session, session: SessionData, search: Optional[str] = None,
                 status: Optional[str] = None, limit=None) -> List[Client]:
    limit = clamp_limit(limit)
    status = parse_enum(LifecycleStatus, status, "status")

    stmt = select(Client)
    stmt = apply_scope(
        stmt, session, Action.LIST, Resource.CLIENTS,
        facility_column=Client.facility_id,
        assigned_column=Client.case_manager_id,
        owner_column=Client.created_by_id,
    )
    if status:
        stmt = stmt.where(Client.status == status.value)
    if search and search.strip():
        prefix = f"{search.strip().lower()}%"
        stmt = stmt.where(or_(
            func.lower(Client.legal_surname).like(prefix),
            func.lower(Client.client_code).like(prefix),
            func.lower(Client.uic).like(prefix),
        ))
    stmt = stmt.order_by(Client.legal_surname, Client.legal_first).limit(limit)
    return list(db.scalars(stmt).all())


def _check_populations(db: Session, population_ids: List[str]) -> None:
    if not population_ids:
        return
    found = db.scalars(
        select(Lookup.id).where(
            Lookup.id.in_(population_ids),
            Lookup.type == LookupType.POPULATION.value,
        )
    ).all()
    unknown = sorted(set(population_ids) - set(found))
    if unknown:
        raise ValidationFailed("Validation failed", {"population_ids": f"unknown ids {unknown}"})


def create_client(db: Session, session: SessionData, data: dict) -> Client:
    """Enrol a client with its population links and an empty clinical summary."""
    require_fields(data, ("client_code", "uic", "legal_surname", "legal_first", "sex_at_birth"))
    if not session.facility_id:
        raise ValidationFailed("User must be assigned to a facility")

    require_permission(
        session, Action.CREATE, Resource.CLIENTS,
        ResourceRecord(
            user_id=session.user_id,
            facility_id=session.facility_id,
            assigned_user_id=data.get("case_manager_id"),
        ),
    )

    existing = db.scalars(
        select(Client.id).where(or_(
            Client.uic == data["uic"],
            (Client.facility_id == session.facility_id) & (Client.client_code == data["client_code"]),
        ))
    ).first()
    if existing:
        raise Conflict("Client with this UIC or client code already exists")

    population_ids = list(dict.fromkeys(data.get("population_ids") or []))
    _check_populations(db, population_ids)

    now = utcnow()
    client = Client(
        facility_id=session.facility_id,
        current_facility_id=session.facility_id,
        client_code=data["client_code"],
        uic=data["uic"],
        legal_surname=data["legal_surname"],
        legal_first=data["legal_first"],
        date_of_birth=parse_date(data.get("date_of_birth"), "date_of_birth"),
        sex_at_birth=parse_enum(SexAtBirth, data["sex_at_birth"], "sex_at_birth").value,
        created_by_id=session.user_id,
        status=LifecycleStatus.ACTIVE.value,
        date_enrolled=now,
    )
    for field in _TEXT_FIELDS:
        if field in data:
            setattr(client, field, data[field])

    db.add(client)
    db.flush()

    for population_id in population_ids:
        db.add(ClientPopulation(client_id=client.id, population_id=population_id))
    db.add(ClinicalSummary(client_id=client.id, updated_at=now))
    db.flush()

    logger.info("Enrolled client %s at facility %s", client.id, client.facility_id)
    return client


def get_client(db: Session, session: SessionData, client_id: str, action: Action = Action.READ) -> Client:
    client = get_or_404(db, Client, client_id, "Client")
    require_permission(session, action, Resource.CLIENTS, client_record(client))
    return client


def get_client_detail(db: Session, session: SessionData, client_id: str) -> dict:
    """The client plus summary, open tasks, recent encounters, labs and active prescriptions."""
    client = get_client(db, session, client_id)

    open_tasks = db.scalars(
        select(Task)
        .where(Task.client_id == client.id, Task.status == TaskStatus.OPEN.value)
        .order_by(Task.due_date)
        .limit(10)
    ).all()
    encounters = db.scalars(
        select(Encounter)
        .where(Encounter.client_id == client.id)
        .order_by(Encounter.date.desc())
        .limit(5)
    ).all()
    lab_panels = db.scalars(
        select(LabPanel)
        .where(LabPanel.client_id == client.id)
        .order_by(LabPanel.reported_at.desc())
        .limit(10)
    ).all()
    prescriptions = db.scalars(
        select(Prescription)
        .where(Prescription.client_id == client.id, Prescription.is_active.is_(True))
        .order_by(Prescription.start_date.desc())
    ).all()

    return {
        "client": client,
        "summary": client.clinical_summary,
        "open_tasks": list(open_tasks),
        "encounters": list(encounters),
        "lab_panels": list(lab_panels),
        "prescriptions": list(prescriptions),
    }


def update_client(db: Session, session: SessionData, client_id: str, data: dict) -> Client:
    client = get_client(db, session, client_id, Action.UPDATE)

    new_code = data.get("client_code")
    if new_code and new_code != client.client_code:
        taken = db.scalars(
            select(Client.id).where(
                Client.facility_id == client.facility_id,
                Client.client_code == new_code,
                Client.id != client.id,
            )
        ).first()
        if taken:
            raise Conflict("Client code already exists in this facility")
        client.client_code = new_code

    for field in ("legal_surname", "legal_first"):
        if data.get(field):
            setattr(client, field, data[field])
    for field in _TEXT_FIELDS:
        if field in data:
            setattr(client, field, data[field])
    if "date_of_birth" in data:
        client.date_of_birth = parse_date(data["date_of_birth"], "date_of_birth")
    if data.get("sex_at_birth"):
        client.sex_at_birth = parse_enum(SexAtBirth, data["sex_at_birth"], "sex_at_birth").value
    if data.get("status"):
        client.status = parse_enum(LifecycleStatus, data["status"], "status").value

    if data.get("population_ids") is not None:
        population_ids = list(dict.fromkeys(data["population_ids"]))
        _check_populations(db, population_ids)
        client.populations.clear()
        db.flush()
        for population_id in population_ids:
            client.populations.append(ClientPopulation(client_id=client.id, population_id=population_id))

    client.updated_at = utcnow()
    db.flush()
    return client
