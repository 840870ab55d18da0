"""
Clinical encounters.
"""

from sqlalchemy.orm import Session

from hivcare.constants import Action, EncounterType, Resource
from hivcare.entities import Client, Encounter
from hivcare.models import SessionData
from hivcare.rbac import require_permission
from hivcare.services.common import clinical_record, get_or_404, parse_datetime, parse_enum, require_fields


def create_encounter(db: Session, session: SessionData, data: dict) -> Encounter:
    """Record a visit and move the client's last-visit marker to its date."""
    require_fields(data, ("client_id", "date", "type"))
    client = get_or_404(db, Client, data["client_id"], "Client")
    require_permission(session, Action.CREATE, Resource.ENCOUNTERS,
                       clinical_record(client, session.user_id))

    visit_date = parse_datetime(data["date"], "date")
    encounter = Encounter(
        client_id=client.id,
        clinician_id=session.user_id,
        date=visit_date,
        type=parse_enum(EncounterType, data["type"], "type").value,
        note=data.get("note"),
    )
    db.add(encounter)

    client.last_visit_at = visit_date
    db.flush()
    return encounter
