"""
Reference data and demo records for a fresh database.
"""

import random
from datetime import timedelta
from typing import Dict, List, Optional

from faker import Faker
from sqlalchemy import select
from sqlalchemy.orm import Session

from hivcare.config import CD4_PANEL_CODE, HIV_VL_PANEL_CODE
from hivcare.constants import (
    EncounterType,
    LifecycleStatus,
    LookupType,
    MedicationCategory,
    ResultStatus,
    Role,
    SexAtBirth,
)
from hivcare.database import utcnow
from hivcare.entities import (
    Client,
    ClientPopulation,
    ClinicalSummary,
    Dispense,
    Encounter,
    Facility,
    LabPanel,
    LabResult,
    Lookup,
    Medication,
    Prescription,
    Regimen,
    User,
    UserRole,
)

DEFAULT_FACILITY = ("MAIN", "Main Treatment Hub")

LOOKUPS = {
    LookupType.LAB_PANEL: [
        (HIV_VL_PANEL_CODE, "HIV Viral Load"),
        (CD4_PANEL_CODE, "CD4 Count"),
        ("CBC", "Complete Blood Count"),
        ("CHEM", "Blood Chemistry"),
    ],
    LookupType.LAB_TEST: [
        ("VL_COPIES", "HIV-1 RNA (copies/mL)"),
        ("CD4_ABS", "CD4 absolute count (cells/uL)"),
        ("HGB", "Hemoglobin"),
        ("CREA", "Creatinine"),
    ],
    LookupType.POPULATION: [
        ("MSM", "Men who have sex with men"),
        ("TGW", "Transgender women"),
        ("PWID", "People who inject drugs"),
        ("FSW", "Female sex workers"),
        ("GEN", "General population"),
    ],
}

REGIMENS = [
    ("TDF/3TC/DTG", MedicationCategory.ARV),
    ("TDF/3TC/EFV", MedicationCategory.ARV),
    ("AZT/3TC/LPV/r", MedicationCategory.ARV),
    ("TDF/FTC", MedicationCategory.PREP),
]

MEDICATIONS = [
    ("TLD", "Tenofovir/Lamivudine/Dolutegravir", MedicationCategory.ARV),
    ("TLE", "Tenofovir/Lamivudine/Efavirenz", MedicationCategory.ARV),
    ("TDF-FTC", "Tenofovir/Emtricitabine", MedicationCategory.PREP),
    ("INH", "Isoniazid", MedicationCategory.TB_PROPHYLAXIS),
    ("CTX", "Cotrimoxazole", MedicationCategory.OTHER),
]


def _get_or_create(db: Session, entity, defaults: Optional[dict] = None, **keys):
    obj = db.scalars(select(entity).filter_by(**keys)).first()
    if obj is None:
        obj = entity(**keys, **(defaults or {}))
        db.add(obj)
        db.flush()
    return obj


def seed_reference_data(db: Session) -> Facility:
    """Insert the facility, lookups, regimens and medications if missing."""
    code, name = DEFAULT_FACILITY
    facility = _get_or_create(db, Facility, {"name": name}, code=code)

    for lookup_type, entries in LOOKUPS.items():
        for entry_code, label in entries:
            _get_or_create(db, Lookup, {"label": label}, type=lookup_type.value, code=entry_code)

    for regimen_name, category in REGIMENS:
        _get_or_create(db, Regimen, name=regimen_name, category=category.value)

    for med_code, med_name, category in MEDICATIONS:
        _get_or_create(db, Medication, {"name": med_name, "category": category.value}, code=med_code)

    return facility


def seed_user(db: Session, email: str, display_name: str, roles: List[Role],
              facility: Optional[Facility] = None, phone: Optional[str] = None) -> User:
    user = db.scalars(select(User).where(User.email == email)).first()
    if user is None:
        user = User(email=email, display_name=display_name, phone=phone,
                    facility_id=facility.id if facility else None)
        db.add(user)
        db.flush()
    held = set(user.role_names)
    for role in roles:
        if role.value not in held:
            user.roles.append(UserRole(user_id=user.id, role=role.value))
    db.flush()
    return user


def _lookups_by_code(db: Session, lookup_type: LookupType) -> Dict[str, Lookup]:
    rows = db.scalars(select(Lookup).where(Lookup.type == lookup_type.value)).all()
    return {row.code: row for row in rows}


def seed_demo_clients(db: Session, facility: Facility, count: int = 25,
                      seed: int = 42) -> int:
    """
    Create *count* fake clients with a visit history, CD4 and viral load
    results and an ARV prescription. Deterministic for a given *seed*.
    """
    fake = Faker()
    Faker.seed(seed)
    rng = random.Random(seed)
    now = utcnow()

    panels = _lookups_by_code(db, LookupType.LAB_PANEL)
    tests = _lookups_by_code(db, LookupType.LAB_TEST)
    populations = list(_lookups_by_code(db, LookupType.POPULATION).values())
    arv_regimens = db.scalars(
        select(Regimen).where(Regimen.category == MedicationCategory.ARV.value)
    ).all()
    existing = set(db.scalars(select(Client.client_code)).all())

    created = 0
    for i in range(count):
        client_code = f"DEMO-{i + 1:04d}"
        if client_code in existing:
            continue

        enrolled = now - timedelta(days=rng.randint(30, 900))
        last_visit = enrolled + timedelta(days=rng.randint(0, max(0, (now - enrolled).days)))
        sex = rng.choice([SexAtBirth.MALE, SexAtBirth.FEMALE])
        client = Client(
            facility_id=facility.id,
            client_code=client_code,
            uic=f"UIC{seed:02d}{i + 1:06d}",
            legal_surname=fake.last_name(),
            legal_first=fake.first_name_male() if sex == SexAtBirth.MALE else fake.first_name_female(),
            date_of_birth=fake.date_of_birth(minimum_age=18, maximum_age=65),
            sex_at_birth=sex.value,
            contact_number=fake.msisdn()[:11],
            home_address=fake.address().replace("\n", ", "),
            occupation=fake.job()[:100],
            status=LifecycleStatus.ACTIVE.value,
            date_enrolled=enrolled,
            last_visit_at=last_visit,
        )
        db.add(client)
        db.flush()
        if populations:
            client.populations.append(
                ClientPopulation(client_id=client.id, population_id=rng.choice(populations).id)
            )
        db.add(ClinicalSummary(client_id=client.id))

        db.add(Encounter(client_id=client.id, date=enrolled, type=EncounterType.INTAKE.value))
        if last_visit > enrolled:
            db.add(Encounter(client_id=client.id, date=last_visit, type=EncounterType.FOLLOW_UP.value))

        _add_result(db, client, panels[CD4_PANEL_CODE], tests["CD4_ABS"],
                    enrolled + timedelta(days=7), float(rng.randint(50, 900)), "cells/uL")
        if rng.random() < 0.8:
            _add_result(db, client, panels[HIV_VL_PANEL_CODE], tests["VL_COPIES"],
                        enrolled + timedelta(days=rng.randint(90, 200)),
                        float(rng.choice([20, 40, 200, 800, 5000, 120000])), "copies/mL")

        if arv_regimens:
            start = enrolled + timedelta(days=7)
            prescription = Prescription(
                client_id=client.id,
                regimen_id=rng.choice(arv_regimens).id,
                category=MedicationCategory.ARV.value,
                start_date=start,
                is_active=True,
            )
            db.add(prescription)
            db.flush()
            dispensed = last_visit
            db.add(Dispense(
                prescription_id=prescription.id,
                dispensed_at=dispensed,
                quantity=30,
                unit="tablets",
                days_supply=30,
                next_refill_date=dispensed + timedelta(days=30),
            ))
        created += 1

    db.flush()
    return created


def _add_result(db: Session, client: Client, panel_type: Lookup, test_type: Lookup,
                reported_at, value: float, unit: str) -> None:
    panel = LabPanel(
        client_id=client.id,
        panel_type_id=panel_type.id,
        ordered_at=reported_at - timedelta(days=3),
        collected_at=reported_at - timedelta(days=2),
        reported_at=reported_at,
        status=ResultStatus.POSITIVE.value,
    )
    db.add(panel)
    db.flush()
    db.add(LabResult(panel_id=panel.id, test_type_id=test_type.id, value_num=value, unit=unit))
