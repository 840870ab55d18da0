"""
Shared fixtures: a throwaway SQLite database, record factories and a fake
OTP notifier.
"""

from datetime import datetime, timedelta

import pytest
from sqlalchemy import create_engine, select

from hivcare.constants import (
    LifecycleStatus,
    LookupType,
    MedicationCategory,
    ResultStatus,
    Role,
)
from hivcare.database import init_db, make_session_factory
from hivcare.entities import (
    Client,
    Dispense,
    LabPanel,
    LabResult,
    Lookup,
    Prescription,
    Regimen,
    User,
    UserRole,
)
from hivcare.models import SessionData
from hivcare.notifications import DeliveryResult
from hivcare.rate_limit import limiter
from hivcare.seed import seed_reference_data

NOW = datetime(2026, 3, 15, 9, 30)


# ── Database ─────────────────────────────────────────────────────────

@pytest.fixture
def engine(tmp_path):
    engine = create_engine(f"sqlite:///{tmp_path / 'hivcare-test.db'}", future=True)
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return make_session_factory(engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.rollback()
    session.close()


@pytest.fixture
def facility(db):
    facility = seed_reference_data(db)
    db.commit()
    return facility


@pytest.fixture(autouse=True)
def reset_rate_limits():
    limiter.reset()
    yield
    limiter.reset()


# ── Factories ────────────────────────────────────────────────────────

def lookup(db, lookup_type: LookupType, code: str) -> Lookup:
    return db.scalars(
        select(Lookup).where(Lookup.type == lookup_type.value, Lookup.code == code)
    ).one()


def regimen(db, category: MedicationCategory = MedicationCategory.ARV) -> Regimen:
    return db.scalars(
        select(Regimen).where(Regimen.category == category.value).order_by(Regimen.name)
    ).first()


def make_user(db, facility, roles, email="user@example.org", phone=None):
    user = User(
        email=email,
        phone=phone,
        display_name=email.split("@")[0].title(),
        facility_id=facility.id if facility else None,
    )
    db.add(user)
    db.flush()
    for role in roles:
        db.add(UserRole(user_id=user.id, role=Role(role).value))
    db.commit()
    return user


def session_for(user, roles) -> SessionData:
    return SessionData(
        user_id=user.id,
        email=user.email,
        roles=tuple(Role(r) for r in roles),
        facility_id=user.facility_id,
    )


def make_client(db, facility, code="C-0001", enrolled=None, status=LifecycleStatus.ACTIVE,
                **fields) -> Client:
    client = Client(
        facility_id=facility.id,
        client_code=code,
        uic=fields.pop("uic", f"UIC-{code}"),
        legal_surname=fields.pop("legal_surname", "Santos"),
        legal_first=fields.pop("legal_first", "Maria"),
        sex_at_birth=fields.pop("sex_at_birth", "FEMALE"),
        status=status.value,
        date_enrolled=enrolled or NOW - timedelta(days=100),
        **fields,
    )
    db.add(client)
    db.flush()
    return client


def make_prescription(db, client, category=MedicationCategory.ARV, start=None,
                      is_active=True, end=None) -> Prescription:
    prescription = Prescription(
        client_id=client.id,
        regimen_id=regimen(db, category).id,
        category=category.value,
        start_date=start or NOW - timedelta(days=60),
        end_date=end,
        is_active=is_active,
    )
    db.add(prescription)
    db.flush()
    return prescription


def make_dispense(db, prescription, dispensed_at, days_supply=30, next_refill=None) -> Dispense:
    dispense = Dispense(
        prescription_id=prescription.id,
        dispensed_at=dispensed_at,
        days_supply=days_supply,
        next_refill_date=next_refill or dispensed_at + timedelta(days=days_supply),
    )
    db.add(dispense)
    db.flush()
    return dispense


def make_lab(db, client, panel_code, reported_at, value, status=ResultStatus.POSITIVE,
             test_code=None) -> LabPanel:
    test_code = test_code or ("VL_COPIES" if panel_code == "HIV_VL" else "CD4_ABS")
    panel = LabPanel(
        client_id=client.id,
        panel_type_id=lookup(db, LookupType.LAB_PANEL, panel_code).id,
        reported_at=reported_at,
        status=status.value,
    )
    db.add(panel)
    db.flush()
    db.add(LabResult(
        panel_id=panel.id,
        test_type_id=lookup(db, LookupType.LAB_TEST, test_code).id,
        value_num=value,
    ))
    db.flush()
    return panel


# ── OTP delivery ─────────────────────────────────────────────────────

class FakeNotifier:
    """Records codes instead of sending them."""
    def __init__(self, succeed=True):
        self.succeed = succeed
        self.sent = []

    def _send(self, channel, to, code):
        self.sent.append((channel, to, code))
        if self.succeed:
            return DeliveryResult(success=True, message_id=f"fake-{len(self.sent)}")
        return DeliveryResult(success=False, error="gateway down")

    def send_email_otp(self, to, code):
        return self._send("email", to, code)

    def send_sms_otp(self, to, code):
        return self._send("sms", to, code)

    @property
    def last_code(self):
        return self.sent[-1][2]


@pytest.fixture
def notifier():
    return FakeNotifier()
