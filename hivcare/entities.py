"""
ORM entities for the clinical record store.

Enumerated columns hold the `.value` of the matching enum in
`hivcare.constants`; every timestamp is naive UTC.
"""

import uuid

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from hivcare.constants import LifecycleStatus, ResultStatus, TaskStatus
from hivcare.database import Base, utcnow


def new_id() -> str:
    return str(uuid.uuid4())


class Facility(Base):
    __tablename__ = "facilities"

    id = Column(String(36), primary_key=True, default=new_id)
    code = Column(String(20), unique=True, nullable=False)
    name = Column(String(200), nullable=False)
    created_at = Column(DateTime, default=utcnow)


class User(Base):
    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=new_id)
    email = Column(String(255), unique=True, nullable=False, index=True)
    phone = Column(String(30), index=True)
    display_name = Column(String(200), nullable=False)
    facility_id = Column(String(36), ForeignKey("facilities.id"))
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=utcnow)

    facility = relationship("Facility")
    roles = relationship("UserRole", back_populates="user", cascade="all, delete-orphan")

    @property
    def role_names(self):
        return [r.role for r in self.roles]


class UserRole(Base):
    """Many-to-many link between users and the fixed role set."""
    __tablename__ = "user_roles"

    user_id = Column(String(36), ForeignKey("users.id"), primary_key=True)
    role = Column(String(30), primary_key=True)

    user = relationship("User", back_populates="roles")


class AuthSession(Base):
    __tablename__ = "auth_sessions"

    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    expires_at = Column(DateTime, nullable=False)
    revoked_at = Column(DateTime)
    created_at = Column(DateTime, default=utcnow)


class OtpCode(Base):
    __tablename__ = "otp_codes"

    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    type = Column(String(10), nullable=False)
    code_hash = Column(String(100), nullable=False)
    sent_to = Column(String(255), nullable=False)
    expires_at = Column(DateTime, nullable=False)
    consumed_at = Column(DateTime)
    attempts = Column(Integer, default=0, nullable=False)
    created_at = Column(DateTime, default=utcnow)


class Lookup(Base):
    """Coded reference values: lab panel types, lab test types, populations."""
    __tablename__ = "lookups"
    __table_args__ = (UniqueConstraint("type", "code"),)

    id = Column(String(36), primary_key=True, default=new_id)
    type = Column(String(30), nullable=False)
    code = Column(String(50), nullable=False)
    label = Column(String(200), nullable=False)
    active = Column(Boolean, default=True, nullable=False)


class Client(Base):
    __tablename__ = "clients"
    __table_args__ = (UniqueConstraint("facility_id", "client_code"),)

    id = Column(String(36), primary_key=True, default=new_id)
    facility_id = Column(String(36), ForeignKey("facilities.id"), nullable=False, index=True)
    current_facility_id = Column(String(36), ForeignKey("facilities.id"))
    client_code = Column(String(50), nullable=False)
    uic = Column(String(50), unique=True, nullable=False)
    phil_health = Column(String(50))
    legal_surname = Column(String(100), nullable=False)
    legal_first = Column(String(100), nullable=False)
    legal_middle = Column(String(100))
    suffix = Column(String(20))
    preferred_name = Column(String(100))
    date_of_birth = Column(Date)
    sex_at_birth = Column(String(10), nullable=False)
    contact_number = Column(String(30))
    email = Column(String(255))
    home_address = Column(Text)
    occupation = Column(String(100))
    case_manager_id = Column(String(36), ForeignKey("users.id"))
    created_by_id = Column(String(36), ForeignKey("users.id"))
    status = Column(String(30), default=LifecycleStatus.ACTIVE.value, nullable=False, index=True)
    date_enrolled = Column(DateTime, default=utcnow, nullable=False)
    last_visit_at = Column(DateTime)
    notes = Column(Text)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    populations = relationship("ClientPopulation", cascade="all, delete-orphan")
    clinical_summary = relationship("ClinicalSummary", uselist=False, back_populates="client")

    @property
    def display_name(self) -> str:
        return f"{self.legal_surname}, {self.legal_first}"


class ClientPopulation(Base):
    __tablename__ = "client_population_map"

    client_id = Column(String(36), ForeignKey("clients.id"), primary_key=True)
    population_id = Column(String(36), ForeignKey("lookups.id"), primary_key=True)


class Encounter(Base):
    __tablename__ = "encounters"

    id = Column(String(36), primary_key=True, default=new_id)
    client_id = Column(String(36), ForeignKey("clients.id"), nullable=False, index=True)
    clinician_id = Column(String(36), ForeignKey("users.id"))
    date = Column(DateTime, nullable=False, index=True)
    type = Column(String(20), nullable=False)
    note = Column(Text)
    created_at = Column(DateTime, default=utcnow)


class LabPanel(Base):
    __tablename__ = "lab_panels"

    id = Column(String(36), primary_key=True, default=new_id)
    client_id = Column(String(36), ForeignKey("clients.id"), nullable=False, index=True)
    encounter_id = Column(String(36), ForeignKey("encounters.id"))
    panel_type_id = Column(String(36), ForeignKey("lookups.id"), nullable=False)
    ordered_at = Column(DateTime, default=utcnow)
    collected_at = Column(DateTime)
    reported_at = Column(DateTime, index=True)
    lab_name = Column(String(200))
    status = Column(String(20), default=ResultStatus.PENDING.value, nullable=False)
    created_by_id = Column(String(36), ForeignKey("users.id"))

    panel_type = relationship("Lookup")
    results = relationship("LabResult", back_populates="panel", cascade="all, delete-orphan")


class LabResult(Base):
    __tablename__ = "lab_results"

    id = Column(String(36), primary_key=True, default=new_id)
    panel_id = Column(String(36), ForeignKey("lab_panels.id"), nullable=False, index=True)
    test_type_id = Column(String(36), ForeignKey("lookups.id"), nullable=False)
    value_num = Column(Float)
    value_text = Column(String(200))
    unit = Column(String(20))
    ref_low = Column(Float)
    ref_high = Column(Float)
    abnormal = Column(Boolean)

    panel = relationship("LabPanel", back_populates="results")
    test_type = relationship("Lookup")


class Medication(Base):
    __tablename__ = "medications"

    id = Column(String(36), primary_key=True, default=new_id)
    code = Column(String(50), unique=True)
    name = Column(String(200), nullable=False)
    category = Column(String(20), nullable=False)
    active = Column(Boolean, default=True, nullable=False)


class Regimen(Base):
    __tablename__ = "regimens"

    id = Column(String(36), primary_key=True, default=new_id)
    name = Column(String(200), nullable=False)
    category = Column(String(20), nullable=False)
    active = Column(Boolean, default=True, nullable=False)


class Prescription(Base):
    __tablename__ = "prescriptions"

    id = Column(String(36), primary_key=True, default=new_id)
    client_id = Column(String(36), ForeignKey("clients.id"), nullable=False, index=True)
    regimen_id = Column(String(36), ForeignKey("regimens.id"))
    medication_id = Column(String(36), ForeignKey("medications.id"))
    category = Column(String(20), nullable=False)
    start_date = Column(DateTime, nullable=False)
    end_date = Column(DateTime)
    is_active = Column(Boolean, default=True, nullable=False)
    prescriber_id = Column(String(36), ForeignKey("users.id"))
    instructions = Column(Text)
    reason_change = Column(Text)
    created_at = Column(DateTime, default=utcnow)

    client = relationship("Client")
    regimen = relationship("Regimen")
    medication = relationship("Medication")
    dispenses = relationship("Dispense", back_populates="prescription")


class Dispense(Base):
    __tablename__ = "dispenses"

    id = Column(String(36), primary_key=True, default=new_id)
    prescription_id = Column(String(36), ForeignKey("prescriptions.id"), nullable=False, index=True)
    dispensed_at = Column(DateTime, nullable=False, index=True)
    quantity = Column(Float)
    unit = Column(String(20))
    days_supply = Column(Integer)
    next_refill_date = Column(DateTime, index=True)
    dispensed_by_id = Column(String(36), ForeignKey("users.id"))
    note = Column(Text)

    prescription = relationship("Prescription", back_populates="dispenses")


class Task(Base):
    __tablename__ = "tasks"

    id = Column(String(36), primary_key=True, default=new_id)
    client_id = Column(String(36), ForeignKey("clients.id"), nullable=False, index=True)
    type = Column(String(20), nullable=False, index=True)
    title = Column(String(255), nullable=False)
    description = Column(Text)
    due_date = Column(DateTime)
    status = Column(String(12), default=TaskStatus.OPEN.value, nullable=False, index=True)
    # Generation context; the generator reads it back for duplicate checks.
    payload = Column(JSON, default=dict)
    assigned_user_id = Column(String(36), ForeignKey("users.id"))
    assigned_role = Column(String(30))
    created_by_id = Column(String(36), ForeignKey("users.id"))
    completed_at = Column(DateTime)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    client = relationship("Client")


class ClinicalSummary(Base):
    """Derived per-client state, fully recomputed by the summary job."""
    __tablename__ = "clinical_summaries"

    client_id = Column(String(36), ForeignKey("clients.id"), primary_key=True)
    baseline_cd4 = Column(Float)
    baseline_cd4_date = Column(DateTime)
    first_viral_load_date = Column(DateTime)
    viral_load_status = Column(String(25))
    current_arv_regimen_id = Column(String(36), ForeignKey("regimens.id"))
    current_prep_regimen_id = Column(String(36), ForeignKey("regimens.id"))
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    client = relationship("Client", back_populates="clinical_summary")


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(36))
    actor_type = Column(String(10), nullable=False)
    action = Column(String(10), nullable=False)
    entity = Column(String(50))
    entity_id = Column(String(100))
    before = Column(JSON)
    after = Column(JSON)
    ip = Column(String(64))
    user_agent = Column(String(255))
    created_at = Column(DateTime, default=utcnow, index=True)
