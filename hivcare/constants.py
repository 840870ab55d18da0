"""
Enumerations for roles, protected resources, actions, scopes and the
clinical vocabularies stored on records.
"""

import enum


class Role(str, enum.Enum):
    PHYSICIAN = "PHYSICIAN"
    NURSE = "NURSE"
    CASE_MANAGER = "CASE_MANAGER"
    ENCODER = "ENCODER"
    ADMIN = "ADMIN"
    DIRECTOR = "DIRECTOR"
    DATA_ANALYST = "DATA_ANALYST"
    PHARMACIST = "PHARMACIST"


# Higher numbers have more privileges.
ROLE_HIERARCHY = {
    Role.ENCODER: 1,
    Role.DATA_ANALYST: 2,
    Role.PHARMACIST: 3,
    Role.NURSE: 4,
    Role.CASE_MANAGER: 5,
    Role.PHYSICIAN: 6,
    Role.ADMIN: 7,
    Role.DIRECTOR: 8,
}


class Resource(str, enum.Enum):
    CLIENTS = "clients"
    ENCOUNTERS = "encounters"
    LAB_PANELS = "lab_panels"
    LAB_RESULTS = "lab_results"
    PRESCRIPTIONS = "prescriptions"
    DISPENSES = "dispenses"
    STI_HISTORY = "sti_history"
    STI_SCREENINGS = "sti_screenings"
    TASKS = "tasks"
    USERS = "users"
    FACILITIES = "facilities"
    AUDIT_LOGS = "audit_logs"
    REPORTS = "reports"
    DASHBOARD = "dashboard"


class Action(str, enum.Enum):
    CREATE = "create"
    READ = "read"
    UPDATE = "update"
    DELETE = "delete"
    LIST = "list"
    EXPORT = "export"
    ASSIGN = "assign"
    TRANSFER = "transfer"


class Scope(str, enum.Enum):
    OWN = "own"            # records the user created/owns
    FACILITY = "facility"  # records within the user's facility
    ASSIGNED = "assigned"  # records assigned to (or owned by) the user
    ALL = "all"            # system-wide


class LifecycleStatus(str, enum.Enum):
    ACTIVE = "ACTIVE"
    TRANSFERRED_OUT = "TRANSFERRED_OUT"
    EXPIRED = "EXPIRED"
    LOST_TO_FOLLOW_UP = "LOST_TO_FOLLOW_UP"
    INACTIVE = "INACTIVE"


class SexAtBirth(str, enum.Enum):
    MALE = "MALE"
    FEMALE = "FEMALE"
    INTERSEX = "INTERSEX"
    UNKNOWN = "UNKNOWN"


class EncounterType(str, enum.Enum):
    INTAKE = "INTAKE"
    FOLLOW_UP = "FOLLOW_UP"
    COUNSELING = "COUNSELING"
    DISPENSE = "DISPENSE"
    LAB_COLLECTION = "LAB_COLLECTION"


class ResultStatus(str, enum.Enum):
    POSITIVE = "POSITIVE"
    NEGATIVE = "NEGATIVE"
    INDETERMINATE = "INDETERMINATE"
    PENDING = "PENDING"
    NOT_DONE = "NOT_DONE"


class ViralLoadStatus(str, enum.Enum):
    UNDETECTABLE = "UNDETECTABLE"
    SUPPRESSED = "SUPPRESSED"
    DETECTABLE = "DETECTABLE"
    HIGH_NOT_SUPPRESSED = "HIGH_NOT_SUPPRESSED"
    PENDING = "PENDING"
    NOT_DONE = "NOT_DONE"


class MedicationCategory(str, enum.Enum):
    ARV = "ARV"
    PREP = "PREP"
    TB_PROPHYLAXIS = "TB_PROPHYLAXIS"
    STI = "STI"
    OTHER = "OTHER"


class TaskType(str, enum.Enum):
    FOLLOW_UP = "FOLLOW_UP"
    REFILL_PREP = "REFILL_PREP"
    REFILL_ARV = "REFILL_ARV"
    LABS_PENDING = "LABS_PENDING"
    VL_MONITOR = "VL_MONITOR"
    STI_SCREENING = "STI_SCREENING"
    LTFU_REVIEW = "LTFU_REVIEW"
    ADMIN = "ADMIN"


class TaskStatus(str, enum.Enum):
    OPEN = "OPEN"
    DONE = "DONE"
    DISMISSED = "DISMISSED"


class OtpType(str, enum.Enum):
    EMAIL = "EMAIL"
    SMS = "SMS"


class LookupType(str, enum.Enum):
    LAB_PANEL = "LAB_PANEL"
    LAB_TEST = "LAB_TEST"
    POPULATION = "POPULATION"


class AuditAction(str, enum.Enum):
    LOGIN = "LOGIN"
    READ = "READ"
    CREATE = "CREATE"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    EXPORT = "EXPORT"


class ActorType(str, enum.Enum):
    USER = "USER"
    SYSTEM = "SYSTEM"
