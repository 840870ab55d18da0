"""
Static role → permission policy table.

Each role maps to a flat tuple of independent grants. Roles never inherit from
one another; holding several roles composes their grants by plain union.
"""

from types import MappingProxyType
from typing import Iterable, Mapping, Tuple

from hivcare.constants import ROLE_HIERARCHY, Action, Resource, Role, Scope
from hivcare.models import Permission

A = Action
R = Resource
S = Scope


def _grant(resource: Resource, actions: Iterable[Action], scope: Scope) -> Permission:
    return Permission(resource=resource, actions=frozenset(actions), scope=scope)


_CRUL = (A.CREATE, A.READ, A.UPDATE, A.LIST)
_CRUDL = (A.CREATE, A.READ, A.UPDATE, A.DELETE, A.LIST)
_RLE = (A.READ, A.LIST, A.EXPORT)
_RUDLE = (A.READ, A.UPDATE, A.DELETE, A.LIST, A.EXPORT)


ROLE_PERMISSIONS: Mapping[Role, Tuple[Permission, ...]] = MappingProxyType({
    # Basic data entry
    Role.ENCODER: (
        _grant(R.CLIENTS, _CRUL, S.FACILITY),
        _grant(R.ENCOUNTERS, _CRUL, S.FACILITY),
        _grant(R.LAB_PANELS, (A.CREATE, A.READ, A.LIST), S.FACILITY),
        _grant(R.TASKS, (A.READ, A.LIST), S.ASSIGNED),
        _grant(R.DASHBOARD, (A.READ,), S.FACILITY),
    ),

    # Read-only, system-wide, for reporting and analysis
    Role.DATA_ANALYST: (
        _grant(R.CLIENTS, _RLE, S.ALL),
        _grant(R.ENCOUNTERS, _RLE, S.ALL),
        _grant(R.LAB_PANELS, _RLE, S.ALL),
        _grant(R.LAB_RESULTS, _RLE, S.ALL),
        _grant(R.PRESCRIPTIONS, _RLE, S.ALL),
        _grant(R.DISPENSES, _RLE, S.ALL),
        _grant(R.STI_HISTORY, _RLE, S.ALL),
        _grant(R.STI_SCREENINGS, _RLE, S.ALL),
        _grant(R.REPORTS, (A.CREATE, A.READ, A.LIST, A.EXPORT), S.ALL),
        _grant(R.DASHBOARD, (A.READ,), S.ALL),
        _grant(R.FACILITIES, (A.READ, A.LIST), S.ALL),
    ),

    # Medication and dispensing
    Role.PHARMACIST: (
        _grant(R.CLIENTS, (A.READ, A.LIST), S.FACILITY),
        _grant(R.PRESCRIPTIONS, _CRUL, S.FACILITY),
        _grant(R.DISPENSES, _CRUDL, S.FACILITY),
        _grant(R.TASKS, (A.READ, A.UPDATE, A.LIST), S.ASSIGNED),
        _grant(R.DASHBOARD, (A.READ,), S.FACILITY),
    ),

    # Clinical care within the facility
    Role.NURSE: (
        _grant(R.CLIENTS, _CRUL, S.FACILITY),
        _grant(R.ENCOUNTERS, _CRUL, S.FACILITY),
        _grant(R.LAB_PANELS, _CRUL, S.FACILITY),
        _grant(R.LAB_RESULTS, (A.READ, A.UPDATE, A.LIST), S.FACILITY),
        _grant(R.STI_HISTORY, _CRUL, S.FACILITY),
        _grant(R.STI_SCREENINGS, _CRUL, S.FACILITY),
        _grant(R.TASKS, (A.READ, A.UPDATE, A.LIST), S.ASSIGNED),
        _grant(R.PRESCRIPTIONS, (A.READ, A.LIST), S.FACILITY),
        _grant(R.DASHBOARD, (A.READ,), S.FACILITY),
    ),

    # Care coordination for assigned clients
    Role.CASE_MANAGER: (
        _grant(R.CLIENTS, _CRUL + (A.ASSIGN, A.TRANSFER), S.ASSIGNED),
        _grant(R.ENCOUNTERS, _CRUL, S.ASSIGNED),
        _grant(R.LAB_PANELS, (A.READ, A.LIST), S.ASSIGNED),
        _grant(R.LAB_RESULTS, (A.READ, A.LIST), S.ASSIGNED),
        _grant(R.STI_HISTORY, (A.READ, A.UPDATE, A.LIST), S.ASSIGNED),
        _grant(R.STI_SCREENINGS, (A.READ, A.LIST), S.ASSIGNED),
        _grant(R.TASKS, _CRUL, S.ASSIGNED),
        _grant(R.PRESCRIPTIONS, (A.READ, A.LIST), S.ASSIGNED),
        _grant(R.DASHBOARD, (A.READ,), S.FACILITY),
    ),

    # Clinical decision making and prescribing
    Role.PHYSICIAN: (
        _grant(R.CLIENTS, _CRUL + (A.ASSIGN,), S.FACILITY),
        _grant(R.ENCOUNTERS, _CRUDL, S.FACILITY),
        _grant(R.LAB_PANELS, _CRUDL, S.FACILITY),
        _grant(R.LAB_RESULTS, (A.READ, A.UPDATE, A.LIST), S.FACILITY),
        _grant(R.STI_HISTORY, _CRUDL, S.FACILITY),
        _grant(R.STI_SCREENINGS, _CRUDL, S.FACILITY),
        _grant(R.PRESCRIPTIONS, _CRUDL, S.FACILITY),
        _grant(R.TASKS, _CRUL, S.FACILITY),
        _grant(R.DASHBOARD, (A.READ,), S.FACILITY),
        _grant(R.REPORTS, (A.READ, A.LIST), S.FACILITY),
    ),

    # Facility administration and user management
    Role.ADMIN: (
        _grant(R.USERS, _CRUDL + (A.ASSIGN,), S.FACILITY),
        _grant(R.FACILITIES, (A.READ, A.UPDATE), S.OWN),
        _grant(R.AUDIT_LOGS, _RLE, S.FACILITY),
        _grant(R.CLIENTS, _CRUL + (A.TRANSFER, A.EXPORT), S.FACILITY),
        _grant(R.ENCOUNTERS, _RLE, S.FACILITY),
        _grant(R.LAB_PANELS, _RLE, S.FACILITY),
        _grant(R.LAB_RESULTS, _RLE, S.FACILITY),
        _grant(R.PRESCRIPTIONS, _RLE, S.FACILITY),
        _grant(R.DISPENSES, _RLE, S.FACILITY),
        _grant(R.STI_HISTORY, _RLE, S.FACILITY),
        _grant(R.STI_SCREENINGS, _RLE, S.FACILITY),
        _grant(R.TASKS, _CRUDL + (A.ASSIGN,), S.FACILITY),
        _grant(R.REPORTS, (A.CREATE, A.READ, A.LIST, A.EXPORT), S.FACILITY),
        _grant(R.DASHBOARD, (A.READ,), S.FACILITY),
    ),

    # System-wide oversight
    Role.DIRECTOR: (
        _grant(R.USERS, _CRUDL + (A.ASSIGN, A.EXPORT), S.ALL),
        _grant(R.FACILITIES, _CRUDL, S.ALL),
        _grant(R.AUDIT_LOGS, _RLE, S.ALL),
        _grant(R.CLIENTS, _CRUDL + (A.TRANSFER, A.EXPORT), S.ALL),
        _grant(R.ENCOUNTERS, _RUDLE, S.ALL),
        _grant(R.LAB_PANELS, _RUDLE, S.ALL),
        _grant(R.LAB_RESULTS, _RUDLE, S.ALL),
        _grant(R.PRESCRIPTIONS, _RUDLE, S.ALL),
        _grant(R.DISPENSES, _RUDLE, S.ALL),
        _grant(R.STI_HISTORY, _RUDLE, S.ALL),
        _grant(R.STI_SCREENINGS, _RUDLE, S.ALL),
        _grant(R.TASKS, _CRUDL + (A.ASSIGN, A.EXPORT), S.ALL),
        _grant(R.REPORTS, _CRUDL + (A.EXPORT,), S.ALL),
        _grant(R.DASHBOARD, (A.READ,), S.ALL),
    ),
})


def get_role_permissions(role) -> Tuple[Permission, ...]:
    """Return the grants of a single role (empty for an unknown role)."""
    try:
        return ROLE_PERMISSIONS.get(Role(role), ())
    except ValueError:
        return ()


def get_multi_role_permissions(roles: Iterable) -> Tuple[Permission, ...]:
    """Union of the grants of every role held, deduplicated, first-seen order."""
    merged = {}
    for role in roles:
        for permission in get_role_permissions(role):
            merged.setdefault(permission, None)
    return tuple(merged)


def has_higher_or_equal_role(user_role, required_role) -> bool:
    """Compare two roles by hierarchy level; unknown roles rank lowest."""
    def level(role) -> int:
        try:
            return ROLE_HIERARCHY.get(Role(role), 0)
        except ValueError:
            return 0

    return level(user_role) >= level(required_role)
