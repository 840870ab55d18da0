"""
Domain dataclasses used across the application.
"""

from dataclasses import dataclass, field
from typing import FrozenSet, Optional, Tuple

from hivcare.constants import Action, Resource, Role, Scope


@dataclass(frozen=True)
class SessionData:
    """The authenticated caller as resolved from a session token."""
    user_id: str
    email: str
    roles: Tuple[Role, ...]
    facility_id: Optional[str] = None
    session_id: Optional[str] = None


@dataclass(frozen=True)
class Permission:
    """A grant of some actions on one resource, qualified by a scope."""
    resource: Resource
    actions: FrozenSet[Action]
    scope: Scope

    def allows(self, resource: Resource, action: Action) -> bool:
        return self.resource == resource and action in self.actions


@dataclass(frozen=True)
class ResourceRecord:
    """Ownership fields of a candidate record; every field is optional."""
    id: Optional[str] = None
    user_id: Optional[str] = None
    facility_id: Optional[str] = None
    assigned_user_id: Optional[str] = None


@dataclass(frozen=True)
class PermissionContext:
    """Per-request evaluation context derived from the caller's session."""
    user_id: str
    user_roles: Tuple[Role, ...] = field(default_factory=tuple)
    facility_id: Optional[str] = None
    resource_owner_id: Optional[str] = None
    resource_facility_id: Optional[str] = None
    assigned_user_id: Optional[str] = None
