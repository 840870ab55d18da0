"""
Role-Based Access Control – scope evaluation and the `can` facade.
"""

import logging
from typing import Iterable, List, Optional, Set

from hivcare.constants import Action, Resource, Role, Scope
from hivcare.errors import AuthenticationRequired, AuthorizationDenied
from hivcare.models import Permission, PermissionContext, ResourceRecord, SessionData
from hivcare.policies import get_multi_role_permissions

logger = logging.getLogger(__name__)


def build_permission_context(
    session: SessionData, record: Optional[ResourceRecord] = None
) -> PermissionContext:
    """Derive the evaluation context for one request from the caller's session."""
    return PermissionContext(
        user_id=session.user_id,
        user_roles=tuple(session.roles),
        facility_id=session.facility_id,
        resource_owner_id=record.user_id if record else None,
        resource_facility_id=record.facility_id if record else None,
        assigned_user_id=record.assigned_user_id if record else None,
    )


def evaluate_scope(
    permission: Permission,
    context: PermissionContext,
    record: Optional[ResourceRecord] = None,
) -> bool:
    """Decide whether a permission's scope admits the (optional) record."""
    scope = permission.scope

    if scope == Scope.ALL:
        return True

    if scope == Scope.FACILITY:
        if not context.facility_id:
            return False
        # Without a record the caller filters query results by facility itself.
        if record is None:
            return True
        return record.facility_id == context.facility_id

    if scope == Scope.OWN:
        if record is None:
            return False
        return record.user_id == context.user_id

    if scope == Scope.ASSIGNED:
        if record is None:
            return False
        return (
            record.assigned_user_id == context.user_id
            or record.user_id == context.user_id
        )

    return False


def _matching_permissions(
    roles: Iterable, action: Action, resource: Resource
) -> List[Permission]:
    return [
        permission
        for permission in get_multi_role_permissions(roles)
        if permission.allows(resource, action)
    ]


def can(
    session: Optional[SessionData],
    action: Action,
    resource: Resource,
    record: Optional[ResourceRecord] = None,
) -> bool:
    """
    Answer "may this caller perform *action* on *resource* (touching *record*)?".

    Grants from every held role are OR'd: the broadest applicable grant wins.
    An unresolved session is simply a denial.
    """
    if session is None:
        return False

    relevant = _matching_permissions(session.roles, action, resource)
    if not relevant:
        return False

    context = build_permission_context(session, record)
    return any(evaluate_scope(p, context, record) for p in relevant)


def require_permission(
    session: Optional[SessionData],
    action: Action,
    resource: Resource,
    record: Optional[ResourceRecord] = None,
) -> None:
    """Raise instead of returning False; the API boundary maps it to 401/403."""
    if session is None:
        raise AuthenticationRequired()

    if not can(session, action, resource, record):
        logger.info(
            "Denied %s on %s for user %s (roles=%s)",
            Action(action).value, Resource(resource).value,
            session.user_id, ",".join(getattr(r, "value", str(r)) for r in session.roles),
        )
        raise AuthorizationDenied(
            f"Insufficient permissions to {Action(action).value} {Resource(resource).value}"
        )


def granted_scopes(
    session: Optional[SessionData], action: Action, resource: Resource
) -> Set[Scope]:
    """Scopes under which the caller may perform *action*; used to filter lists."""
    if session is None:
        return set()
    return {p.scope for p in _matching_permissions(session.roles, action, resource)}


def get_accessible_resources(session: SessionData, action: Action) -> List[Resource]:
    """All resources the caller holds *action* on, in policy order."""
    seen: List[Resource] = []
    for permission in get_multi_role_permissions(session.roles):
        if action in permission.actions and permission.resource not in seen:
            seen.append(permission.resource)
    return seen


def has_any_role(session: SessionData, roles: Iterable[Role]) -> bool:
    held = set(session.roles)
    return any(role in held for role in roles)


def has_all_roles(session: SessionData, roles: Iterable[Role]) -> bool:
    held = set(session.roles)
    return all(role in held for role in roles)
