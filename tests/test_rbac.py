"""
Unit tests for RBAC – scope evaluation, the `can` facade and `require_permission`.
"""

import pytest

from hivcare.config import get_env
from hivcare.constants import Action, Resource, Role, Scope
from hivcare.errors import AuthenticationRequired, AuthorizationDenied
from hivcare.models import Permission, PermissionContext, ResourceRecord, SessionData
from hivcare.rbac import (
    build_permission_context,
    can,
    evaluate_scope,
    get_accessible_resources,
    granted_scopes,
    has_all_roles,
    has_any_role,
    require_permission,
)


# ── Helpers ──────────────────────────────────────────────────────────

def grant(scope, resource=Resource.CLIENTS, actions=(Action.READ,)):
    return Permission(resource=resource, actions=frozenset(actions), scope=scope)


def context(user_id="u1", facility_id="f1"):
    return PermissionContext(user_id=user_id, facility_id=facility_id)


def session(*roles, user_id="u1", facility_id="f1"):
    return SessionData(user_id=user_id, email=f"{user_id}@example.org",
                       roles=tuple(roles), facility_id=facility_id)


# ── Tests: get_env ───────────────────────────────────────────────────

def test_get_env_ok(monkeypatch):
    monkeypatch.setenv("X", "123")
    assert get_env("X") == "123"


def test_get_env_missing_exits(monkeypatch, capsys):
    monkeypatch.delenv("MISSING_ENV", raising=False)
    with pytest.raises(SystemExit) as e:
        get_env("MISSING_ENV")
    assert e.value.code == 1
    err = capsys.readouterr().err
    assert "ERROR: env var MISSING_ENV is not set" in err


# ── Tests: evaluate_scope ────────────────────────────────────────────

def test_all_scope_always_passes():
    assert evaluate_scope(grant(Scope.ALL), context(facility_id=None)) is True
    assert evaluate_scope(grant(Scope.ALL), context(), ResourceRecord(facility_id="other")) is True


def test_facility_scope_without_record_depends_only_on_context_facility():
    assert evaluate_scope(grant(Scope.FACILITY), context(facility_id="f1")) is True
    assert evaluate_scope(grant(Scope.FACILITY), context(facility_id=None)) is False


def test_facility_scope_with_record():
    perm = grant(Scope.FACILITY)
    assert evaluate_scope(perm, context(), ResourceRecord(facility_id="f1")) is True
    assert evaluate_scope(perm, context(), ResourceRecord(facility_id="f2")) is False
    assert evaluate_scope(perm, context(), ResourceRecord()) is False
    assert evaluate_scope(perm, context(facility_id=None), ResourceRecord(facility_id="f1")) is False


def test_own_scope_requires_record_and_matching_owner():
    perm = grant(Scope.OWN)
    assert evaluate_scope(perm, context()) is False
    assert evaluate_scope(perm, context(), ResourceRecord(user_id="u1")) is True


def test_own_scope_ignores_assignment():
    record = ResourceRecord(user_id="someone-else", assigned_user_id="u1")
    assert evaluate_scope(grant(Scope.OWN), context(), record) is False


def test_assigned_scope_matches_assignee_or_owner():
    perm = grant(Scope.ASSIGNED)
    assert evaluate_scope(perm, context()) is False
    assert evaluate_scope(perm, context(), ResourceRecord(assigned_user_id="u1")) is True
    assert evaluate_scope(perm, context(), ResourceRecord(user_id="u1")) is True
    assert evaluate_scope(perm, context(), ResourceRecord(user_id="u2", assigned_user_id="u3")) is False


def test_unknown_scope_fails_closed():
    perm = Permission(resource=Resource.CLIENTS, actions=frozenset({Action.READ}), scope="galaxy")
    assert evaluate_scope(perm, context(), ResourceRecord(user_id="u1", facility_id="f1")) is False


def test_evaluate_scope_is_repeatable():
    perm = grant(Scope.ASSIGNED)
    ctx = context()
    record = ResourceRecord(assigned_user_id="u1")
    results = {evaluate_scope(perm, ctx, record) for _ in range(5)}
    assert results == {True}


def test_build_permission_context_copies_record_fields():
    ctx = build_permission_context(
        session(Role.NURSE),
        ResourceRecord(user_id="owner", facility_id="f9", assigned_user_id="cm"),
    )
    assert ctx.user_id == "u1"
    assert ctx.user_roles == (Role.NURSE,)
    assert ctx.resource_owner_id == "owner"
    assert ctx.resource_facility_id == "f9"
    assert ctx.assigned_user_id == "cm"


# ── Tests: can ───────────────────────────────────────────────────────

def test_encoder_cannot_delete_clients():
    assert can(session(Role.ENCODER), Action.DELETE, Resource.CLIENTS,
               ResourceRecord(facility_id="f1")) is False


def test_encoder_can_create_clients_in_own_facility():
    assert can(session(Role.ENCODER), Action.CREATE, Resource.CLIENTS,
               ResourceRecord(facility_id="f1")) is True


def test_nurse_and_case_manager_read_lab_panel_via_facility_grant():
    record = ResourceRecord(facility_id="f1", assigned_user_id="someone-else")
    assert can(session(Role.NURSE, Role.CASE_MANAGER), Action.READ,
               Resource.LAB_PANELS, record) is True
    assert can(session(Role.CASE_MANAGER), Action.READ, Resource.LAB_PANELS, record) is False


def test_no_session_is_denied_without_raising():
    assert can(None, Action.READ, Resource.CLIENTS) is False


def test_role_without_resource_grant_is_denied():
    assert can(session(Role.ENCODER), Action.READ, Resource.PRESCRIPTIONS) is False


def test_cross_facility_record_is_denied():
    assert can(session(Role.PHYSICIAN), Action.READ, Resource.CLIENTS,
               ResourceRecord(facility_id="f2")) is False


def test_director_reads_any_facility():
    assert can(session(Role.DIRECTOR, facility_id=None), Action.READ, Resource.CLIENTS,
               ResourceRecord(facility_id="f2")) is True


def test_admin_facility_access_is_own_scoped():
    admin = session(Role.ADMIN)
    assert can(admin, Action.UPDATE, Resource.FACILITIES, ResourceRecord(user_id="u1")) is True
    assert can(admin, Action.UPDATE, Resource.FACILITIES, ResourceRecord(user_id="u2")) is False


# ── Tests: require_permission ────────────────────────────────────────

def test_require_permission_without_session_raises_authentication_required():
    with pytest.raises(AuthenticationRequired):
        require_permission(None, Action.READ, Resource.CLIENTS)


def test_require_permission_denied_raises_authorization_denied():
    with pytest.raises(AuthorizationDenied, match="delete clients"):
        require_permission(session(Role.ENCODER), Action.DELETE, Resource.CLIENTS)


def test_require_permission_allowed_returns_none():
    assert require_permission(session(Role.NURSE), Action.LIST, Resource.CLIENTS) is None


def test_authorization_errors_carry_http_status():
    assert AuthenticationRequired.status_code == 401
    assert AuthorizationDenied.status_code == 403


# ── Tests: helpers ───────────────────────────────────────────────────

def test_granted_scopes_unions_roles():
    scopes = granted_scopes(session(Role.NURSE, Role.CASE_MANAGER), Action.LIST, Resource.CLIENTS)
    assert scopes == {Scope.FACILITY, Scope.ASSIGNED}
    assert granted_scopes(None, Action.LIST, Resource.CLIENTS) == set()


def test_get_accessible_resources_for_pharmacist():
    resources = get_accessible_resources(session(Role.PHARMACIST), Action.CREATE)
    assert resources == [Resource.PRESCRIPTIONS, Resource.DISPENSES]


def test_role_membership_helpers():
    s = session(Role.NURSE, Role.CASE_MANAGER)
    assert has_any_role(s, [Role.ADMIN, Role.NURSE]) is True
    assert has_any_role(s, [Role.ADMIN]) is False
    assert has_all_roles(s, [Role.NURSE, Role.CASE_MANAGER]) is True
    assert has_all_roles(s, [Role.NURSE, Role.ADMIN]) is False
