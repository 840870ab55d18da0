"""
Unit tests for the static role → permission table.
"""

from itertools import combinations

import pytest

from hivcare.constants import Action, Resource, Role, Scope
from hivcare.policies import (
    ROLE_PERMISSIONS,
    get_multi_role_permissions,
    get_role_permissions,
    has_higher_or_equal_role,
)


# ── Tests: get_role_permissions ──────────────────────────────────────

def test_every_role_has_a_policy():
    assert set(ROLE_PERMISSIONS) == set(Role)
    for role in Role:
        assert get_role_permissions(role), role


def test_role_permissions_are_deterministic():
    for role in Role:
        assert get_role_permissions(role) == get_role_permissions(role)


@pytest.mark.parametrize("role", list(Role))
def test_filtering_by_resource_returns_only_that_resource(role):
    for resource in Resource:
        bucket = [p for p in get_role_permissions(role) if p.resource == resource]
        assert all(p.resource == resource for p in bucket)


def test_role_lookup_accepts_string_value():
    assert get_role_permissions("NURSE") == get_role_permissions(Role.NURSE)


def test_unknown_role_has_no_permissions():
    assert get_role_permissions("JANITOR") == ()


def test_encoder_cannot_delete_clients():
    grants = [p for p in get_role_permissions(Role.ENCODER) if p.resource == Resource.CLIENTS]
    assert len(grants) == 1
    assert Action.DELETE not in grants[0].actions
    assert grants[0].scope == Scope.FACILITY


def test_director_has_system_wide_scope():
    assert all(p.scope == Scope.ALL for p in get_role_permissions(Role.DIRECTOR))


# ── Tests: get_multi_role_permissions ────────────────────────────────

@pytest.mark.parametrize("pair", list(combinations(Role, 2)))
def test_multi_role_union_loses_nothing(pair):
    first, second = pair
    merged = set(get_multi_role_permissions([first, second]))
    assert set(get_role_permissions(first)) <= merged
    assert set(get_role_permissions(second)) <= merged


def test_multi_role_union_is_deduplicated():
    merged = get_multi_role_permissions([Role.NURSE, Role.NURSE])
    assert merged == get_role_permissions(Role.NURSE)
    assert len(merged) == len(set(merged))


def test_multi_role_keeps_both_scopes_for_same_resource():
    merged = get_multi_role_permissions([Role.NURSE, Role.CASE_MANAGER])
    scopes = {p.scope for p in merged if p.resource == Resource.LAB_PANELS}
    assert scopes == {Scope.FACILITY, Scope.ASSIGNED}


def test_multi_role_with_no_roles_is_empty():
    assert get_multi_role_permissions([]) == ()


# ── Tests: has_higher_or_equal_role ──────────────────────────────────

def test_role_hierarchy_comparison():
    assert has_higher_or_equal_role(Role.DIRECTOR, Role.ADMIN) is True
    assert has_higher_or_equal_role(Role.NURSE, Role.NURSE) is True
    assert has_higher_or_equal_role(Role.ENCODER, Role.PHYSICIAN) is False
    assert has_higher_or_equal_role("UNKNOWN", Role.ENCODER) is False
