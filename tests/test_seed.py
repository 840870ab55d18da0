"""
Tests for reference and demo seed data and the command line entry points.
"""

import pytest
from sqlalchemy import func, select

from hivcare.api import app as app_module
from hivcare.cli import build_parser, main
from hivcare.constants import Role
from hivcare.entities import Client, ClinicalSummary, Lookup, Prescription, Regimen
from hivcare.seed import LOOKUPS, seed_demo_clients, seed_reference_data, seed_user


def count(db, entity):
    return db.scalar(select(func.count()).select_from(entity))


def test_reference_data_is_idempotent(db, facility):
    lookups, regimens = count(db, Lookup), count(db, Regimen)

    again = seed_reference_data(db)

    assert again.id == facility.id
    assert count(db, Lookup) == lookups == sum(len(entries) for entries in LOOKUPS.values())
    assert count(db, Regimen) == regimens


def test_seed_user_adds_missing_roles_only(db, facility):
    user = seed_user(db, "admin@example.org", "Administrator", [Role.ADMIN], facility)
    same = seed_user(db, "admin@example.org", "Administrator", [Role.ADMIN, Role.DIRECTOR])

    assert same.id == user.id
    assert sorted(same.role_names) == ["ADMIN", "DIRECTOR"]


def test_demo_clients(db, facility):
    assert seed_demo_clients(db, facility, count=5) == 5
    assert seed_demo_clients(db, facility, count=5) == 0

    assert count(db, Client) == 5
    assert count(db, ClinicalSummary) == 5
    assert count(db, Prescription) == 5
    codes = db.scalars(select(Client.client_code).order_by(Client.client_code)).all()
    assert codes[0] == "DEMO-0001"


def test_cli_parser():
    parser = build_parser()

    args = parser.parse_args(["init-db", "--seed", "--demo", "10", "--admin-email", "a@example.org"])
    assert args.seed is True
    assert args.demo == 10
    assert args.admin_email == "a@example.org"

    args = parser.parse_args(["serve", "--port", "9000"])
    assert args.port == 9000

    args = parser.parse_args(["dashboard", "--facility", "f1"])
    assert args.facility == "f1"


def test_serve_requires_jwt_secret(monkeypatch):
    monkeypatch.delenv("JWT_SECRET_KEY", raising=False)
    monkeypatch.setattr(app_module, "main", lambda **kw: pytest.fail("server started"))

    with pytest.raises(SystemExit) as e:
        main(["serve"])
    assert e.value.code == 1


def test_serve_starts_api(monkeypatch):
    calls = []
    monkeypatch.setenv("JWT_SECRET_KEY", "test-secret")
    monkeypatch.setattr(app_module, "main", lambda **kw: calls.append(kw))

    assert main(["serve", "--host", "127.0.0.1", "--port", "9000"]) == 0
    assert calls == [{"host": "127.0.0.1", "port": 9000}]
