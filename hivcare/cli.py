"""
Command-line entry point for database setup, the batch jobs and the API server.
"""

import argparse
import json
import sys

import pandas as pd

from hivcare.config import API_HOST, API_PORT, get_env
from hivcare.constants import Role
from hivcare.database import init_db, init_engine, make_session_factory, session_scope
from hivcare.errors import TransactionFailure
from hivcare.jobs.clinical_summary import run_summary_refresh
from hivcare.jobs.task_generator import run_task_generation
from hivcare.logging_config import configure_logging
from hivcare.reports import build_dashboard, facility_metrics


def cmd_init_db(args) -> int:
    engine = init_engine()
    init_db(engine)
    print("[db] Tables created")

    if not (args.seed or args.demo or args.admin_email):
        return 0

    from hivcare.seed import seed_demo_clients, seed_reference_data, seed_user

    with session_scope(make_session_factory(engine)) as db:
        facility = seed_reference_data(db)
        print(f"[seed] Reference data ready for facility {facility.code}")
        if args.admin_email:
            user = seed_user(db, args.admin_email, "Administrator",
                             [Role.ADMIN], facility, phone=args.admin_phone)
            print(f"[seed] Admin user: {user.email}")
        if args.demo:
            created = seed_demo_clients(db, facility, args.demo)
            print(f"[seed] Demo clients created: {created}")
    return 0


def cmd_generate_tasks(args) -> int:
    engine = init_engine()
    try:
        report = run_task_generation(make_session_factory(engine))
    except TransactionFailure as e:
        print(f"[ERROR] {e.message}", file=sys.stderr)
        return 1
    print(json.dumps(report.to_dict(), indent=2))
    print(f"[jobs] Generated {report.total} tasks")
    return 0


def cmd_refresh_summaries(args) -> int:
    engine = init_engine()
    try:
        count = run_summary_refresh(make_session_factory(engine))
    except TransactionFailure as e:
        print(f"[ERROR] {e.message}", file=sys.stderr)
        return 1
    print(f"[jobs] Refreshed {count} clinical summaries")
    return 0


def cmd_dashboard(args) -> int:
    engine = init_engine()
    with session_scope(make_session_factory(engine)) as db:
        dashboard = build_dashboard(db, args.facility)
        facilities = facility_metrics(db)

    print("\n[Overview]")
    for key, value in dashboard["overview"].items():
        print(f"  {key}: {value}")

    print("\n[Clients by status]")
    by_status = pd.DataFrame(dashboard["clients"]["by_status"])
    print(by_status.to_string(index=False) if not by_status.empty else "(no clients)")

    print("\n[Enrollments by month]")
    print(pd.DataFrame(dashboard["trends"]["enrollments_by_month"]).to_string(index=False))

    print("\n[Tasks]")
    print(f"  overdue: {dashboard['tasks']['overdue']}")
    print(f"  due_today: {dashboard['tasks']['due_today']}")
    print(f"  critical: {dashboard['critical_tasks_count']}")

    if args.facility is None and facilities:
        print("\n[Facilities]")
        print(pd.DataFrame(facilities).to_string(index=False))
    return 0


def cmd_serve(args) -> int:
    from hivcare.api.app import main as serve

    # Tokens must not be signed with the development fallback key.
    get_env("JWT_SECRET_KEY")
    serve(host=args.host, port=args.port)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="hivcare", description="HIV Care Portal tools")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("init-db", help="Create tables and optionally seed reference data")
    p.add_argument("--seed", action="store_true", help="Insert facility, lookups, regimens, medications")
    p.add_argument("--demo", type=int, default=0, metavar="N", help="Also create N demo clients")
    p.add_argument("--admin-email", help="Create (or extend) an ADMIN user with this email")
    p.add_argument("--admin-phone", help="Phone number for the admin user")
    p.set_defaults(func=cmd_init_db)

    p = sub.add_parser("generate-tasks", help="Run the care task generator once")
    p.set_defaults(func=cmd_generate_tasks)

    p = sub.add_parser("refresh-summaries", help="Recompute every client's clinical summary")
    p.set_defaults(func=cmd_refresh_summaries)

    p = sub.add_parser("dashboard", help="Print dashboard metrics")
    p.add_argument("--facility", help="Restrict to one facility id")
    p.set_defaults(func=cmd_dashboard)

    p = sub.add_parser("serve", help="Run the REST API server")
    p.add_argument("--host", default=API_HOST)
    p.add_argument("--port", type=int, default=API_PORT)
    p.set_defaults(func=cmd_serve)

    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    if args.command != "serve":
        configure_logging()
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
