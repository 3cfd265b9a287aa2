"""
count-kernel command line.

Wraps every lifecycle and audit operation.  Prints JSON on stdout; exits 1
when an operation is rejected or raises a kernel error.

Settings come from ``--settings`` or the ``COUNT_KERNEL_SETTINGS``
environment variable, else the defaults.
"""

from __future__ import annotations

import argparse
import sys
from collections.abc import Sequence
from typing import Any

from count_cli import views
from count_config import (
    build_audit_trail,
    build_manager,
    build_store,
    load_settings,
    settings_path_from_env,
)
from count_kernel.domain.values import ActorContext
from count_kernel.exceptions import CountKernelError
from count_kernel.logging_config import configure_logging, get_logger
from count_kernel.store.seed import seed_facility

logger = get_logger("cli")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="count-kernel",
        description="Physical inventory count lifecycle and audit trail",
    )
    parser.add_argument("--settings", help="YAML settings file (default: $COUNT_KERNEL_SETTINGS)")
    parser.add_argument("--user", default="SYSTEM", help="Acting user id")
    parser.add_argument("--session", default="SYSTEM", help="Session id for audit metadata")
    parser.add_argument("--ip", default="unknown", help="Client IP address for audit metadata")
    parser.add_argument("--user-agent", default="count-kernel-cli", help="User agent for audit metadata")

    sub = parser.add_subparsers(dest="command", required=True)

    init = sub.add_parser("init", help="Create the facility and history documents")
    init.add_argument("--force", action="store_true", help="Overwrite existing documents")

    start = sub.add_parser("start", help="Start a new count")
    start.add_argument("--start-date", required=True)
    start.add_argument("--end-date", required=True)
    start.add_argument("--last-order-date", required=True)
    start.add_argument("--people-on-site", required=True)
    start.add_argument("--notes", default="")

    add = sub.add_parser("add-item", help="Add a counted item to the active count")
    add.add_argument("--location", required=True)
    add.add_argument("--item-code", required=True)
    add.add_argument("--item-name", required=True)
    add.add_argument("--quantity", required=True)
    add.add_argument("--unit", required=True)
    add.add_argument("--unit-price")
    add.add_argument("--notes", default="")

    delete = sub.add_parser("delete-item", help="Delete an item of the active count by index")
    delete.add_argument("index", type=int)

    complete = sub.add_parser("complete", help="Complete the active count")
    complete.add_argument("--notes")
    complete.add_argument("--performed-by", action="append", help="Repeat for each person")

    sub.add_parser("current", help="Show the current count")
    items = sub.add_parser("items", help="List items of the current count")
    items.add_argument("--location", help="Only items at this location, with totals")
    sub.add_parser("locations", help="List facility locations")
    sub.add_parser("history", help="Show the completed-count history")
    sub.add_parser("comparison", help="Compare the two most recent completed counts")

    audit = sub.add_parser("audit", help="Audit trail operations")
    audit_sub = audit.add_subparsers(dest="audit_command", required=True)

    query = audit_sub.add_parser("query", help="Query audit entries, newest first")
    query.add_argument("--start-date")
    query.add_argument("--end-date")
    query.add_argument("--operation")
    query.add_argument("--user-id")
    query.add_argument("--count-id")
    query.add_argument("--severity")
    query.add_argument("--limit", type=int)

    trail = audit_sub.add_parser("trail", help="Chronological audit trail of one count")
    trail.add_argument("count_id")

    report = audit_sub.add_parser("report", help="Audit report for a period")
    report.add_argument("--start-date", required=True)
    report.add_argument("--end-date", required=True)

    stats = audit_sub.add_parser("stats", help="Audit statistics and recent activity")
    stats.add_argument("--start-date")
    stats.add_argument("--end-date")

    verify = audit_sub.add_parser("verify", help="Verify one audit entry's checksum")
    verify.add_argument("log_id")

    sweep = audit_sub.add_parser("sweep", help="Verify every audit entry in a period")
    sweep.add_argument("--start-date")
    sweep.add_argument("--end-date")

    cleanup = audit_sub.add_parser("cleanup", help="Delete expired audit segments")
    cleanup.add_argument("--retention-days", type=int)

    return parser


def _emit(payload: Any) -> None:
    print(views.dumps(payload))


def _actor(args: argparse.Namespace) -> ActorContext:
    return ActorContext(
        user_id=args.user,
        session_id=args.session,
        ip_address=args.ip,
        user_agent=args.user_agent,
    )


def _run_audit(args: argparse.Namespace, settings) -> int:
    trail = build_audit_trail(settings)
    command = args.audit_command
    if command == "query":
        entries = trail.query_logs(
            start_date=args.start_date,
            end_date=args.end_date,
            operation=args.operation,
            user_id=args.user_id,
            count_id=args.count_id,
            severity=args.severity,
            limit=args.limit,
        )
        _emit(views.audit_entries(entries))
    elif command == "trail":
        _emit(views.audit_trail(trail.get_count_audit_trail(args.count_id)))
    elif command == "report":
        _emit(views.audit_report(trail.generate_audit_report(args.start_date, args.end_date)))
    elif command == "stats":
        _emit(views.audit_report(trail.statistics(args.start_date, args.end_date)))
    elif command == "verify":
        result = trail.verify_log_integrity(args.log_id)
        _emit(views.integrity(result))
        return 0 if result.valid else 1
    elif command == "sweep":
        result = trail.run_integrity_sweep(
            args.start_date,
            args.end_date,
            metadata=_actor(args).audit_metadata(),
        )
        _emit(views.sweep(result))
        return 0 if result.passed else 1
    elif command == "cleanup":
        _emit(views.cleanup(trail.cleanup_old_logs(args.retention_days)))
    return 0


def _run(args: argparse.Namespace) -> int:
    settings = load_settings(args.settings or settings_path_from_env())
    configure_logging(level=settings.log_level_number, stream=sys.stderr)

    if args.command == "audit":
        return _run_audit(args, settings)

    store = build_store(settings)
    if args.command == "init":
        if store.exists() and not args.force:
            _emit({"error": "ALREADY_INITIALIZED", "message": "Documents already exist; use --force"})
            return 1
        snapshot = seed_facility(facility_id=settings.store.facility_id)
        store.save(snapshot)
        _emit({
            "facilityId": snapshot.facility.facility_id,
            "locations": views.locations(snapshot.facility.locations),
            "nextCountId": snapshot.facility.current_count.count_id,
        })
        return 0

    manager = build_manager(settings, store=store)
    actor = _actor(args)
    command = args.command

    if command == "start":
        result = manager.start(
            {
                "start_date": args.start_date,
                "end_date": args.end_date,
                "last_order_date": args.last_order_date,
                "people_on_site": args.people_on_site,
                "notes": args.notes,
            },
            actor,
        )
    elif command == "add-item":
        result = manager.add_item(
            {
                "location": args.location,
                "item_code": args.item_code,
                "item_name": args.item_name,
                "quantity": args.quantity,
                "unit": args.unit,
                "unit_price": args.unit_price,
                "notes": args.notes,
            },
            actor,
        )
    elif command == "delete-item":
        result = manager.delete_item(args.index, actor)
    elif command == "complete":
        result = manager.complete(args.notes, args.performed_by, actor)
    else:
        _emit(_query(manager, args))
        return 0

    _emit(views.lifecycle_result(result))
    return 0 if result.success else 1


def _query(manager, args: argparse.Namespace) -> Any:
    command = args.command
    if command == "current":
        return views.count(manager.current())
    if command == "items":
        if args.location:
            return views.location_items(manager.items_by_location(args.location))
        return views.items(manager.items())
    if command == "locations":
        return views.locations(manager.locations())
    if command == "history":
        return views.history(manager.history())
    return views.comparison(manager.comparison())


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        return _run(args)
    except (CountKernelError, ValueError) as exc:
        logger.warning("cli_command_failed", exc_info=True)
        _emit(views.error(exc))
        return 1


if __name__ == "__main__":
    sys.exit(main())
