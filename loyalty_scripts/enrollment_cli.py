#!/usr/bin/env python3
"""
Operational CLI for the enrollment engine.

Commands:
    reconcile   Repair missing cards/enrollments and unsynced notifications.
    report      List integrity issues.
    stats       Print enrollment statistics.
    maintain    Reconcile, prune stale notifications, then report.

Output is one JSON document on stdout.  With --strict, the exit code is 1
when integrity issues remain after the command.

Usage:
    python -m loyalty_scripts.enrollment_cli report --strict
    python -m loyalty_scripts.enrollment_cli reconcile --batch-size 200
    python -m loyalty_scripts.enrollment_cli maintain --config ops.yaml \\
        --database-url postgresql://loyalty:loyalty@db:5432/loyalty
"""

from __future__ import annotations

import argparse
import dataclasses
import json
import sys
from pathlib import Path

from loyalty_config import get_settings
from loyalty_services import EnrollmentEngine

EXIT_OK = 0
EXIT_ISSUES = 1


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="enrollment_cli",
        description="Reconcile and inspect loyalty enrollments.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument(
        "command",
        choices=("reconcile", "report", "stats", "maintain"),
    )
    parser.add_argument(
        "--database-url",
        default=None,
        help="Override database.url (and LOYALTY_DATABASE_URL).",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="YAML file overriding loyalty_config/defaults.yaml.",
    )
    parser.add_argument(
        "--batch-size",
        type=int,
        default=None,
        help="Reconciliation batch size (default: reconciliation.batch_size).",
    )
    parser.add_argument(
        "--strict",
        action="store_true",
        help="Exit 1 if integrity issues remain.",
    )
    parser.add_argument(
        "--create-schema",
        action="store_true",
        help="Create missing tables before running.",
    )
    args = parser.parse_args(argv)
    if args.batch_size is not None and args.batch_size < 1:
        parser.error("--batch-size must be at least 1")
    return args


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)

    settings = get_settings(args.config)
    if args.database_url:
        settings = dataclasses.replace(
            settings,
            database=dataclasses.replace(settings.database, url=args.database_url),
        )

    engine = EnrollmentEngine.from_settings(settings, create_schema=args.create_schema)

    if args.command == "reconcile":
        summary = engine.run_reconciliation(args.batch_size)
        issues = engine.get_integrity_report() if args.strict else []
        payload = {"reconciliation": summary.to_dict()}
        if args.strict:
            payload["issues"] = [i.to_dict() for i in issues]
    elif args.command == "report":
        issues = engine.get_integrity_report()
        payload = {"issues": [i.to_dict() for i in issues], "count": len(issues)}
    elif args.command == "stats":
        stats = engine.get_enrollment_statistics()
        issues = engine.get_integrity_report() if args.strict else []
        payload = stats.to_dict()
    else:
        report = engine.run_maintenance(args.batch_size)
        issues = list(report.issues)
        payload = report.to_dict()

    json.dump(payload, sys.stdout, indent=2, default=str)
    sys.stdout.write("\n")

    if args.strict and issues:
        return EXIT_ISSUES
    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
