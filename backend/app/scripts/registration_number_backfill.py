from __future__ import annotations

import argparse
import json
import logging

from app.core.settings import settings, validate_settings
from app.db.session import SessionLocal
from app.services.registration_numbers import (
    ConfirmationRequired,
    RegistrationNumberBackfillStats,
    RegistrationNumberPlan,
    backfill_registration_numbers,
    plan_registration_numbers,
)

BANNER = "=" * 80


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description=(
            "Regenerate registration numbers for all appointments. Initial visits get "
            "sequential numbers per service code; series appointments inherit the number "
            "of their initial visit."
        )
    )
    parser.add_argument("--apply", action="store_true", help="Write changes to the database.")
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Preview the affected appointments without writing (default).",
    )
    parser.add_argument(
        "--i-understand-this-is-destructive",
        dest="confirm",
        action="store_true",
        help="Required with --apply: existing registration numbers are replaced permanently.",
    )
    parser.add_argument(
        "--max-retries",
        type=int,
        default=None,
        help=(
            "Attempts per initial visit when a registration number is already taken "
            f"(default: {settings.registration_number_max_retries})."
        ),
    )
    parser.add_argument("--json", action="store_true", help="Print the summary as JSON.")
    return parser


def print_plan(plan: RegistrationNumberPlan) -> None:
    print(BANNER)
    print("DRY RUN MODE - No changes will be made")
    print(BANNER)
    print(f"Found {plan.initial_visits} initial visits")
    print(f"Found {plan.series_appointments} series appointments")
    print("Breakdown by service:")
    for service_code, count in sorted(plan.service_breakdown.items()):
        print(f"  {service_code}: {count} initial visits")
    print("Use --apply --i-understand-this-is-destructive to regenerate registration numbers.")


def print_stats(stats: RegistrationNumberBackfillStats) -> None:
    print(BANNER)
    print("BACKFILL COMPLETE")
    print(f"  Appointments quarantined: {stats.appointments_quarantined}")
    print(f"  Initial visits processed: {stats.initial_visits_processed}")
    if stats.initial_visits_skipped:
        print(f"  Initial visits skipped (no service): {stats.initial_visits_skipped}")
    print(f"  Series appointments updated: {stats.series_appointments_updated}")
    print(f"  Total appointments affected: {stats.total_affected}")
    print(BANNER)


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    validate_settings(settings)
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )
    apply = args.apply and not args.dry_run

    session = SessionLocal()
    try:
        if not apply:
            plan = plan_registration_numbers(session)
            if args.json:
                print(json.dumps(plan.as_dict(), indent=2, sort_keys=True))
            else:
                print_plan(plan)
            return 0

        try:
            stats = backfill_registration_numbers(
                session, confirm=args.confirm, max_retries=args.max_retries
            )
        except ConfirmationRequired as exc:
            print(BANNER)
            print("SAFETY CHECK FAILED")
            print(str(exc))
            print("Re-run with --apply --i-understand-this-is-destructive.")
            print(BANNER)
            return 2
        if args.json:
            print(json.dumps(stats.as_dict(), indent=2, sort_keys=True))
        else:
            print_stats(stats)
        return 0
    except Exception as exc:
        session.rollback()
        raise exc
    finally:
        session.close()


if __name__ == "__main__":
    raise SystemExit(main())
