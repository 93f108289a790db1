from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
import logging
import secrets

from sqlalchemy import String, cast, func, literal, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, aliased

from app.core.settings import settings
from app.models.appointment import Appointment
from app.models.service import Service, normalize_service_code

logger = logging.getLogger(__name__)

TEMPORARY_PREFIX = "temp-"
UNKNOWN_SERVICE_CODE = "UNKNOWN"
SEQUENCE_DIGITS = 6
PROGRESS_EVERY = 100

_UNIQUE_VIOLATION_SQLSTATE = "23505"


class RegistrationNumberError(RuntimeError):
    pass


class ConfirmationRequired(RegistrationNumberError):
    def __init__(self) -> None:
        super().__init__(
            "Safety confirmation required. Registration numbers are rewritten permanently; "
            "pass confirm=True to proceed."
        )


class UnresolvableService(RegistrationNumberError):
    def __init__(self, appointment_id: int | None) -> None:
        self.appointment_id = appointment_id
        super().__init__(f"Appointment {appointment_id} has no service associated")


class RetryBudgetExceeded(RegistrationNumberError):
    def __init__(self, appointment_id: int | None, attempts: int, last_candidate: str) -> None:
        self.appointment_id = appointment_id
        self.attempts = attempts
        self.last_candidate = last_candidate
        super().__init__(
            f"Failed to assign registration number for appointment {appointment_id} "
            f"after {attempts} attempts (last candidate {last_candidate})"
        )


@dataclass
class RegistrationNumberPlan:
    initial_visits: int = 0
    series_appointments: int = 0
    service_breakdown: Counter[str] = field(default_factory=Counter)

    def as_dict(self) -> dict[str, object]:
        return {
            "initial_visits": self.initial_visits,
            "series_appointments": self.series_appointments,
            "service_breakdown": dict(sorted(self.service_breakdown.items())),
        }


@dataclass
class RegistrationNumberBackfillStats:
    appointments_quarantined: int = 0
    initial_visits_processed: int = 0
    initial_visits_skipped: int = 0
    skipped_appointment_ids: list[int] = field(default_factory=list)
    uniqueness_retries: int = 0
    series_appointments_updated: int = 0
    series_skipped: int = 0
    service_counts: Counter[str] = field(default_factory=Counter)

    @property
    def total_affected(self) -> int:
        return self.initial_visits_processed + self.series_appointments_updated

    def as_dict(self) -> dict[str, object]:
        return {
            "appointments_quarantined": self.appointments_quarantined,
            "initial_visits_processed": self.initial_visits_processed,
            "initial_visits_skipped": self.initial_visits_skipped,
            "skipped_appointment_ids": list(self.skipped_appointment_ids),
            "uniqueness_retries": self.uniqueness_retries,
            "series_appointments_updated": self.series_appointments_updated,
            "series_skipped": self.series_skipped,
            "total_affected": self.total_affected,
            "service_counts": dict(sorted(self.service_counts.items())),
        }


def format_registration_number(service_code: str, sequence: int) -> str:
    return f"{service_code.upper()}-{sequence:0{SEQUENCE_DIGITS}d}"


def is_unique_violation(exc: IntegrityError) -> bool:
    orig = exc.orig
    if getattr(orig, "sqlstate", None) == _UNIQUE_VIOLATION_SQLSTATE:
        return True
    return "unique" in str(orig).lower()


def is_temporary_registration_number(value: str | None) -> bool:
    return bool(value) and value.startswith(TEMPORARY_PREFIX)


def _initial_visit():
    return Appointment.appointment_reference_id.is_(None)


def plan_registration_numbers(session: Session) -> RegistrationNumberPlan:
    summary = RegistrationNumberPlan()
    summary.initial_visits = int(
        session.scalar(select(func.count(Appointment.id)).where(_initial_visit())) or 0
    )
    summary.series_appointments = int(
        session.scalar(
            select(func.count(Appointment.id)).where(
                Appointment.appointment_reference_id.is_not(None)
            )
        )
        or 0
    )

    service_code = func.upper(func.trim(Service.code))
    rows = session.execute(
        select(service_code, func.count(Appointment.id))
        .select_from(Appointment)
        .outerjoin(Service, Service.id == Appointment.service_id)
        .where(_initial_visit())
        .group_by(service_code)
    )
    for code, count in rows:
        summary.service_breakdown[code or UNKNOWN_SERVICE_CODE] += int(count)

    logger.info(
        "Registration number plan: %s initial visits, %s series appointments",
        summary.initial_visits,
        summary.series_appointments,
        extra={"service_breakdown": dict(summary.service_breakdown)},
    )
    return summary


def backfill_registration_numbers(
    session: Session,
    *,
    confirm: bool = False,
    max_retries: int | None = None,
    commit: bool = True,
) -> RegistrationNumberBackfillStats:
    if not confirm:
        logger.error("Registration number backfill refused: confirmation missing")
        raise ConfirmationRequired()
    retry_budget = settings.registration_number_max_retries if max_retries is None else max_retries
    if retry_budget < 1:
        raise ValueError("max_retries must be at least 1")

    stats = RegistrationNumberBackfillStats()
    logger.info("Starting regeneration of registration numbers for all appointments")
    try:
        session.flush()
        stats.appointments_quarantined = _quarantine_registration_numbers(session)
        logger.info(
            "Step 0: applied temporary registration numbers to %s appointments",
            stats.appointments_quarantined,
        )
        _assign_initial_visit_numbers(session, stats, retry_budget)
        logger.info(
            "Step 1: regenerated %s initial visit registration numbers (%s skipped)",
            stats.initial_visits_processed,
            stats.initial_visits_skipped,
        )
        _propagate_series_numbers(session, stats)
        logger.info(
            "Step 2: updated %s series appointments",
            stats.series_appointments_updated,
        )
        session.expire_all()
        if commit:
            session.commit()
    except Exception:
        session.rollback()
        logger.exception("Registration number backfill failed; transaction rolled back")
        raise

    logger.info("Registration number backfill complete", extra=stats.as_dict())
    return stats


def _quarantine_registration_numbers(session: Session) -> int:
    placeholder = literal(TEMPORARY_PREFIX, String) + cast(Appointment.id, String)
    result = session.execute(
        update(Appointment).values(registration_number=placeholder),
        execution_options={"synchronize_session": False},
    )
    return int(result.rowcount or 0)


def _resolve_service_code(appointment_id: int, raw_code: str | None) -> str:
    code = normalize_service_code(raw_code)
    if code is None:
        raise UnresolvableService(appointment_id)
    return code


def _assign_initial_visit_numbers(
    session: Session,
    stats: RegistrationNumberBackfillStats,
    max_retries: int,
) -> None:
    rows = session.execute(
        select(Appointment.id, Service.code)
        .select_from(Appointment)
        .outerjoin(Service, Service.id == Appointment.service_id)
        .where(_initial_visit())
        .order_by(Appointment.created_at.asc(), Appointment.id.asc())
    ).all()

    # service code -> next sequence, scoped to this run
    counters: dict[str, int] = {}
    for appointment_id, raw_code in rows:
        try:
            service_code = _resolve_service_code(appointment_id, raw_code)
        except UnresolvableService as exc:
            stats.initial_visits_skipped += 1
            stats.skipped_appointment_ids.append(appointment_id)
            logger.warning("Skipping appointment %s - %s", appointment_id, exc)
            continue

        counter = counters.setdefault(service_code, 1)
        counter = _persist_initial_visit_number(
            session, appointment_id, service_code, counter, max_retries, stats
        )
        counters[service_code] = counter + 1
        stats.initial_visits_processed += 1
        stats.service_counts[service_code] += 1
        if stats.initial_visits_processed % PROGRESS_EVERY == 0:
            logger.info("Processed %s initial visits...", stats.initial_visits_processed)


def _persist_initial_visit_number(
    session: Session,
    appointment_id: int,
    service_code: str,
    counter: int,
    max_retries: int,
    stats: RegistrationNumberBackfillStats,
) -> int:
    attempts = 0
    while True:
        candidate = format_registration_number(service_code, counter)
        try:
            with session.begin_nested():
                session.execute(
                    update(Appointment)
                    .where(Appointment.id == appointment_id)
                    .values(registration_number=candidate),
                    execution_options={"synchronize_session": False},
                )
            return counter
        except IntegrityError as exc:
            if not is_unique_violation(exc):
                raise
            attempts += 1
            stats.uniqueness_retries += 1
            if attempts >= max_retries:
                logger.error(
                    "Failed to assign registration number for appointment %s after %s attempts",
                    appointment_id,
                    attempts,
                )
                raise RetryBudgetExceeded(appointment_id, attempts, candidate) from exc
            counter += 1


def _propagate_series_numbers(session: Session, stats: RegistrationNumberBackfillStats) -> None:
    follow_up = aliased(Appointment)
    has_series = (
        select(follow_up.id)
        .where(follow_up.appointment_reference_id == Appointment.id)
        .exists()
    )
    rows = session.execute(
        select(Appointment.id, Appointment.registration_number)
        .where(_initial_visit(), has_series)
        .order_by(Appointment.id.asc())
    ).all()

    for index, (initial_visit_id, shared_number) in enumerate(rows, start=1):
        if not shared_number or is_temporary_registration_number(shared_number):
            stats.series_skipped += 1
            logger.warning(
                "Skipping series of initial visit %s - no registration number", initial_visit_id
            )
            continue
        result = session.execute(
            update(Appointment)
            .where(
                Appointment.appointment_reference_id == initial_visit_id,
                or_(
                    Appointment.registration_number.is_(None),
                    Appointment.registration_number != shared_number,
                ),
            )
            .values(registration_number=shared_number),
            execution_options={"synchronize_session": False},
        )
        stats.series_appointments_updated += int(result.rowcount or 0)
        if index % PROGRESS_EVERY == 0:
            logger.info(
                "Propagated %s series (%s appointments updated)...",
                index,
                stats.series_appointments_updated,
            )


def _random_sequence() -> int:
    return secrets.randbelow(10**SEQUENCE_DIGITS)


def _registration_number_taken(session: Session, candidate: str) -> bool:
    return (
        session.scalar(
            select(Appointment.id).where(Appointment.registration_number == candidate).limit(1)
        )
        is not None
    )


def assign_registration_number(
    session: Session,
    appointment: Appointment,
    *,
    max_retries: int | None = None,
) -> str | None:
    if appointment.registration_number:
        return appointment.registration_number

    if appointment.appointment_reference_id is not None or appointment.reference_appointment:
        reference = appointment.reference_appointment or session.get(
            Appointment, appointment.appointment_reference_id
        )
        if reference is None or not reference.registration_number:
            return None
        appointment.registration_number = reference.registration_number
        return appointment.registration_number

    service = appointment.service
    if service is None and appointment.service_id is not None:
        service = session.get(Service, appointment.service_id)
    service_code = normalize_service_code(service.code) if service else None
    if service_code is None:
        return None

    budget = settings.registration_number_max_retries if max_retries is None else max_retries
    candidate = ""
    for _attempt in range(budget):
        candidate = format_registration_number(service_code, _random_sequence())
        if not _registration_number_taken(session, candidate):
            appointment.registration_number = candidate
            return candidate
    raise RetryBudgetExceeded(appointment.id, budget, candidate)
