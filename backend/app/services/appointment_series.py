from __future__ import annotations

import logging

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.models.appointment import Appointment, AppointmentStatus

logger = logging.getLogger(__name__)


def series_root(session: Session, appointment: Appointment) -> Appointment:
    if appointment.appointment_reference_id is None:
        return appointment
    root = appointment.reference_appointment or session.get(
        Appointment, appointment.appointment_reference_id
    )
    if root is None:
        raise LookupError(
            f"Initial visit {appointment.appointment_reference_id} not found "
            f"for appointment {appointment.id}"
        )
    return root


def list_series_visits(session: Session, root: Appointment) -> list[Appointment]:
    follow_ups = session.scalars(
        select(Appointment)
        .where(Appointment.appointment_reference_id == root.id)
        .order_by(Appointment.visit_number.asc(), Appointment.id.asc())
    ).all()
    return [root, *follow_ups]


def reorder_series_visit_numbers(session: Session, appointment: Appointment) -> list[Appointment]:
    """Renumber the visits of a series chronologically after a reschedule.

    Completed visits keep their numbers. Scheduled visits that are not completed
    follow in order of ``appointment_date_time`` and unscheduled follow-ups go
    last, keeping their previous relative order. Returns the renumbered visits
    in their final order.
    """
    root = series_root(session, appointment)
    visits = list_series_visits(session, root)

    scheduled = [visit for visit in visits if visit.appointment_date_time is not None]
    if not scheduled:
        return []

    completed = [visit for visit in scheduled if visit.status == AppointmentStatus.completed]
    pending = sorted(
        (visit for visit in scheduled if visit.status != AppointmentStatus.completed),
        key=lambda visit: (visit.appointment_date_time, visit.id),
    )
    unscheduled = [
        visit
        for visit in visits
        if visit.appointment_date_time is None and visit.id != root.id
    ]
    current_number = max((visit.visit_number for visit in completed), default=0)

    to_reorder = pending + unscheduled
    # negative placeholders keep (registration_number, visit_number) unique between passes
    for index, visit in enumerate(to_reorder, start=1):
        visit.visit_number = -index
    session.flush()

    for visit in to_reorder:
        current_number += 1
        visit.visit_number = current_number
    session.flush()

    logger.info(
        "Reordered series visit numbers",
        extra={
            "series_root_id": root.id,
            "visits_reordered": len(to_reorder),
            "visits_completed": len(completed),
        },
    )
    return to_reorder
