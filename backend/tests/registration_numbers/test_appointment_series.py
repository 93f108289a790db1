from datetime import datetime, timezone

import pytest

from app.models.appointment import Appointment, AppointmentStatus
from app.services.appointment_series import (
    list_series_visits,
    reorder_series_visit_numbers,
    series_root,
)


def _at(day: int) -> datetime:
    return datetime(2025, 12, day, 9, 0, tzinfo=timezone.utc)


@pytest.fixture()
def series(session, make_service, make_appointment):
    fh = make_service("FH")
    root = make_appointment(
        fh,
        registration_number="FH-000001",
        appointment_date_time=_at(20),
        status=AppointmentStatus.completed,
    )
    visit_2 = make_appointment(
        fh, initial_visit=root, registration_number="FH-000001", appointment_date_time=_at(23)
    )
    visit_3 = make_appointment(
        fh, initial_visit=root, registration_number="FH-000001", appointment_date_time=_at(25)
    )
    visit_4 = make_appointment(
        fh,
        initial_visit=root,
        registration_number="FH-000001",
        status=AppointmentStatus.unscheduled,
    )
    session.commit()
    return root, visit_2, visit_3, visit_4


def test_reorder_moves_rescheduled_visit_after_later_visits(session, series):
    root, visit_2, visit_3, visit_4 = series
    visit_2.appointment_date_time = _at(30)
    session.commit()

    reordered = reorder_series_visit_numbers(session, visit_2)
    session.commit()

    assert [visit.id for visit in reordered] == [visit_3.id, visit_2.id, visit_4.id]
    assert root.visit_number == 1
    assert visit_3.visit_number == 2
    assert visit_2.visit_number == 3
    assert visit_4.visit_number == 4


def test_reorder_keeps_numbers_when_order_unchanged(session, series):
    root, visit_2, visit_3, visit_4 = series

    reorder_series_visit_numbers(session, root)
    session.commit()

    assert [v.visit_number for v in (root, visit_2, visit_3, visit_4)] == [1, 2, 3, 4]


def test_reorder_without_completed_visits_starts_at_one(session, make_service, make_appointment):
    fh = make_service("FH")
    root = make_appointment(fh, registration_number="FH-000002", appointment_date_time=_at(10))
    follow_up = make_appointment(
        fh, initial_visit=root, registration_number="FH-000002", appointment_date_time=_at(5)
    )
    session.commit()

    reorder_series_visit_numbers(session, follow_up)
    session.commit()

    assert follow_up.visit_number == 1
    assert root.visit_number == 2


def test_reorder_is_noop_without_scheduled_visits(session, make_service, make_appointment):
    fh = make_service("FH")
    root = make_appointment(fh, registration_number="FH-000003")
    follow_up = make_appointment(fh, initial_visit=root, registration_number="FH-000003")
    session.commit()

    assert reorder_series_visit_numbers(session, follow_up) == []
    assert (root.visit_number, follow_up.visit_number) == (1, 2)


def test_series_root_and_visits(session, series):
    root, visit_2, visit_3, visit_4 = series

    assert series_root(session, visit_3) is root
    assert series_root(session, root) is root
    assert list_series_visits(session, root) == [root, visit_2, visit_3, visit_4]


def test_series_root_missing_initial_visit(session):
    orphan = Appointment(id=999, appointment_reference_id=12345, visit_number=2)

    with pytest.raises(LookupError):
        series_root(session, orphan)
