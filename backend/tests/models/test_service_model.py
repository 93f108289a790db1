from app.models.appointment import Appointment
from app.models.service import Service, normalize_service_code, normalize_service_name


def test_normalize_service_code():
    assert normalize_service_code(" fh ") == "FH"
    assert normalize_service_code("   ") is None
    assert normalize_service_code(None) is None


def test_normalize_service_name():
    assert normalize_service_name("Fisio  Home care") == "FISIO_HOME_CARE"
    assert normalize_service_name("") is None


def test_service_normalizes_on_assignment(session):
    service = Service(name="wellness visit", code="w")
    session.add(service)
    session.flush()

    assert service.name == "WELLNESS_VISIT"
    assert service.code == "W"


def test_appointment_service_code_and_initial_visit(session, make_service, make_appointment):
    fh = make_service("fh")
    initial = make_appointment(fh)
    follow_up = make_appointment(fh, initial_visit=initial)
    orphan = Appointment(visit_number=1)

    assert initial.is_initial_visit
    assert not follow_up.is_initial_visit
    assert initial.service_code == "FH"
    assert orphan.service_code is None
    assert initial.series_appointments == [follow_up]
