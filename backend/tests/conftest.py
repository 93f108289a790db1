from datetime import datetime, timedelta, timezone
from itertools import count

import pytest
from sqlalchemy import create_engine, event, select
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.models import Appointment, AppointmentStatus, Base, Service

BASE_TIME = datetime(2025, 9, 1, 8, 0, tzinfo=timezone.utc)


@pytest.fixture()
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    # pysqlite manages transactions itself unless told not to; SAVEPOINT needs our own BEGIN
    @event.listens_for(engine, "connect")
    def _disable_pysqlite_transactions(dbapi_connection, _record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN")

    Base.metadata.create_all(engine)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(engine)
        engine.dispose()


@pytest.fixture()
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture()
def session(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


@pytest.fixture()
def make_service(session):
    def _make(code: str, name: str | None = None) -> Service:
        service = Service(name=name or f"{code} service", code=code, active=True)
        session.add(service)
        session.flush()
        return service

    return _make


@pytest.fixture()
def make_appointment(session):
    minutes = count()

    def _make(
        service: Service | None,
        *,
        initial_visit: Appointment | None = None,
        registration_number: str | None = None,
        visit_number: int | None = None,
        created_at: datetime | None = None,
        appointment_date_time: datetime | None = None,
        status: AppointmentStatus = AppointmentStatus.paid,
    ) -> Appointment:
        if visit_number is None:
            visit_number = 1 if initial_visit is None else len(initial_visit.series_appointments) + 2
        appointment = Appointment(
            service_id=service.id if service else None,
            registration_number=registration_number,
            visit_number=visit_number,
            appointment_reference_id=initial_visit.id if initial_visit else None,
            appointment_date_time=appointment_date_time,
            status=status,
            created_at=created_at or BASE_TIME + timedelta(minutes=next(minutes)),
        )
        session.add(appointment)
        session.flush()
        if initial_visit is not None:
            session.refresh(initial_visit, attribute_names=["series_appointments"])
        return appointment

    return _make


@pytest.fixture()
def registration_snapshot(session):
    def _snapshot() -> dict[int, tuple]:
        rows = session.execute(
            select(
                Appointment.id,
                Appointment.registration_number,
                Appointment.visit_number,
                Appointment.appointment_reference_id,
            ).order_by(Appointment.id)
        )
        return {row[0]: tuple(row[1:]) for row in rows}

    return _snapshot
