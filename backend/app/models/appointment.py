from __future__ import annotations

import enum
from datetime import datetime

from sqlalchemy import DateTime, Enum, ForeignKey, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.models.base import Base, TimestampMixin


class AppointmentStatus(str, enum.Enum):
    unscheduled = "unscheduled"
    pending_therapist_assignment = "pending_therapist_assignment"
    pending_patient_approval = "pending_patient_approval"
    pending_payment = "pending_payment"
    paid = "paid"
    completed = "completed"
    cancelled = "cancelled"


class Appointment(Base, TimestampMixin):
    __tablename__ = "appointments"
    __table_args__ = (
        UniqueConstraint(
            "registration_number",
            "visit_number",
            name="uq_appointments_registration_number_visit_number",
        ),
        Index("ix_appointments_created_at_id", "created_at", "id"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    service_id: Mapped[int | None] = mapped_column(ForeignKey("services.id"), nullable=True)
    registration_number: Mapped[str | None] = mapped_column(String(40), nullable=True)
    visit_number: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    appointment_reference_id: Mapped[int | None] = mapped_column(
        ForeignKey("appointments.id"), nullable=True, index=True
    )
    appointment_date_time: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    status: Mapped[AppointmentStatus] = mapped_column(
        Enum(AppointmentStatus, name="appointment_status"),
        default=AppointmentStatus.pending_therapist_assignment,
        nullable=False,
    )

    service = relationship("Service", back_populates="appointments", lazy="joined")
    reference_appointment = relationship(
        "Appointment",
        remote_side=[id],
        back_populates="series_appointments",
    )
    series_appointments = relationship(
        "Appointment",
        back_populates="reference_appointment",
        order_by="Appointment.visit_number",
    )

    @property
    def is_initial_visit(self) -> bool:
        return self.appointment_reference_id is None

    @property
    def service_code(self) -> str | None:
        service = self.service
        if not service or not service.code:
            return None
        return service.code.upper()
