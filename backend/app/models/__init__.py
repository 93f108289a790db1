from app.models.base import Base
from app.models.service import Service
from app.models.appointment import Appointment, AppointmentStatus

__all__ = [
    "Base",
    "Service",
    "Appointment",
    "AppointmentStatus",
]
