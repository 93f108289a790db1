from __future__ import annotations

import re

from sqlalchemy import Boolean, String
from sqlalchemy.orm import Mapped, mapped_column, relationship, validates

from app.models.base import Base, TimestampMixin


def normalize_service_code(code: str | None) -> str | None:
    if code is None:
        return None
    cleaned = code.strip().upper()
    return cleaned or None


def normalize_service_name(name: str | None) -> str | None:
    if name is None:
        return None
    cleaned = re.sub(r"\s+", "_", name.strip()).upper()
    return cleaned or None


class Service(Base, TimestampMixin):
    __tablename__ = "services"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False, unique=True)
    code: Mapped[str] = mapped_column(String(20), nullable=False)
    active: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    appointments = relationship("Appointment", back_populates="service")

    @validates("name")
    def _normalize_name(self, _key: str, value: str | None) -> str | None:
        return normalize_service_name(value)

    @validates("code")
    def _normalize_code(self, _key: str, value: str | None) -> str | None:
        return normalize_service_code(value)
