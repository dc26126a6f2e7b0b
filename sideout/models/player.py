"""Player model."""
from __future__ import annotations

from datetime import date, datetime
from typing import Optional

from sqlalchemy import Date, DateTime, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from sideout.models.base import Base, utcnow


class Player(Base):
    """Person who signs up for sessions. Counters are maintained by the registration and attendance flows."""

    __tablename__ = "players"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    phone: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    total_attendance: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_registrations: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_no_shows: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_waitlists: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_attendance_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    # No delete cascade: registrations are history and keep their player
    registrations = relationship("Registration", back_populates="player")
