"""Training session model - one scheduled occurrence players sign up for."""
from __future__ import annotations

import datetime as dt
from typing import Optional

from sqlalchemy import Date, DateTime, ForeignKey, Integer, String, Text, Time
from sqlalchemy.orm import Mapped, mapped_column, relationship

from sideout.models.base import Base, utcnow

SESSION_STATUSES = ("scheduled", "in_progress", "completed", "cancelled")


class TrainingSession(Base):
    """Scheduled session with a capacity rule string (e.g. "max_18,min_12,even").

    Occupancy and constraint satisfaction are never stored here; they are
    recomputed from the registrations on every query.
    """

    __tablename__ = "sessions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    date: Mapped[dt.date] = mapped_column(Date, nullable=False, index=True)
    start_time: Mapped[dt.time] = mapped_column(Time, nullable=False)
    end_time: Mapped[dt.time] = mapped_column(Time, nullable=False)
    fields_available: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    capacity_constraints: Mapped[str] = mapped_column(String(255), nullable=False)
    cancellation_deadline_hours: Mapped[int] = mapped_column(Integer, default=24, nullable=False)
    status: Mapped[str] = mapped_column(String(32), default="scheduled", nullable=False)  # scheduled, in_progress, completed, cancelled
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    share_token: Mapped[str] = mapped_column(String(21), unique=True, nullable=False, index=True)
    created_by_id: Mapped[Optional[int]] = mapped_column(ForeignKey("web_users.id"), nullable=True, index=True)

    created_at: Mapped[dt.datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[dt.datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    registrations = relationship("Registration", back_populates="session")

    @property
    def starts_at(self) -> dt.datetime:
        return dt.datetime.combine(self.date, self.start_time)

    def cancellation_deadline(self) -> dt.datetime:
        """Latest time (naive UTC) a player can cancel without it counting as late."""
        return self.starts_at - dt.timedelta(hours=self.cancellation_deadline_hours)
