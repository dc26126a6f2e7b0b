"""Registration model - player registered for a session."""
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import DateTime, ForeignKey, Index, Integer, Numeric, String, Text, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from sideout.models.base import Base, utcnow

REGISTRATION_STATUSES = ("confirmed", "waitlisted", "cancelled", "attended", "no_show")
ACTIVE_STATUSES = ("confirmed", "waitlisted")
ATTENDANCE_STATUSES = ("attended", "no_show")


class Registration(Base):
    """Player registration for a session. Rows are never deleted; status carries the lifecycle."""

    __tablename__ = "registrations"
    __table_args__ = (
        # At most one active registration per (session, player)
        Index(
            "uq_registrations_active_player",
            "session_id",
            "player_id",
            unique=True,
            sqlite_where=text("status IN ('confirmed', 'waitlisted')"),
            postgresql_where=text("status IN ('confirmed', 'waitlisted')"),
        ),
        Index("ix_registrations_session_status", "session_id", "status"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    session_id: Mapped[int] = mapped_column(ForeignKey("sessions.id"), nullable=False)
    player_id: Mapped[int] = mapped_column(ForeignKey("players.id"), nullable=False)
    status: Mapped[str] = mapped_column(String(16), default="confirmed", nullable=False)
    position: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)  # waitlist only, 1-based
    priority_score: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2), nullable=True)  # waitlist only
    registered_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    cancellation_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    cancellation_token: Mapped[str] = mapped_column(String(64), unique=True, nullable=False, index=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    session: Mapped["TrainingSession"] = relationship("TrainingSession", back_populates="registrations")
    player: Mapped["Player"] = relationship("Player", back_populates="registrations")

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES
