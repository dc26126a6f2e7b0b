"""Player lookup, creation and statistics."""
from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from typing import Optional

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from sideout.models import Player, Registration, TrainingSession


class PlayerValidationError(ValueError):
    def __init__(self, errors: dict[str, list[str]]):
        self.errors = errors
        super().__init__("; ".join(f"{k}: {', '.join(v)}" for k, v in errors.items()))


def _validate(name: Optional[str], email: Optional[str]) -> dict[str, list[str]]:
    errors: dict[str, list[str]] = {}
    if not name or not name.strip():
        errors["name"] = ["is required"]
    if email and "@" not in email:
        errors["email"] = ["must be a valid email"]
    return errors


async def get_player(db: AsyncSession, player_id: int) -> Optional[Player]:
    return await db.get(Player, player_id)


async def list_players(
    db: AsyncSession, search: Optional[str] = None, limit: int = 100, offset: int = 0
) -> list[Player]:
    """Players by name; search matches name or email, case-insensitive."""
    query = select(Player)
    if search:
        term = f"%{search.strip().lower()}%"
        query = query.where(or_(func.lower(Player.name).like(term), func.lower(Player.email).like(term)))
    result = await db.execute(query.order_by(func.lower(Player.name), Player.id).limit(limit).offset(offset))
    return list(result.scalars().all())


async def get_or_create_player_by_name(
    db: AsyncSession,
    name: str,
    email: Optional[str] = None,
    phone: Optional[str] = None,
) -> Player:
    """Find a player by exact (trimmed, case-insensitive) name or create one. Raises PlayerValidationError."""
    errors = _validate(name, email)
    if errors:
        raise PlayerValidationError(errors)
    clean = name.strip()
    result = await db.execute(
        select(Player).where(func.lower(Player.name) == clean.lower()).order_by(Player.id).limit(1)
    )
    player = result.scalar_one_or_none()
    if player:
        # Fill contact details the player didn't have yet
        if email and not player.email:
            player.email = email
        if phone and not player.phone:
            player.phone = phone
    else:
        player = Player(name=clean, email=email or None, phone=phone or None)
        db.add(player)
    await db.commit()
    await db.refresh(player)
    return player


async def count_recent_attendance(db: AsyncSession, player_id: int, as_of: date, weeks: int = 4) -> int:
    """Sessions attended whose date falls within the last `weeks` weeks before as_of."""
    cutoff = as_of - timedelta(weeks=weeks)
    result = await db.execute(
        select(func.count(Registration.id))
        .join(TrainingSession, Registration.session_id == TrainingSession.id)
        .where(
            Registration.player_id == player_id,
            Registration.status == "attended",
            TrainingSession.date >= cutoff,
        )
    )
    return result.scalar_one()


async def get_player_stats(db: AsyncSession, player: Player) -> dict:
    result = await db.execute(
        select(Registration.status, func.count(Registration.id))
        .where(
            Registration.player_id == player.id,
            Registration.status.in_(("attended", "no_show")),
        )
        .group_by(Registration.status)
    )
    counts = {status: n for status, n in result.all()}
    attended = counts.get("attended", 0)
    no_shows = counts.get("no_show", 0)
    completed = attended + no_shows
    return {
        "attendance_rate": round(attended / completed * 100, 1) if completed else 0.0,
        "no_show_rate": round(no_shows / completed * 100, 1) if completed else 0.0,
        "total_sessions": player.total_registrations,
        "completed_sessions": completed,
        "attended": attended,
        "no_shows": no_shows,
    }


async def get_player_upcoming_registrations(db: AsyncSession, player_id: int, today: date) -> list[Registration]:
    result = await db.execute(
        select(Registration)
        .join(TrainingSession, Registration.session_id == TrainingSession.id)
        .where(
            Registration.player_id == player_id,
            Registration.status.in_(("confirmed", "waitlisted")),
            TrainingSession.date >= today,
        )
        .order_by(TrainingSession.date, TrainingSession.start_time)
    )
    return list(result.scalars().all())


HISTORY_FILTERS = ("all", "upcoming", "past")


async def get_player_registration_history(
    db: AsyncSession,
    player_id: int,
    when: str = "all",
    limit: int = 50,
    offset: int = 0,
    today: Optional[date] = None,
) -> list[Registration]:
    """A player's registrations, newest session first, with their sessions loaded.

    when="upcoming" keeps active registrations for sessions from today on;
    when="past" keeps sessions before today in any status.
    """
    if when not in HISTORY_FILTERS:
        raise ValueError(f"when must be one of {HISTORY_FILTERS}, got {when!r}")
    today = today or datetime.now(timezone.utc).date()
    query = (
        select(Registration)
        .join(TrainingSession, Registration.session_id == TrainingSession.id)
        .where(Registration.player_id == player_id)
        .options(selectinload(Registration.session))
    )
    if when == "upcoming":
        query = query.where(TrainingSession.date >= today, Registration.status.in_(("confirmed", "waitlisted")))
    elif when == "past":
        query = query.where(TrainingSession.date < today)
    query = query.order_by(TrainingSession.date.desc(), TrainingSession.start_time.desc(), Registration.id.desc())
    result = await db.execute(query.limit(limit).offset(offset))
    return list(result.scalars().all())
