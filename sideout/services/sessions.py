"""Session service: creation with write-time validation, share links, capacity queries."""
from __future__ import annotations

import logging
from datetime import date, datetime, time, timedelta, timezone
from typing import Any, Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

import config
from sideout.models import Player, Registration, TrainingSession
from sideout.models.session import SESSION_STATUSES
from sideout.scheduling.capacity import CapacityEvaluator, evaluator_for
from sideout.scheduling.constraints import Occupancy
from sideout.scheduling.parser import validate_rule_string
from sideout.scheduling.tokens import generate_share_token, is_valid_share_token
from sideout.services.locks import locked_session, session_locks

logger = logging.getLogger("sideout.sessions")

CLOSED_STATUSES = ("cancelled", "completed")


class SessionValidationError(Exception):
    """Session fields failed validation. ``errors`` maps field name -> messages."""

    def __init__(self, errors: dict[str, list[str]]):
        self.errors = errors
        summary = "; ".join(f"{k}: {', '.join(v)}" for k, v in errors.items())
        super().__init__(f"Invalid session: {summary}")


def utc_today() -> date:
    return datetime.now(timezone.utc).date()


def validate_session_fields(
    values: dict[str, Any], *, check_date: bool = True, today: Optional[date] = None
) -> dict[str, list[str]]:
    """Validate session attributes. Returns {field: [messages]} for every problem found."""
    errors: dict[str, list[str]] = {}

    def add(field: str, message: str) -> None:
        errors.setdefault(field, []).append(message)

    for field in ("date", "start_time", "end_time", "capacity_constraints"):
        if values.get(field) is None:
            add(field, "is required")
    # Defaulted when absent, never null
    for field in ("fields_available", "cancellation_deadline_hours", "status"):
        if field in values and values[field] is None:
            add(field, "is required")

    start, end = values.get("start_time"), values.get("end_time")
    if isinstance(start, time) and isinstance(end, time) and start >= end:
        add("end_time", "must be after start time")

    session_date = values.get("date")
    status = values.get("status", "scheduled")
    if status is not None and status not in SESSION_STATUSES:
        add("status", f"must be one of {', '.join(SESSION_STATUSES)}")
    if check_date and isinstance(session_date, date) and status not in CLOSED_STATUSES:
        if session_date < (today or utc_today()):
            add("date", "must be today or in the future")

    fields_available = values.get("fields_available", 1)
    if fields_available is not None and (not isinstance(fields_available, int) or fields_available <= 0):
        add("fields_available", "must be greater than 0")

    deadline = values.get("cancellation_deadline_hours", 24)
    if deadline is not None and (not isinstance(deadline, int) or deadline < 0):
        add("cancellation_deadline_hours", "must be greater than or equal to 0")

    if values.get("capacity_constraints") is not None:
        for message in validate_rule_string(values["capacity_constraints"]):
            add("capacity_constraints", message)
    return errors


async def generate_unique_share_token(db: AsyncSession) -> str:
    """Generate share tokens until one is not used by any stored session."""
    while True:
        token = generate_share_token()
        result = await db.execute(select(TrainingSession.id).where(TrainingSession.share_token == token))
        if result.scalar_one_or_none() is None:
            return token
        logger.warning("Share token collision, regenerating")


async def create_session(
    db: AsyncSession,
    *,
    date: date,
    start_time: time,
    end_time: time,
    capacity_constraints: str,
    fields_available: int = 1,
    cancellation_deadline_hours: int = 24,
    notes: Optional[str] = None,
    created_by_id: Optional[int] = None,
    today: Optional[date] = None,
) -> TrainingSession:
    """Validate and insert a new session with a fresh share token. Raises SessionValidationError."""
    values = {
        "date": date,
        "start_time": start_time,
        "end_time": end_time,
        "capacity_constraints": capacity_constraints,
        "fields_available": fields_available,
        "cancellation_deadline_hours": cancellation_deadline_hours,
    }
    errors = validate_session_fields(values, today=today)
    if errors:
        raise SessionValidationError(errors)
    ts = TrainingSession(
        **values,
        notes=notes,
        created_by_id=created_by_id,
        status="scheduled",
        share_token=await generate_unique_share_token(db),
    )
    db.add(ts)
    await db.commit()
    await db.refresh(ts)
    logger.info("Session %s created for %s (%s)", ts.id, ts.date, ts.capacity_constraints)
    return ts


async def update_session(
    db: AsyncSession, ts: TrainingSession, changes: dict[str, Any], today: Optional[date] = None
) -> TrainingSession:
    """Apply attribute changes after validating the resulting session. Raises SessionValidationError.

    Runs under the session lock so a rule or field change never lands between
    a signup's occupancy read and its write.
    """
    editable = {
        "date",
        "start_time",
        "end_time",
        "capacity_constraints",
        "fields_available",
        "cancellation_deadline_hours",
        "notes",
        "status",
    }
    unknown = set(changes) - editable
    if unknown:
        raise SessionValidationError({k: ["cannot be changed"] for k in sorted(unknown)})
    async with session_locks.hold(ts.id):
        ts = await locked_session(db, ts.id)
        merged = {k: getattr(ts, k) for k in editable}
        merged.update(changes)
        # Past dates are only rejected when the date itself is being changed
        errors = validate_session_fields(merged, check_date="date" in changes, today=today)
        if errors:
            await db.commit()
            raise SessionValidationError(errors)
        for key, value in changes.items():
            setattr(ts, key, value)
        await db.commit()
    await db.refresh(ts)
    logger.info("Session %s updated: %s", ts.id, ", ".join(sorted(changes)))
    return ts


async def cancel_session(db: AsyncSession, ts: TrainingSession, reason: Optional[str] = None) -> TrainingSession:
    return await update_session(db, ts, {"status": "cancelled", "notes": reason if reason is not None else ts.notes})


async def get_session(db: AsyncSession, session_id: int) -> Optional[TrainingSession]:
    return await db.get(TrainingSession, session_id)


async def list_sessions(
    db: AsyncSession,
    from_date: Optional[date] = None,
    to_date: Optional[date] = None,
    status: Optional[str | list[str]] = None,
) -> list[TrainingSession]:
    query = select(TrainingSession)
    if from_date is not None:
        query = query.where(TrainingSession.date >= from_date)
    if to_date is not None:
        query = query.where(TrainingSession.date <= to_date)
    if isinstance(status, list):
        query = query.where(TrainingSession.status.in_(status))
    elif status is not None:
        query = query.where(TrainingSession.status == status)
    result = await db.execute(query.order_by(TrainingSession.date, TrainingSession.start_time))
    return list(result.scalars().all())


async def list_upcoming_sessions(db: AsyncSession, **filters) -> list[TrainingSession]:
    return await list_sessions(db, from_date=utc_today(), **filters)


# --- Share links ---


def share_token_valid(ts: TrainingSession, today: Optional[date] = None) -> bool:
    """A share link works while the session is open and not in the past."""
    if ts.status in CLOSED_STATUSES:
        return False
    return ts.date >= (today or utc_today())


async def resolve_share_token(
    db: AsyncSession, token: str, today: Optional[date] = None
) -> tuple[str, Optional[TrainingSession]]:
    """Return (outcome, session) where outcome is ok, not_found, expired or cancelled."""
    if not is_valid_share_token(token):
        return "not_found", None
    result = await db.execute(select(TrainingSession).where(TrainingSession.share_token == token))
    ts = result.scalar_one_or_none()
    if ts is None:
        return "not_found", None
    if ts.status == "cancelled":
        return "cancelled", None
    if not share_token_valid(ts, today):
        return "expired", None
    return "ok", ts


async def get_session_by_share_token(
    db: AsyncSession, token: str, today: Optional[date] = None
) -> Optional[TrainingSession]:
    """Session for a share link, or None when invalid, unknown, expired or cancelled."""
    _, ts = await resolve_share_token(db, token, today)
    return ts


def share_path(token: str) -> str:
    """Path the public API serves a share link on."""
    return f"/api/{config.SHARE_PATH_PREFIX}/{token}"


def cancellation_path(token: str) -> str:
    return f"/api/{config.CANCEL_PATH_PREFIX}/{token}"


def share_url(token: str) -> str:
    return config.PUBLIC_BASE_URL.rstrip("/") + share_path(token)


def cancellation_url(token: str) -> str:
    return config.PUBLIC_BASE_URL.rstrip("/") + cancellation_path(token)


# --- Capacity ---


def evaluator_for_session(ts: TrainingSession) -> CapacityEvaluator:
    return evaluator_for(ts.capacity_constraints, ts.fields_available)


async def load_occupancy(db: AsyncSession, ts: TrainingSession) -> Occupancy:
    """Count confirmed and waitlisted registrations. Always read from the database, never cached."""
    result = await db.execute(
        select(Registration.status, func.count(Registration.id))
        .where(
            Registration.session_id == ts.id,
            Registration.status.in_(("confirmed", "waitlisted")),
        )
        .group_by(Registration.status)
    )
    counts = {status: n for status, n in result.all()}
    return Occupancy(
        confirmed_count=counts.get("confirmed", 0),
        waitlist_count=counts.get("waitlisted", 0),
        fields_available=ts.fields_available,
    )


async def get_capacity_status(db: AsyncSession, ts: TrainingSession) -> dict:
    """{confirmed, waitlist, can_add_player, constraints_satisfied, unsatisfied_constraints, description}"""
    occupancy = await load_occupancy(db, ts)
    return evaluator_for_session(ts).status(occupancy)


async def get_max_capacity(db: AsyncSession, ts: TrainingSession) -> int:
    return evaluator_for_session(ts).max_capacity()


async def can_register(db: AsyncSession, ts: TrainingSession) -> str:
    """"confirmed" if a signup right now would be confirmed, else "waitlisted"."""
    occupancy = await load_occupancy(db, ts)
    return "confirmed" if evaluator_for_session(ts).can_add_player(occupancy) else "waitlisted"


async def get_session_attendance_stats(db: AsyncSession, ts: TrainingSession) -> dict:
    result = await db.execute(
        select(Registration.status, func.count(Registration.id))
        .where(Registration.session_id == ts.id)
        .group_by(Registration.status)
    )
    counts = {status: n for status, n in result.all()}
    attended = counts.get("attended", 0)
    no_shows = counts.get("no_show", 0)
    pending = counts.get("confirmed", 0)
    total_confirmed = attended + no_shows + pending
    rate = round(attended / total_confirmed * 100, 1) if total_confirmed else 0.0
    return {
        "total_confirmed": total_confirmed,
        "attended": attended,
        "no_shows": no_shows,
        "pending": pending,
        "attendance_rate": rate,
    }


async def get_dashboard_stats(db: AsyncSession, user_id: Optional[int] = None, today: Optional[date] = None) -> dict:
    """Landing page counts. A trainer gets figures for the sessions they created."""
    if user_id is None:
        total_sessions = await db.scalar(select(func.count(TrainingSession.id)))
        total_players = await db.scalar(select(func.count(Player.id)))
        return {"total_sessions": total_sessions, "total_players": total_players}

    today = today or utc_today()
    month_start = datetime.combine(today.replace(day=1), time.min)
    week_start = datetime.combine(today - timedelta(days=7), time.min)
    sessions_this_month = await db.scalar(
        select(func.count(TrainingSession.id)).where(
            TrainingSession.created_by_id == user_id,
            TrainingSession.created_at >= month_start,
        )
    )
    registrations_this_week = await db.scalar(
        select(func.count(Registration.id))
        .join(TrainingSession, Registration.session_id == TrainingSession.id)
        .where(
            TrainingSession.created_by_id == user_id,
            Registration.registered_at >= week_start,
        )
    )
    result = await db.execute(
        select(TrainingSession)
        .where(
            TrainingSession.created_by_id == user_id,
            TrainingSession.date >= today,
            TrainingSession.status == "scheduled",
        )
        .order_by(TrainingSession.date, TrainingSession.start_time)
        .limit(1)
    )
    return {
        "sessions_this_month": sessions_this_month,
        "registrations_this_week": registrations_this_week,
        "next_session": result.scalar_one_or_none(),
    }
