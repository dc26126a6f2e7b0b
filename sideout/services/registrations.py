"""Registration state machine and waitlist promotion.

    signup    -> confirmed | waitlisted        (admission lookahead on capacity rules)
    cancel    confirmed | waitlisted -> cancelled   (confirmed triggers promotion)
    promote   waitlisted -> confirmed           (top priority, or a chosen player)
    attend    confirmed -> attended | no_show

Each operation runs under the session's lock in a single transaction and
returns an Outcome. Domain failures (already registered, not active, ...) are
reported in Outcome.error rather than raised; the caller shows them to the
user. Successful operations carry the change events to relay.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable, Optional

from sqlalchemy import case, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from sideout.models import Player, Registration, TrainingSession
from sideout.models.base import as_naive_utc, utcnow
from sideout.models.registration import ACTIVE_STATUSES, ATTENDANCE_STATUSES
from sideout.scheduling.events import ChangeEvent, EventKind
from sideout.scheduling.priority import as_decimal
from sideout.scheduling.tokens import generate_cancellation_token, verify_cancellation_token
from sideout.services.locks import locked_session, session_locks
from sideout.services.sessions import evaluator_for_session, load_occupancy
from sideout.services.waitlist import calculate_priority, compact_positions, next_waitlisted

logger = logging.getLogger("sideout.registrations")

ALREADY_REGISTERED = "already_registered"
SESSION_NOT_FOUND = "session_not_found"
SESSION_CLOSED = "session_closed"
PLAYER_NOT_FOUND = "player_not_found"
REGISTRATION_NOT_FOUND = "registration_not_found"
INVALID_TOKEN = "invalid_token"
NOT_ACTIVE = "not_active"
INVALID_TRANSITION = "invalid_transition"


@dataclass
class Outcome:
    """Result of a state-machine operation."""

    ok: bool = True
    error: Optional[str] = None
    registration: Optional[Registration] = None
    promoted: Optional[Registration] = None
    late_cancellation: bool = False
    count: int = 0
    events: list[ChangeEvent] = field(default_factory=list)

    @classmethod
    def failure(cls, error: str, registration: Optional[Registration] = None) -> "Outcome":
        return cls(ok=False, error=error, registration=registration)


async def _release(db: AsyncSession, error: str, registration: Optional[Registration] = None) -> Outcome:
    """End the locked transaction (releasing the row lock) and report a domain failure.

    Nothing has been written on these paths yet.
    """
    await db.commit()
    return Outcome.failure(error, registration)


async def _active_registration(db: AsyncSession, session_id: int, player_id: int) -> Optional[Registration]:
    result = await db.execute(
        select(Registration).where(
            Registration.session_id == session_id,
            Registration.player_id == player_id,
            Registration.status.in_(ACTIVE_STATUSES),
        )
    )
    return result.scalars().first()


async def _unique_cancellation_token(db: AsyncSession) -> str:
    while True:
        token = generate_cancellation_token()
        result = await db.execute(select(Registration.id).where(Registration.cancellation_token == token))
        if result.scalar_one_or_none() is None:
            return token


async def _bump_player(db: AsyncSession, player_id: int, **values) -> None:
    await db.execute(update(Player).where(Player.id == player_id).values(**values))


# --- Signup ---


async def register_player(
    db: AsyncSession, session_id: int, player_id: int, now: Optional[datetime] = None
) -> Outcome:
    """Confirm the player if one more fits the capacity rules, otherwise waitlist with a priority score."""
    now = as_naive_utc(now) if now else utcnow()
    async with session_locks.hold(session_id):
        ts = await locked_session(db, session_id)
        if ts is None:
            return await _release(db, SESSION_NOT_FOUND)
        if ts.status != "scheduled":
            return await _release(db, SESSION_CLOSED)
        player = await db.get(Player, player_id, populate_existing=True)
        if player is None:
            return await _release(db, PLAYER_NOT_FOUND)
        existing = await _active_registration(db, session_id, player_id)
        if existing is not None:
            return await _release(db, ALREADY_REGISTERED, existing)

        occupancy = await load_occupancy(db, ts)
        if evaluator_for_session(ts).can_add_player(occupancy):
            status, score, position = "confirmed", None, None
        else:
            status = "waitlisted"
            score = as_decimal(await calculate_priority(db, player, as_of=now.date()))
            position = occupancy.waitlist_count + 1

        reg = Registration(
            session_id=session_id,
            player_id=player_id,
            status=status,
            priority_score=score,
            position=position,
            registered_at=now,
            cancellation_token=await _unique_cancellation_token(db),
        )
        db.add(reg)
        counters = {"total_registrations": Player.total_registrations + 1}
        if status == "waitlisted":
            counters["total_waitlists"] = Player.total_waitlists + 1
        await _bump_player(db, player_id, **counters)
        try:
            await db.commit()
        except IntegrityError:
            # Active-registration index: another process registered this player first
            await db.rollback()
            logger.warning("Duplicate active registration blocked: player %s session %s", player_id, session_id)
            return Outcome.failure(ALREADY_REGISTERED)

    logger.info(
        "Player %s registered for session %s: %s (confirmed=%d, waitlist=%d)",
        player_id,
        session_id,
        status,
        occupancy.confirmed_count + (status == "confirmed"),
        occupancy.waitlist_count + (status == "waitlisted"),
    )
    event = ChangeEvent(
        session_id,
        EventKind.PLAYER_REGISTERED,
        {"player_id": player_id, "registration_id": reg.id, "status": status},
    )
    return Outcome(registration=reg, events=[event])


# --- Promotion ---


async def _promote(
    db: AsyncSession, ts: TrainingSession, player_id: Optional[int] = None
) -> tuple[Optional[Registration], list[ChangeEvent]]:
    """Promote within the caller's transaction and lock. No-op when capacity or waitlist is empty."""
    occupancy = await load_occupancy(db, ts)
    if not evaluator_for_session(ts).can_add_player(occupancy):
        logger.info(
            "Session %s: no promotion, capacity rules don't admit another player (confirmed=%d)",
            ts.id,
            occupancy.confirmed_count,
        )
        return None, []
    candidate = await next_waitlisted(db, ts.id, player_id)
    if candidate is None:
        logger.info("Session %s: no waitlisted player to promote", ts.id)
        return None, []
    candidate.status = "confirmed"
    candidate.position = None
    await db.flush()
    await compact_positions(db, ts.id)
    logger.info("Session %s: promoted player %s from waitlist", ts.id, candidate.player_id)
    event = ChangeEvent(
        ts.id,
        EventKind.PLAYER_PROMOTED,
        {"player_id": candidate.player_id, "registration_id": candidate.id},
    )
    return candidate, [event]


async def promote_next_from_waitlist(
    db: AsyncSession, session_id: int, player_id: Optional[int] = None
) -> Outcome:
    """Promote the top waitlisted registration, or player_id's if given. Nothing to promote is still ok."""
    async with session_locks.hold(session_id):
        ts = await locked_session(db, session_id)
        if ts is None:
            return await _release(db, SESSION_NOT_FOUND)
        promoted, events = await _promote(db, ts, player_id)
        await db.commit()
    return Outcome(registration=promoted, promoted=promoted, events=events)


# --- Cancellation ---


async def cancel_registration(
    db: AsyncSession,
    registration_id: int,
    reason: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Outcome:
    """Cancel an active registration. Late cancellations proceed but are flagged."""
    now = as_naive_utc(now) if now else utcnow()
    reg = await db.get(Registration, registration_id)
    if reg is None:
        return Outcome.failure(REGISTRATION_NOT_FOUND)
    session_id = reg.session_id
    async with session_locks.hold(session_id):
        ts = await locked_session(db, session_id)
        reg = await db.get(Registration, registration_id, populate_existing=True)
        if reg.status not in ACTIVE_STATUSES:
            return await _release(db, NOT_ACTIVE, reg)

        was_confirmed = reg.status == "confirmed"
        late = now > ts.cancellation_deadline()
        reg.status = "cancelled"
        reg.cancelled_at = now
        reg.cancellation_reason = reason
        reg.position = None
        await db.flush()

        events = [
            ChangeEvent(
                session_id,
                EventKind.PLAYER_CANCELLED,
                {
                    "player_id": reg.player_id,
                    "registration_id": reg.id,
                    "was_confirmed": was_confirmed,
                    "late": late,
                },
            )
        ]
        promoted = None
        if was_confirmed:
            promoted, promotion_events = await _promote(db, ts)
            events.extend(promotion_events)
        else:
            await compact_positions(db, session_id)
        await db.commit()

    if late:
        logger.info("Late cancellation: registration %s for session %s", registration_id, session_id)
    return Outcome(registration=reg, promoted=promoted, late_cancellation=late, events=events)


async def get_registration_by_token(db: AsyncSession, token: str) -> Optional[Registration]:
    """Registration for a cancellation link, or None for anything that doesn't match."""
    if not verify_cancellation_token(token):
        return None
    result = await db.execute(
        select(Registration)
        .where(Registration.cancellation_token == token)
        .options(selectinload(Registration.session), selectinload(Registration.player))
    )
    return result.scalar_one_or_none()


async def cancel_by_token(
    db: AsyncSession, token: str, reason: Optional[str] = None, now: Optional[datetime] = None
) -> Outcome:
    reg = await get_registration_by_token(db, token)
    if reg is None:
        return Outcome.failure(INVALID_TOKEN)
    return await cancel_registration(db, reg.id, reason=reason, now=now)


# --- Attendance ---


async def _apply_attendance(
    db: AsyncSession, reg: Registration, ts: TrainingSession, status: str
) -> ChangeEvent:
    reg.status = status
    if status == "attended":
        await _bump_player(
            db,
            reg.player_id,
            total_attendance=Player.total_attendance + 1,
            # Attendance can be marked late for an older session; keep the most recent date
            last_attendance_date=case(
                (Player.last_attendance_date.is_(None), ts.date),
                (Player.last_attendance_date < ts.date, ts.date),
                else_=Player.last_attendance_date,
            ),
        )
    else:
        await _bump_player(db, reg.player_id, total_no_shows=Player.total_no_shows + 1)
    return ChangeEvent(
        ts.id,
        EventKind.ATTENDANCE_MARKED,
        {"registration_id": reg.id, "player_id": reg.player_id, "status": status},
    )


def _check_attendance_status(status: str) -> None:
    if status not in ATTENDANCE_STATUSES:
        raise ValueError(f"Attendance status must be one of {ATTENDANCE_STATUSES}, got {status!r}")


async def mark_attendance(db: AsyncSession, registration_id: int, status: str) -> Outcome:
    """confirmed -> attended | no_show, updating the player's counters."""
    _check_attendance_status(status)
    reg = await db.get(Registration, registration_id)
    if reg is None:
        return Outcome.failure(REGISTRATION_NOT_FOUND)
    session_id = reg.session_id
    async with session_locks.hold(session_id):
        ts = await locked_session(db, session_id)
        reg = await db.get(Registration, registration_id, populate_existing=True)
        if reg.status != "confirmed":
            return await _release(db, INVALID_TRANSITION, reg)
        event = await _apply_attendance(db, reg, ts, status)
        await db.commit()
    return Outcome(registration=reg, count=1, events=[event])


async def bulk_mark_attendance(
    db: AsyncSession, session_id: int, registration_ids: Iterable[int], status: str
) -> Outcome:
    """Mark every confirmed registration of the session among registration_ids. Others are skipped."""
    _check_attendance_status(status)
    ids = list(registration_ids)
    async with session_locks.hold(session_id):
        ts = await locked_session(db, session_id)
        if ts is None:
            return await _release(db, SESSION_NOT_FOUND)
        if not ids:
            return Outcome(count=0)
        result = await db.execute(
            select(Registration)
            .where(
                Registration.session_id == session_id,
                Registration.id.in_(ids),
                Registration.status == "confirmed",
            )
            .execution_options(populate_existing=True)
        )
        events = [await _apply_attendance(db, reg, ts, status) for reg in result.scalars().all()]
        await db.commit()
    return Outcome(count=len(events), events=events)


# --- Queries ---


async def list_registrations(
    db: AsyncSession, session_id: int, status: Optional[str] = None
) -> list[Registration]:
    query = (
        select(Registration)
        .where(Registration.session_id == session_id)
        .options(selectinload(Registration.player))
        .order_by(Registration.position.is_(None), Registration.position, Registration.registered_at, Registration.id)
    )
    if status is not None:
        query = query.where(Registration.status == status)
    result = await db.execute(query)
    return list(result.scalars().all())


async def get_registration(db: AsyncSession, registration_id: int) -> Optional[Registration]:
    result = await db.execute(
        select(Registration)
        .where(Registration.id == registration_id)
        .options(selectinload(Registration.session), selectinload(Registration.player))
    )
    return result.scalar_one_or_none()
