"""API routes for session scheduling, registrations, waitlists and attendance."""
from __future__ import annotations

import datetime as dt
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, field_validator

from sideout.models import User
from sideout.models.base import async_session_factory
from sideout.models.registration import ATTENDANCE_STATUSES
from sideout.models.session import SESSION_STATUSES
from sideout.scheduling.parser import available_constraints
from sideout.services import players as player_service
from sideout.services import registrations as registration_service
from sideout.services import sessions as session_service
from sideout.services.players import PlayerValidationError
from sideout.services.registrations import Outcome
from sideout.services.sessions import SessionValidationError
from sideout.services.waitlist import reorder_waitlist
from web.api.utils import player_to_dict, registration_to_dict, relay, session_to_dict
from web.auth import TRAINER_ROLES, get_current_user, require_trainer_user

logger = logging.getLogger("sideout.api")

router = APIRouter(prefix="/api", tags=["sessions"])


# --- Pydantic schemas ---


class SessionCreate(BaseModel):
    date: dt.date
    start_time: dt.time
    end_time: dt.time
    capacity_constraints: str
    fields_available: int = 1
    cancellation_deadline_hours: int = 24
    notes: Optional[str] = None


class SessionUpdate(BaseModel):
    date: Optional[dt.date] = None
    start_time: Optional[dt.time] = None
    end_time: Optional[dt.time] = None
    capacity_constraints: Optional[str] = None
    fields_available: Optional[int] = None
    cancellation_deadline_hours: Optional[int] = None
    notes: Optional[str] = None
    status: Optional[str] = None


class SessionCancel(BaseModel):
    reason: Optional[str] = None


class PlayerSignup(BaseModel):
    """Signup by name; an existing player with the same name (any case) is reused."""

    name: str
    email: Optional[str] = None
    phone: Optional[str] = None

    @field_validator("name")
    @classmethod
    def name_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("name is required")
        return v.strip()


class PromoteRequest(BaseModel):
    player_id: Optional[int] = None  # Default: highest priority on the waitlist


class CancelRequest(BaseModel):
    reason: Optional[str] = None


class AttendanceMark(BaseModel):
    status: str  # attended | no_show

    @field_validator("status")
    @classmethod
    def check_status(cls, v: str) -> str:
        if v not in ATTENDANCE_STATUSES:
            raise ValueError(f"status must be one of {', '.join(ATTENDANCE_STATUSES)}")
        return v


class BulkAttendance(AttendanceMark):
    registration_ids: list[int]


# --- Helpers ---


def _validation_error(e: SessionValidationError | PlayerValidationError) -> HTTPException:
    return HTTPException(422, detail=e.errors)


async def _session_or_404(db, session_id: int):
    ts = await session_service.get_session(db, session_id)
    if not ts:
        raise HTTPException(404, "Session not found")
    return ts


async def outcome_response(outcome: Outcome, *, include_token: bool = False) -> dict:
    """Soft errors come back as {"error": code}; successes relay their change events."""
    if not outcome.ok:
        return {"error": outcome.error}
    await relay(outcome.events)
    return {
        "ok": True,
        "registration": (
            registration_to_dict(outcome.registration, include_token=include_token)
            if outcome.registration is not None
            else None
        ),
        "promoted": registration_to_dict(outcome.promoted) if outcome.promoted is not None else None,
        "late_cancellation": outcome.late_cancellation,
        "count": outcome.count,
    }


async def signup(db, ts, body: PlayerSignup) -> dict:
    """Find or create the player by name and register them for the session."""
    try:
        player = await player_service.get_or_create_player_by_name(db, body.name, body.email, body.phone)
    except PlayerValidationError as e:
        raise _validation_error(e)
    outcome = await registration_service.register_player(db, ts.id, player.id)
    response = await outcome_response(outcome, include_token=True)
    if outcome.ok:
        response["registration"]["player_name"] = player.name
    return response


# --- Constraints ---


@router.get("/constraints")
async def list_constraints():
    """Rule tokens a session's capacity_constraints may use."""
    return available_constraints()


# --- Sessions ---


@router.get("/sessions")
async def list_sessions(
    from_date: Optional[dt.date] = None,
    to_date: Optional[dt.date] = None,
    status: Optional[str] = None,
    upcoming: bool = False,
):
    """List sessions by date. ?upcoming=1 starts from today."""
    if status is not None and status not in SESSION_STATUSES:
        raise HTTPException(400, f"status must be one of {', '.join(SESSION_STATUSES)}")
    if upcoming and from_date is None:
        from_date = session_service.utc_today()
    async with async_session_factory() as session:
        sessions = await session_service.list_sessions(session, from_date=from_date, to_date=to_date, status=status)
        return [session_to_dict(ts) for ts in sessions]


@router.post("/sessions", status_code=201)
async def create_session(body: SessionCreate, user: User = Depends(require_trainer_user)):
    """Create a session. Rule strings are parsed strictly here; field errors come back as 422."""
    async with async_session_factory() as session:
        try:
            ts = await session_service.create_session(session, **body.model_dump(), created_by_id=user.id)
        except SessionValidationError as e:
            raise _validation_error(e)
        logger.info("Session %s created by %s", ts.id, user.username)
        return session_to_dict(ts)


@router.get("/sessions/{session_id}")
async def get_session(session_id: int):
    """Session detail with its current capacity status."""
    async with async_session_factory() as session:
        ts = await _session_or_404(session, session_id)
        data = session_to_dict(ts)
        data["capacity"] = await session_service.get_capacity_status(session, ts)
        data["max_capacity"] = await session_service.get_max_capacity(session, ts)
        return data


@router.patch("/sessions/{session_id}")
async def update_session(session_id: int, body: SessionUpdate, user: User = Depends(require_trainer_user)):
    async with async_session_factory() as session:
        ts = await _session_or_404(session, session_id)
        try:
            ts = await session_service.update_session(session, ts, body.model_dump(exclude_unset=True))
        except SessionValidationError as e:
            raise _validation_error(e)
        return session_to_dict(ts)


@router.post("/sessions/{session_id}/cancel")
async def cancel_session(
    session_id: int,
    body: Optional[SessionCancel] = None,
    user: User = Depends(require_trainer_user),
):
    """Mark the session cancelled. Its share link stops working."""
    async with async_session_factory() as session:
        ts = await _session_or_404(session, session_id)
        try:
            ts = await session_service.cancel_session(session, ts, body.reason if body else None)
        except SessionValidationError as e:
            raise _validation_error(e)
        logger.info("Session %s cancelled by %s", ts.id, user.username)
        return session_to_dict(ts)


@router.get("/sessions/{session_id}/capacity")
async def get_capacity(session_id: int):
    async with async_session_factory() as session:
        ts = await _session_or_404(session, session_id)
        status = await session_service.get_capacity_status(session, ts)
        status["max_capacity"] = await session_service.get_max_capacity(session, ts)
        status["next_signup"] = "confirmed" if status["can_add_player"] else "waitlisted"
        return status


# --- Registrations ---


@router.get("/sessions/{session_id}/registrations")
async def list_registrations(session_id: int, status: Optional[str] = None):
    """Registrations of a session; waitlisted ones in waitlist position order."""
    async with async_session_factory() as session:
        await _session_or_404(session, session_id)
        regs = await registration_service.list_registrations(session, session_id, status=status)
        return [registration_to_dict(reg, reg.player) for reg in regs]


@router.post("/sessions/{session_id}/registrations")
async def register_player(session_id: int, body: PlayerSignup, user: User = Depends(require_trainer_user)):
    """Register a player on the trainer's behalf (confirmed or waitlisted by the capacity rules)."""
    async with async_session_factory() as session:
        ts = await _session_or_404(session, session_id)
        return await signup(session, ts, body)


@router.post("/registrations/{registration_id}/cancel")
async def cancel_registration(
    registration_id: int,
    body: Optional[CancelRequest] = None,
    user: User = Depends(require_trainer_user),
):
    """Cancel a registration. Cancelling a confirmed spot promotes from the waitlist."""
    async with async_session_factory() as session:
        outcome = await registration_service.cancel_registration(
            session, registration_id, reason=body.reason if body else None
        )
        if outcome.error == registration_service.REGISTRATION_NOT_FOUND:
            raise HTTPException(404, "Registration not found")
        return await outcome_response(outcome)


@router.post("/registrations/{registration_id}/attendance")
async def mark_attendance(registration_id: int, body: AttendanceMark, user: User = Depends(require_trainer_user)):
    async with async_session_factory() as session:
        outcome = await registration_service.mark_attendance(session, registration_id, body.status)
        if outcome.error == registration_service.REGISTRATION_NOT_FOUND:
            raise HTTPException(404, "Registration not found")
        return await outcome_response(outcome)


# --- Waitlist ---


@router.post("/sessions/{session_id}/waitlist/reorder")
async def reorder_session_waitlist(session_id: int, user: User = Depends(require_trainer_user)):
    """Recompute every waitlisted priority score and renumber positions."""
    async with async_session_factory() as session:
        await _session_or_404(session, session_id)
        ordered = await reorder_waitlist(session, session_id)
        return [registration_to_dict(reg, reg.player) for reg in ordered]


@router.post("/sessions/{session_id}/waitlist/promote")
async def promote_from_waitlist(
    session_id: int,
    body: Optional[PromoteRequest] = None,
    user: User = Depends(require_trainer_user),
):
    """Promote the top waitlisted player (or body.player_id) if the capacity rules admit one more."""
    async with async_session_factory() as session:
        await _session_or_404(session, session_id)
        outcome = await registration_service.promote_next_from_waitlist(
            session, session_id, player_id=body.player_id if body else None
        )
        return await outcome_response(outcome)


# --- Attendance ---


@router.post("/sessions/{session_id}/attendance")
async def bulk_mark_attendance(session_id: int, body: BulkAttendance, user: User = Depends(require_trainer_user)):
    """Mark several confirmed registrations at once; others in the list are skipped."""
    async with async_session_factory() as session:
        await _session_or_404(session, session_id)
        outcome = await registration_service.bulk_mark_attendance(
            session, session_id, body.registration_ids, body.status
        )
        return await outcome_response(outcome)


@router.get("/sessions/{session_id}/attendance")
async def attendance_stats(session_id: int):
    async with async_session_factory() as session:
        ts = await _session_or_404(session, session_id)
        return await session_service.get_session_attendance_stats(session, ts)


# --- Players ---


@router.get("/players")
async def list_players(
    search: Optional[str] = None,
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
):
    """Players by name; ?search= matches name or email."""
    async with async_session_factory() as session:
        players = await player_service.list_players(session, search=search, limit=limit, offset=offset)
        return [player_to_dict(p) for p in players]


@router.get("/players/{player_id}")
async def get_player(player_id: int):
    """Player with attendance statistics and upcoming registrations."""
    async with async_session_factory() as session:
        player = await player_service.get_player(session, player_id)
        if not player:
            raise HTTPException(404, "Player not found")
        data = player_to_dict(player)
        data["stats"] = await player_service.get_player_stats(session, player)
        upcoming = await player_service.get_player_upcoming_registrations(
            session, player_id, session_service.utc_today()
        )
        data["upcoming"] = [registration_to_dict(reg) for reg in upcoming]
        return data


@router.get("/players/{player_id}/registrations")
async def player_history(
    player_id: int,
    when: str = "all",
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
):
    """A player's registrations, newest session first. ?when=upcoming|past narrows the list."""
    if when not in player_service.HISTORY_FILTERS:
        raise HTTPException(400, f"when must be one of {', '.join(player_service.HISTORY_FILTERS)}")
    async with async_session_factory() as session:
        if not await player_service.get_player(session, player_id):
            raise HTTPException(404, "Player not found")
        regs = await player_service.get_player_registration_history(
            session, player_id, when=when, limit=limit, offset=offset
        )
        out = []
        for reg in regs:
            data = registration_to_dict(reg)
            data["session"] = session_to_dict(reg.session, include_share=False)
            out.append(data)
        return out


# --- Dashboard ---


@router.get("/stats")
async def dashboard_stats(user: Optional[User] = Depends(get_current_user)):
    """Public totals, or the logged-in trainer's own session figures."""
    async with async_session_factory() as session:
        if user is None or user.role not in TRAINER_ROLES:
            return await session_service.get_dashboard_stats(session)
        stats = await session_service.get_dashboard_stats(session, user.id)
        if stats["next_session"] is not None:
            stats["next_session"] = session_to_dict(stats["next_session"])
        return stats
