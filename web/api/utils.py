"""Shared API utilities: JSON shapes for sessions, registrations and players."""
from __future__ import annotations

from typing import Optional

from sideout.models import Player, Registration, TrainingSession
from sideout.scheduling.events import ChangeEvent
from sideout.services.relay import relay_events
from sideout.services.sessions import cancellation_url, share_url


def _iso(value) -> Optional[str]:
    return value.isoformat() if value is not None else None


def session_to_dict(ts: TrainingSession, *, include_share: bool = True) -> dict:
    data = {
        "id": ts.id,
        "date": ts.date.isoformat(),
        "start_time": ts.start_time.strftime("%H:%M"),
        "end_time": ts.end_time.strftime("%H:%M"),
        "fields_available": ts.fields_available,
        "capacity_constraints": ts.capacity_constraints,
        "cancellation_deadline_hours": ts.cancellation_deadline_hours,
        "status": ts.status,
        "notes": ts.notes,
        "created_by_id": ts.created_by_id,
    }
    if include_share:
        data["share_token"] = ts.share_token
        data["share_url"] = share_url(ts.share_token)
    return data


def player_display_name(player: Player | None, player_id: int) -> str:
    """Name to show for a registration; never empty."""
    if player and (player.name or "").strip():
        return player.name.strip()
    return f"Player {player_id}"


def registration_to_dict(reg: Registration, player: Player | None = None, *, include_token: bool = False) -> dict:
    data = {
        "id": reg.id,
        "session_id": reg.session_id,
        "player_id": reg.player_id,
        "status": reg.status,
        "position": reg.position,
        "priority_score": float(reg.priority_score) if reg.priority_score is not None else None,
        "registered_at": _iso(reg.registered_at),
        "cancelled_at": _iso(reg.cancelled_at),
        "cancellation_reason": reg.cancellation_reason,
    }
    if player is not None:
        data["player_name"] = player_display_name(player, reg.player_id)
    if include_token:
        # Only shown to the player who just signed up
        data["cancellation_token"] = reg.cancellation_token
        data["cancellation_url"] = cancellation_url(reg.cancellation_token)
    return data


def player_to_dict(player: Player) -> dict:
    return {
        "id": player.id,
        "name": player.name,
        "email": player.email,
        "phone": player.phone,
        "total_attendance": player.total_attendance,
        "total_registrations": player.total_registrations,
        "total_no_shows": player.total_no_shows,
        "total_waitlists": player.total_waitlists,
        "last_attendance_date": _iso(player.last_attendance_date),
    }


async def relay(events: list[ChangeEvent]) -> None:
    """Send a successful operation's change events on. Never fails the request."""
    if events:
        await relay_events(events)
