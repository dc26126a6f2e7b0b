"""Public routes for players: signup through a share link, cancellation through a cancel link.

No login. Anything that isn't a valid, open link answers 404 so links can't be guessed by trial.
Paths follow SHARE_PATH_PREFIX and CANCEL_PATH_PREFIX, matching the URLs handed out
by share_url() and cancellation_url().
"""
from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, HTTPException

import config
from sideout.models.base import async_session_factory, utcnow
from sideout.services import registrations as registration_service
from sideout.services import sessions as session_service
from web.api.routes import CancelRequest, PlayerSignup, outcome_response, signup
from web.api.utils import registration_to_dict, session_to_dict

logger = logging.getLogger("sideout.api")

router = APIRouter(prefix="/api", tags=["public"])


async def _shared_session_or_404(db, share_token: str):
    outcome, ts = await session_service.resolve_share_token(db, share_token)
    if ts is None:
        logger.info("Share link rejected (%s)", outcome)
        raise HTTPException(404, "Session not found")
    return ts


@router.get(f"/{config.SHARE_PATH_PREFIX}/{{share_token}}")
async def view_shared_session(share_token: str):
    """Session behind a share link, with what a signup right now would get."""
    async with async_session_factory() as session:
        ts = await _shared_session_or_404(session, share_token)
        capacity = await session_service.get_capacity_status(session, ts)
        data = session_to_dict(ts, include_share=False)
        data["confirmed"] = capacity["confirmed"]
        data["waitlist"] = capacity["waitlist"]
        data["description"] = capacity["description"]
        data["next_signup"] = "confirmed" if capacity["can_add_player"] else "waitlisted"
        return data


@router.post(f"/{config.SHARE_PATH_PREFIX}/{{share_token}}/register")
async def register_via_share_link(share_token: str, body: PlayerSignup):
    """Sign up through a share link. The response carries the player's cancellation link."""
    async with async_session_factory() as session:
        ts = await _shared_session_or_404(session, share_token)
        return await signup(session, ts, body)


@router.get(f"/{config.CANCEL_PATH_PREFIX}/{{token}}")
async def view_cancellation(token: str):
    """Registration behind a cancellation link, and whether cancelling now would be late."""
    async with async_session_factory() as session:
        reg = await registration_service.get_registration_by_token(session, token)
        if reg is None:
            raise HTTPException(404, "Invalid cancellation link")
        return {
            "registration": registration_to_dict(reg, reg.player),
            "session": session_to_dict(reg.session, include_share=False),
            "can_cancel": reg.is_active,
            "late": utcnow() > reg.session.cancellation_deadline(),
        }


@router.post(f"/{config.CANCEL_PATH_PREFIX}/{{token}}")
async def cancel_via_link(token: str, body: Optional[CancelRequest] = None):
    async with async_session_factory() as session:
        outcome = await registration_service.cancel_by_token(
            session, token, reason=body.reason if body else None
        )
        if outcome.error == registration_service.INVALID_TOKEN:
            raise HTTPException(404, "Invalid cancellation link")
        return await outcome_response(outcome)
