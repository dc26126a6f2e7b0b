"""Waitlist ordering: priority inputs from the database, full reorder, next-in-line lookup."""
from __future__ import annotations

import logging
from datetime import date
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

import config
from sideout.models import Player, Registration
from sideout.scheduling.priority import (
    PriorityInputs,
    as_decimal,
    days_since,
    priority_score,
    waitlist_order,
)
from sideout.services.locks import locked_session, session_locks
from sideout.services.players import count_recent_attendance
from sideout.services.sessions import utc_today

logger = logging.getLogger("sideout.waitlist")


async def priority_inputs(db: AsyncSession, player: Player, as_of: date) -> PriorityInputs:
    return PriorityInputs(
        recent_attendance=await count_recent_attendance(
            db, player.id, as_of, weeks=config.RECENT_ATTENDANCE_WEEKS
        ),
        days_since_last_attendance=days_since(player.last_attendance_date, as_of),
        no_shows=player.total_no_shows,
        waitlists=player.total_waitlists,
    )


async def calculate_priority(db: AsyncSession, player: Player, as_of: Optional[date] = None) -> float:
    """Priority score for a player; as_of (default today, UTC) is the time reference."""
    inputs = await priority_inputs(db, player, as_of or utc_today())
    return priority_score(inputs)


async def reorder_waitlist(db: AsyncSession, session_id: int, as_of: Optional[date] = None) -> list[Registration]:
    """Recompute every waitlisted score and renumber positions 1..n, returning the new order.

    Scores depend on the date (days since last attendance), so this is a full
    recompute meant to run on demand rather than after every change. Runs under
    the session lock and commits.
    """
    as_of = as_of or utc_today()
    async with session_locks.hold(session_id):
        if await locked_session(db, session_id) is None:
            await db.commit()
            return []
        ordered = await _recompute_order(db, session_id, as_of)
        await db.commit()
    logger.info("Waitlist for session %s reordered (%d entries)", session_id, len(ordered))
    return ordered


async def _recompute_order(db: AsyncSession, session_id: int, as_of: date) -> list[Registration]:
    result = await db.execute(
        select(Registration)
        .where(Registration.session_id == session_id, Registration.status == "waitlisted")
        .options(selectinload(Registration.player))
        .order_by(Registration.registered_at, Registration.id)
        .execution_options(populate_existing=True)
    )
    entries = []
    for reg in result.scalars().all():
        score = await calculate_priority(db, reg.player, as_of)
        entries.append((reg, score, reg.registered_at))
    ordered = waitlist_order(entries)
    for position, (reg, score) in enumerate(ordered, start=1):
        reg.priority_score = as_decimal(score)
        reg.position = position
    await db.flush()
    return [reg for reg, _ in ordered]


async def compact_positions(db: AsyncSession, session_id: int) -> None:
    """Close gaps in waitlist positions after someone leaves, keeping the current order."""
    result = await db.execute(
        select(Registration)
        .where(Registration.session_id == session_id, Registration.status == "waitlisted")
        .order_by(Registration.position.is_(None), Registration.position, Registration.registered_at, Registration.id)
    )
    for position, reg in enumerate(result.scalars().all(), start=1):
        reg.position = position
    await db.flush()


async def next_waitlisted(
    db: AsyncSession, session_id: int, player_id: Optional[int] = None
) -> Optional[Registration]:
    """Registration to promote: the requested player's, or highest score (earliest registered on ties)."""
    query = select(Registration).where(
        Registration.session_id == session_id,
        Registration.status == "waitlisted",
    )
    if player_id is not None:
        query = query.where(Registration.player_id == player_id)
    query = query.order_by(
        Registration.priority_score.desc().nulls_last(),
        Registration.registered_at.asc(),
        Registration.id.asc(),
    ).limit(1)
    result = await db.execute(query.execution_options(populate_existing=True))
    return result.scalar_one_or_none()
