"""Tests for player lookup, listing, history and the recent-attendance window."""
from datetime import date, timedelta

import pytest

from sideout.services import registrations as svc
from sideout.services.players import (
    count_recent_attendance,
    get_or_create_player_by_name,
    get_player_registration_history,
    list_players,
)
from sideout.services.waitlist import calculate_priority

AS_OF = date.today()


async def past_session(make_session, days_ago):
    day = AS_OF - timedelta(days=days_ago)
    return await make_session("max_18", date=day, today=day)


@pytest.mark.asyncio
async def test_recent_attendance_window(db, make_session):
    player = await get_or_create_player_by_name(db, "Window Wes")

    edge = await past_session(make_session, 28)
    outside = await past_session(make_session, 29)
    skipped = await past_session(make_session, 1)
    dropped = await past_session(make_session, 2)

    for ts in (edge, outside):
        outcome = await svc.register_player(db, ts.id, player.id)
        await svc.mark_attendance(db, outcome.registration.id, "attended")
    outcome = await svc.register_player(db, skipped.id, player.id)
    await svc.mark_attendance(db, outcome.registration.id, "no_show")
    outcome = await svc.register_player(db, dropped.id, player.id)
    await svc.cancel_registration(db, outcome.registration.id)

    # Exactly four weeks back counts; a day earlier and no-shows or cancellations don't
    assert await count_recent_attendance(db, player.id, AS_OF, weeks=4) == 1
    assert await count_recent_attendance(db, player.id, AS_OF, weeks=5) == 2

    await db.refresh(player)
    assert player.last_attendance_date == edge.date
    # 100 + (8-1)*10 + min(28*0.5, 30) - 1*15 + 0*3
    assert await calculate_priority(db, player, as_of=AS_OF) == 169.0


@pytest.mark.asyncio
async def test_list_players_search_and_paging(db):
    for name, email in [("Cara", "cara@club.test"), ("ben", None), ("Abe", "abe@elsewhere.test")]:
        await get_or_create_player_by_name(db, name, email)

    assert [p.name for p in await list_players(db)] == ["Abe", "ben", "Cara"]
    assert [p.name for p in await list_players(db, search="CLUB")] == ["Cara"]
    assert [p.name for p in await list_players(db, search="be")] == ["Abe", "ben"]
    assert [p.name for p in await list_players(db, limit=1, offset=1)] == ["ben"]


@pytest.mark.asyncio
async def test_registration_history_filters(db, make_session, future_date):
    player = await get_or_create_player_by_name(db, "History Hana")
    old = await past_session(make_session, 3)
    soon = await make_session(date=future_date)
    later = await make_session(date=future_date + timedelta(days=7))
    for ts in (old, soon, later):
        await svc.register_player(db, ts.id, player.id)
    cancelled = await get_player_registration_history(db, player.id, when="upcoming", today=AS_OF)
    await svc.cancel_registration(db, cancelled[-1].id)

    history = await get_player_registration_history(db, player.id, today=AS_OF)
    assert [reg.session_id for reg in history] == [later.id, soon.id, old.id]
    assert history[0].session.date == later.date

    upcoming = await get_player_registration_history(db, player.id, when="upcoming", today=AS_OF)
    assert [reg.session_id for reg in upcoming] == [later.id]
    past = await get_player_registration_history(db, player.id, when="past", today=AS_OF)
    assert [reg.session_id for reg in past] == [old.id]

    with pytest.raises(ValueError):
        await get_player_registration_history(db, player.id, when="someday")
