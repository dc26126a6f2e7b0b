"""Tests for the HTTP API."""
from datetime import date, timedelta
from urllib.parse import urlparse

import pytest

from sideout.models import User
from web.auth import hash_password


def session_body(rules="max_2", days_ahead=7, **overrides):
    body = {
        "date": (date.today() + timedelta(days=days_ahead)).isoformat(),
        "start_time": "18:00",
        "end_time": "20:00",
        "capacity_constraints": rules,
    }
    body.update(overrides)
    return body


async def create_session(client, auth_headers, **kwargs):
    r = await client.post("/api/sessions", json=session_body(**kwargs), headers=auth_headers)
    assert r.status_code == 201, r.text
    return r.json()


@pytest.mark.asyncio
async def test_health(client):
    """Health endpoint returns ok."""
    r = await client.get("/api/health")
    assert r.status_code == 200
    assert r.json() == {"status": "ok"}


@pytest.mark.asyncio
async def test_list_sessions_empty(client):
    r = await client.get("/api/sessions")
    assert r.status_code == 200
    assert r.json() == []


@pytest.mark.asyncio
async def test_constraints_catalog(client):
    r = await client.get("/api/constraints")
    assert r.status_code == 200
    assert {c["example"] for c in r.json()} == {"max_18", "min_12", "even", "per_field_9", "divisible_by_6"}


@pytest.mark.asyncio
async def test_create_session_requires_trainer(client):
    r = await client.post("/api/sessions", json=session_body())
    assert r.status_code == 401


@pytest.mark.asyncio
async def test_create_and_get_session(client, auth_headers):
    created = await create_session(client, auth_headers, rules="max_18,min_12,even")
    assert len(created["share_token"]) == 21
    assert created["share_url"].endswith(f"/s/{created['share_token']}")
    assert created["status"] == "scheduled"

    r = await client.get(f"/api/sessions/{created['id']}")
    assert r.status_code == 200
    data = r.json()
    assert data["max_capacity"] == 18
    assert data["capacity"]["confirmed"] == 0
    assert data["capacity"]["description"] == (
        "Maximum 18 players, Minimum 12 players required, Must have even number of players"
    )

    r = await client.get("/api/sessions", params={"upcoming": True})
    assert [s["id"] for s in r.json()] == [created["id"]]


@pytest.mark.asyncio
async def test_create_session_validation_errors(client, auth_headers):
    r = await client.post(
        "/api/sessions",
        json=session_body(rules="max_18,maxx_5", days_ahead=-2, start_time="21:00"),
        headers=auth_headers,
    )
    assert r.status_code == 422
    errors = r.json()["detail"]
    assert set(errors) == {"capacity_constraints", "date", "end_time"}


@pytest.mark.asyncio
async def test_get_missing_session(client):
    r = await client.get("/api/sessions/999")
    assert r.status_code == 404


@pytest.mark.asyncio
async def test_update_and_cancel_session(client, auth_headers):
    created = await create_session(client, auth_headers)
    r = await client.patch(
        f"/api/sessions/{created['id']}",
        json={"capacity_constraints": "max_4,even"},
        headers=auth_headers,
    )
    assert r.status_code == 200
    assert r.json()["capacity_constraints"] == "max_4,even"

    r = await client.patch(
        f"/api/sessions/{created['id']}", json={"capacity_constraints": "max 4"}, headers=auth_headers
    )
    assert r.status_code == 422

    r = await client.post(f"/api/sessions/{created['id']}/cancel", json={"reason": "Storm"}, headers=auth_headers)
    assert r.status_code == 200
    assert r.json()["status"] == "cancelled"
    assert r.json()["notes"] == "Storm"

    r = await client.get(f"/api/s/{created['share_token']}")
    assert r.status_code == 404


@pytest.mark.asyncio
async def test_registration_flow(client, auth_headers):
    """max_2: two confirmed, third waitlisted, cancel promotes the third."""
    sid = (await create_session(client, auth_headers))["id"]

    regs = []
    for name in ("Ana", "Ben", "Cleo"):
        r = await client.post(f"/api/sessions/{sid}/registrations", json={"name": name}, headers=auth_headers)
        assert r.status_code == 200
        body = r.json()
        assert body["ok"] is True
        regs.append(body["registration"])
    assert [reg["status"] for reg in regs] == ["confirmed", "confirmed", "waitlisted"]
    assert regs[2]["position"] == 1
    assert regs[2]["priority_score"] == 210.0

    r = await client.get(f"/api/sessions/{sid}/capacity")
    assert r.json()["confirmed"] == 2
    assert r.json()["waitlist"] == 1
    assert r.json()["next_signup"] == "waitlisted"

    r = await client.post(f"/api/registrations/{regs[0]['id']}/cancel", json={}, headers=auth_headers)
    body = r.json()
    assert body["ok"] is True
    assert body["registration"]["status"] == "cancelled"
    assert body["promoted"]["id"] == regs[2]["id"]

    r = await client.get(f"/api/sessions/{sid}/registrations", params={"status": "confirmed"})
    assert sorted(reg["player_name"] for reg in r.json()) == ["Ben", "Cleo"]

    r = await client.post(f"/api/registrations/{regs[0]['id']}/cancel", headers=auth_headers)
    assert r.json() == {"error": "not_active"}


@pytest.mark.asyncio
async def test_duplicate_registration_is_a_soft_error(client, auth_headers):
    sid = (await create_session(client, auth_headers))["id"]
    await client.post(f"/api/sessions/{sid}/registrations", json={"name": "Dana"}, headers=auth_headers)
    # Same player, different capitalisation
    r = await client.post(f"/api/sessions/{sid}/registrations", json={"name": "dana"}, headers=auth_headers)
    assert r.status_code == 200
    assert r.json() == {"error": "already_registered"}


@pytest.mark.asyncio
async def test_blank_name_is_rejected(client, auth_headers):
    sid = (await create_session(client, auth_headers))["id"]
    r = await client.post(f"/api/sessions/{sid}/registrations", json={"name": "  "}, headers=auth_headers)
    assert r.status_code == 422


@pytest.mark.asyncio
async def test_share_link_signup_and_self_cancel(client, auth_headers):
    created = await create_session(client, auth_headers, rules="max_1")
    token = created["share_token"]

    r = await client.get(f"/api/s/{token}")
    assert r.status_code == 200
    assert r.json()["id"] == created["id"]
    assert r.json()["next_signup"] == "confirmed"
    assert "share_token" not in r.json()

    r = await client.post(f"/api/s/{token}/register", json={"name": "Public Pat", "email": "pat@example.com"})
    body = r.json()
    assert body["ok"] is True
    reg = body["registration"]
    assert reg["status"] == "confirmed"
    assert reg["player_name"] == "Public Pat"
    assert len(reg["cancellation_token"]) == 32
    assert reg["cancellation_url"].endswith(f"/cancel/{reg['cancellation_token']}")

    r = await client.post(f"/api/s/{token}/register", json={"name": "Public Quinn"})
    assert r.json()["registration"]["status"] == "waitlisted"

    r = await client.get(f"/api/cancel/{reg['cancellation_token']}")
    assert r.status_code == 200
    assert r.json()["can_cancel"] is True
    assert r.json()["late"] is False
    assert r.json()["session"]["id"] == created["id"]

    r = await client.post(f"/api/cancel/{reg['cancellation_token']}", json={"reason": "Sick"})
    body = r.json()
    assert body["ok"] is True
    assert body["late_cancellation"] is False
    assert body["promoted"]["status"] == "confirmed"

    r = await client.get(f"/api/cancel/{reg['cancellation_token']}")
    assert r.json()["can_cancel"] is False


@pytest.mark.asyncio
async def test_invalid_links_are_404(client):
    assert (await client.get("/api/s/" + "A" * 21)).status_code == 404
    assert (await client.get("/api/s/nope")).status_code == 404
    assert (await client.post("/api/s/nope/register", json={"name": "X"})).status_code == 404
    assert (await client.get("/api/cancel/" + "x" * 32)).status_code == 404
    assert (await client.post("/api/cancel/bad")).status_code == 404


@pytest.mark.asyncio
async def test_waitlist_reorder_and_promote(client, auth_headers):
    sid = (await create_session(client, auth_headers, rules="max_1"))["id"]
    for name in ("Holder", "Second", "Third"):
        await client.post(f"/api/sessions/{sid}/registrations", json={"name": name}, headers=auth_headers)

    r = await client.post(f"/api/sessions/{sid}/waitlist/reorder", headers=auth_headers)
    assert r.status_code == 200
    assert [(reg["player_name"], reg["position"]) for reg in r.json()] == [("Second", 1), ("Third", 2)]

    # Full: promotion is a no-op, not an error
    r = await client.post(f"/api/sessions/{sid}/waitlist/promote", headers=auth_headers)
    assert r.json()["ok"] is True
    assert r.json()["promoted"] is None

    await client.patch(f"/api/sessions/{sid}", json={"capacity_constraints": "max_2"}, headers=auth_headers)
    third = await client.get(f"/api/sessions/{sid}/registrations", params={"status": "waitlisted"})
    third_id = [reg for reg in third.json() if reg["player_name"] == "Third"][0]["player_id"]
    r = await client.post(
        f"/api/sessions/{sid}/waitlist/promote", json={"player_id": third_id}, headers=auth_headers
    )
    assert r.json()["promoted"]["player_id"] == third_id


@pytest.mark.asyncio
async def test_attendance_endpoints(client, auth_headers):
    sid = (await create_session(client, auth_headers, rules="max_3"))["id"]
    ids = []
    for name in ("Att A", "Att B", "Att C"):
        r = await client.post(f"/api/sessions/{sid}/registrations", json={"name": name}, headers=auth_headers)
        ids.append(r.json()["registration"]["id"])

    r = await client.post(f"/api/registrations/{ids[0]}/attendance", json={"status": "no_show"}, headers=auth_headers)
    assert r.json()["registration"]["status"] == "no_show"

    r = await client.post(
        f"/api/sessions/{sid}/attendance",
        json={"registration_ids": ids, "status": "attended"},
        headers=auth_headers,
    )
    assert r.json()["count"] == 2

    r = await client.get(f"/api/sessions/{sid}/attendance")
    assert r.json() == {"total_confirmed": 3, "attended": 2, "no_shows": 1, "pending": 0, "attendance_rate": 66.7}

    r = await client.post(f"/api/registrations/{ids[1]}/attendance", json={"status": "late"}, headers=auth_headers)
    assert r.status_code == 422
    r = await client.post("/api/registrations/999/attendance", json={"status": "attended"}, headers=auth_headers)
    assert r.status_code == 404


@pytest.mark.asyncio
async def test_player_detail(client, auth_headers):
    sid = (await create_session(client, auth_headers))["id"]
    r = await client.post(f"/api/sessions/{sid}/registrations", json={"name": "Profile Pia"}, headers=auth_headers)
    pid = r.json()["registration"]["player_id"]

    r = await client.get(f"/api/players/{pid}")
    assert r.status_code == 200
    data = r.json()
    assert data["name"] == "Profile Pia"
    assert data["total_registrations"] == 1
    assert data["stats"]["completed_sessions"] == 0
    assert [reg["session_id"] for reg in data["upcoming"]] == [sid]

    assert (await client.get("/api/players/999")).status_code == 404


@pytest.mark.asyncio
async def test_login_and_me(client, auth_headers):
    r = await client.get("/api/auth/me", headers=auth_headers)
    assert r.status_code == 200
    assert r.json() == {"username": "admin", "role": "admin"}

    r = await client.post("/api/auth/login", json={"username": "admin", "password": "wrong"})
    assert r.status_code == 401




@pytest.mark.asyncio
async def test_login_is_rate_limited(client):
    for _ in range(5):
        r = await client.post("/api/auth/login", json={"username": "admin", "password": "wrong"})
        assert r.status_code == 401
    r = await client.post("/api/auth/login", json={"username": "admin", "password": "testpass123"})
    assert r.status_code == 429


@pytest.mark.asyncio
async def test_plain_user_cannot_manage_sessions(client, db):
    db.add(User(username="viewer", password_hash=hash_password("viewerpass"), role="user"))
    await db.commit()
    r = await client.post("/api/auth/login", json={"username": "viewer", "password": "viewerpass"})
    assert r.status_code == 200
    headers = {"Authorization": f"Bearer {r.json()['access_token']}"}
    r = await client.post("/api/sessions", json=session_body(), headers=headers)
    assert r.status_code == 403


@pytest.mark.asyncio
async def test_session_records_its_trainer(client, auth_headers):
    created = await create_session(client, auth_headers)
    assert created["created_by_id"] is not None


@pytest.mark.asyncio
async def test_handed_out_links_are_served(client, auth_headers):
    created = await create_session(client, auth_headers)
    r = await client.get(urlparse(created["share_url"]).path)
    assert r.status_code == 200
    assert r.json()["id"] == created["id"]

    r = await client.post(urlparse(created["share_url"]).path + "/register", json={"name": "Link Lou"})
    reg = r.json()["registration"]
    r = await client.get(urlparse(reg["cancellation_url"]).path)
    assert r.status_code == 200
    assert r.json()["registration"]["id"] == reg["id"]


@pytest.mark.asyncio
async def test_null_status_is_rejected(client, auth_headers):
    created = await create_session(client, auth_headers)
    r = await client.patch(f"/api/sessions/{created['id']}", json={"status": None}, headers=auth_headers)
    assert r.status_code == 422
    assert r.json()["detail"] == {"status": ["is required"]}

    r = await client.get(f"/api/sessions/{created['id']}")
    assert r.json()["status"] == "scheduled"


@pytest.mark.asyncio
async def test_player_list_and_history(client, auth_headers):
    first = (await create_session(client, auth_headers, days_ahead=7))["id"]
    second = (await create_session(client, auth_headers, days_ahead=14))["id"]
    for sid in (first, second):
        await client.post(f"/api/sessions/{sid}/registrations", json={"name": "History Hal"}, headers=auth_headers)
    await client.post(f"/api/sessions/{first}/registrations", json={"name": "Other Olga"}, headers=auth_headers)

    r = await client.get("/api/players")
    assert [p["name"] for p in r.json()] == ["History Hal", "Other Olga"]
    r = await client.get("/api/players", params={"search": "HAL"})
    assert [p["name"] for p in r.json()] == ["History Hal"]
    pid = r.json()[0]["id"]

    r = await client.get(f"/api/players/{pid}/registrations")
    assert r.status_code == 200
    assert [reg["session_id"] for reg in r.json()] == [second, first]
    assert r.json()[0]["session"]["id"] == second
    r = await client.get(f"/api/players/{pid}/registrations", params={"limit": 1, "offset": 1})
    assert [reg["session_id"] for reg in r.json()] == [first]
    r = await client.get(f"/api/players/{pid}/registrations", params={"when": "past"})
    assert r.json() == []

    assert (await client.get(f"/api/players/{pid}/registrations", params={"when": "later"})).status_code == 400
    assert (await client.get("/api/players/999/registrations")).status_code == 404


@pytest.mark.asyncio
async def test_dashboard_stats(client, auth_headers):
    r = await client.get("/api/stats")
    assert r.json() == {"total_sessions": 0, "total_players": 0}

    sid = (await create_session(client, auth_headers, days_ahead=3))["id"]
    await create_session(client, auth_headers, days_ahead=10)
    await client.post(f"/api/sessions/{sid}/registrations", json={"name": "Stat Sam"}, headers=auth_headers)

    r = await client.get("/api/stats")
    assert r.json() == {"total_sessions": 2, "total_players": 1}

    r = await client.get("/api/stats", headers=auth_headers)
    data = r.json()
    assert data["sessions_this_month"] == 2
    assert data["registrations_this_week"] == 1
    assert data["next_session"]["id"] == sid
