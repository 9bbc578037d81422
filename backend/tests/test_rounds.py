"""
Tests for weekly rounds: start, end, lock-and-generate and expiry.
"""

import pytest
from datetime import datetime, timezone, timedelta
from httpx import AsyncClient
from sqlalchemy import select, update

from apoxer.models.round import WeeklyRound, WeeklyGameSelection
from apoxer.models.event import Event, GameEventCommunity
from apoxer.services import event_service, round_service
from apoxer.services.round_service import lock_expired_rounds
from apoxer.services.scheduling import iso_week_key
from conftest import make_profile, headers_for


async def nominate(client: AsyncClient, headers: dict, game_id: str, name: str) -> dict:
    response = await client.post(
        "/api/events/candidates",
        json={"game_id": game_id, "game_name": name},
        headers=headers,
    )
    assert response.status_code in (200, 201)
    return response.json()


async def vote(client: AsyncClient, headers: dict, candidate_id: int, time_pref="afternoon", day_pref=None):
    payload = {"candidate_id": candidate_id, "time_pref": time_pref}
    if day_pref:
        payload["day_pref"] = day_pref
    return await client.post("/api/events/votes", json=payload, headers=headers)


@pytest.mark.asyncio
async def test_start_round(client: AsyncClient, founder_headers):
    """Founder opens a round keyed by the current ISO week."""
    response = await client.post("/api/events/rounds/start", headers=founder_headers)
    assert response.status_code == 201
    data = response.json()
    assert data["status"] == "open"
    assert data["week_key"] == iso_week_key(datetime.now(timezone.utc))
    assert data["selection_phase_deadline"] is None


@pytest.mark.asyncio
async def test_start_round_twice(client: AsyncClient, founder_headers):
    """A second open round is refused."""
    await client.post("/api/events/rounds/start", headers=founder_headers)
    response = await client.post("/api/events/rounds/start", headers=founder_headers)
    assert response.status_code == 400
    assert "already an open round" in response.json()["detail"]


@pytest.mark.asyncio
async def test_start_round_race_hits_unique_index(client: AsyncClient, db_session, founder_headers, monkeypatch):
    """Two starts that both miss the open-round check: the index refuses the second."""
    await client.post("/api/events/rounds/start", headers=founder_headers)

    async def no_open_round(db):
        return None

    monkeypatch.setattr(round_service, "get_open_round", no_open_round)
    response = await client.post("/api/events/rounds/start", headers=founder_headers)
    assert response.status_code == 400
    assert response.json()["detail"] == "There is already an open round"

    db_session.expire_all()
    statuses = (await db_session.execute(select(WeeklyRound.status))).scalars().all()
    assert statuses == ["open"]


@pytest.mark.asyncio
async def test_start_round_requires_founder(client: AsyncClient, pro_headers):
    response = await client.post("/api/events/rounds/start", headers=pro_headers)
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_start_round_skips_used_week(client: AsyncClient, db_session, founder_headers):
    """When this week's key is taken by a processed round, the next free week is used."""
    now = datetime.now(timezone.utc)
    db_session.add(WeeklyRound(week_key=iso_week_key(now), status="processed", voting_ends_at=now))
    await db_session.commit()

    response = await client.post("/api/events/rounds/start", headers=founder_headers)
    assert response.status_code == 201
    assert response.json()["week_key"] == iso_week_key(now + timedelta(days=7))


@pytest.mark.asyncio
async def test_current_round_empty(client: AsyncClient):
    response = await client.get("/api/events/rounds/current")
    assert response.status_code == 200
    assert response.json() == {"round": None, "candidates": [], "user_votes": {}}


@pytest.mark.asyncio
async def test_current_round_with_user_votes(client: AsyncClient, founder_headers, auth_headers):
    """Candidates come back by votes, with the caller's own votes flagged."""
    await client.post("/api/events/rounds/start", headers=founder_headers)
    first = await nominate(client, auth_headers, "100", "Celeste")
    second = await nominate(client, auth_headers, "200", "Hades")
    await vote(client, auth_headers, second["id"])

    response = await client.get("/api/events/rounds/current", headers=auth_headers)
    data = response.json()
    assert [c["id"] for c in data["candidates"]] == [second["id"], first["id"]]
    assert data["user_votes"] == {str(second["id"]): True}

    anonymous = await client.get("/api/events/rounds/current")
    assert anonymous.json()["user_votes"] == {}


@pytest.mark.asyncio
async def test_end_round_selects_top_three(client: AsyncClient, db_session, founder_headers, auth_headers):
    """Ending snapshots the three most voted candidates as ranked selections."""
    await client.post("/api/events/rounds/start", headers=founder_headers)
    voters = [headers_for(await make_profile(db_session, f"voter{i}")) for i in range(3)]

    candidates = [await nominate(client, auth_headers, str(i), f"Game {i}") for i in range(4)]
    # Game 2 gets three votes, Game 0 two, Game 3 one, Game 1 none
    for headers in voters:
        await vote(client, headers, candidates[2]["id"])
    for headers in voters[:2]:
        await vote(client, headers, candidates[0]["id"])
    await vote(client, voters[0], candidates[3]["id"])

    response = await client.post("/api/events/rounds/end", headers=founder_headers)
    assert response.status_code == 200
    data = response.json()
    assert data["round"]["status"] == "locked"
    assert data["round"]["selection_phase_deadline"] is not None
    assert [(s["game_id"], s["rank"]) for s in data["selections"]] == [("2", 1), ("0", 2), ("3", 3)]


@pytest.mark.asyncio
async def test_end_round_without_candidates(client: AsyncClient, founder_headers):
    await client.post("/api/events/rounds/start", headers=founder_headers)
    response = await client.post("/api/events/rounds/end", headers=founder_headers)
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_end_round_without_open_round(client: AsyncClient, founder_headers):
    response = await client.post("/api/events/rounds/end", headers=founder_headers)
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_lock_generates_events_from_votes(client: AsyncClient, db_session, founder_headers):
    """
    Locking turns the top candidates into events on the most voted day and
    the winning afternoon/late-night slot, then opens next week's round.
    """
    await client.post("/api/events/rounds/start", headers=founder_headers)
    voters = [headers_for(await make_profile(db_session, f"voter{i}")) for i in range(3)]
    candidate = await nominate(client, founder_headers, "300", "Stardew Valley")
    await vote(client, voters[0], candidate["id"], "late_night", "sunday")
    await vote(client, voters[1], candidate["id"], "late_night", "sunday")
    await vote(client, voters[2], candidate["id"], "afternoon", "friday")

    response = await client.post("/api/events/rounds/lock", headers=founder_headers)
    assert response.status_code == 200
    data = response.json()
    assert len(data["events"]) == 1
    generated = data["events"][0]
    assert generated["day_slot"] == "sunday"
    assert generated["time_slot"] == "late_night"
    starts_at = datetime.fromisoformat(generated["starts_at"].replace("Z", "+00:00"))
    assert starts_at.weekday() == 6
    assert starts_at.hour == 21
    assert data["next_round_id"] is not None

    db_session.expire_all()
    rounds = (await db_session.execute(select(WeeklyRound).order_by(WeeklyRound.id))).scalars().all()
    assert [r.status for r in rounds] == ["processed", "open"]
    assert rounds[0].events_generated_at is not None

    event = (await db_session.execute(select(Event))).scalar_one()
    assert event.round_id == rounds[0].id
    assert event.ends_at - event.starts_at == timedelta(hours=6)


@pytest.mark.asyncio
async def test_lock_reuses_community_created_concurrently(client: AsyncClient, db_session, founder_headers, monkeypatch):
    """A community inserted by another request after our lookup is picked up, not duplicated."""
    await client.post("/api/events/rounds/start", headers=founder_headers)
    alpha = await nominate(client, founder_headers, "1", "Alpha")
    await nominate(client, founder_headers, "2", "Beta")
    await vote(client, founder_headers, alpha["id"])

    db_session.add(GameEventCommunity(game_id="1", game_name="Alpha"))
    await db_session.commit()

    real_find = event_service._find_community
    missed = []

    async def stale_find(db, game_id):
        if not missed:
            missed.append(game_id)
            return None
        return await real_find(db, game_id)

    monkeypatch.setattr(event_service, "_find_community", stale_find)
    response = await client.post("/api/events/rounds/lock", headers=founder_headers)
    assert response.status_code == 200
    assert sorted(e["game_id"] for e in response.json()["events"]) == ["1", "2"]
    assert missed == ["1"]

    db_session.expire_all()
    communities = (await db_session.execute(select(GameEventCommunity.game_id))).scalars().all()
    assert sorted(communities) == ["1", "2"]


@pytest.mark.asyncio
async def test_lock_skips_candidate_that_fails(client: AsyncClient, db_session, founder_headers, monkeypatch):
    """A database error for one candidate leaves the other events and the round transition intact."""
    await client.post("/api/events/rounds/start", headers=founder_headers)
    alpha = await nominate(client, founder_headers, "1", "Alpha")
    await nominate(client, founder_headers, "2", "Beta")
    await vote(client, founder_headers, alpha["id"])

    db_session.add(GameEventCommunity(game_id="taken", game_name="Taken"))
    await db_session.commit()

    real_create = round_service.create_event_record

    async def failing_for_alpha(db, **fields):
        if fields["game_id"] == "1":
            db.add(GameEventCommunity(game_id="taken", game_name="Alpha"))
            await db.flush()
        return await real_create(db, **fields)

    monkeypatch.setattr(round_service, "create_event_record", failing_for_alpha)
    response = await client.post("/api/events/rounds/lock", headers=founder_headers)
    assert response.status_code == 200
    data = response.json()
    assert [e["game_id"] for e in data["events"]] == ["2"]
    assert data["next_round_id"] is not None

    db_session.expire_all()
    rounds = (await db_session.execute(select(WeeklyRound).order_by(WeeklyRound.id))).scalars().all()
    assert [r.status for r in rounds] == ["processed", "open"]
    assert (await db_session.execute(select(Event.game_id))).scalars().all() == ["2"]


@pytest.mark.asyncio
async def test_lock_requires_founder(client: AsyncClient, founder_headers, auth_headers):
    await client.post("/api/events/rounds/start", headers=founder_headers)
    response = await client.post("/api/events/rounds/lock", headers=auth_headers)
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_lock_expired_rounds(db_session):
    """Rounds past their voting deadline are locked by the sweep."""
    now = datetime.now(timezone.utc)
    expired = WeeklyRound(week_key="2026-W01", status="open", voting_ends_at=now - timedelta(minutes=1))
    db_session.add(expired)
    await db_session.commit()

    locked = await lock_expired_rounds(db_session, now)
    await db_session.commit()

    assert locked == [expired.id]
    db_session.expire_all()
    refreshed = (await db_session.execute(select(WeeklyRound))).scalar_one()
    assert refreshed.status == "locked"
    assert refreshed.selection_phase_deadline is not None
    selections = (await db_session.execute(select(WeeklyGameSelection))).scalars().all()
    assert selections == []


@pytest.mark.asyncio
async def test_lock_expired_rounds_leaves_live_round(db_session):
    now = datetime.now(timezone.utc)
    db_session.add(WeeklyRound(week_key="2026-W02", status="open", voting_ends_at=now + timedelta(days=1)))
    await db_session.commit()

    assert await lock_expired_rounds(db_session, now) == []


@pytest.mark.asyncio
async def test_expired_round_rejects_votes(client: AsyncClient, db_session, founder_headers, auth_headers):
    """Votes are refused once the deadline passes even before the sweep runs."""
    await client.post("/api/events/rounds/start", headers=founder_headers)
    candidate = await nominate(client, auth_headers, "400", "Terraria")
    await db_session.execute(
        update(WeeklyRound).values(voting_ends_at=datetime.now(timezone.utc) - timedelta(seconds=1))
    )
    await db_session.commit()

    response = await vote(client, auth_headers, candidate["id"])
    assert response.status_code == 400
    assert response.json()["detail"] == "Voting is closed for this round"
