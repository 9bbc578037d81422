"""
Tests for tournaments: creation rules, registration counters, check-in,
bracket start and match finalization with rewards.
"""

import pytest
from datetime import datetime, timezone, timedelta
from httpx import AsyncClient
from sqlalchemy import select

from apoxer.models.profile import Profile
from apoxer.models.tournament import Tournament, TournamentParticipant, ProfileBadge, TournamentReward
from apoxer.services.tournament_service import _extend_pro
from conftest import make_profile, headers_for


def tournament_payload(**overrides) -> dict:
    now = datetime.now(timezone.utc)
    payload = {
        "game_id": "730",
        "game_name": "Counter-Strike 2",
        "title": "Saturday Cup",
        "max_participants": 8,
        "platform": "pc",
        "registration_deadline": (now + timedelta(days=2)).isoformat(),
        "start_at": (now + timedelta(days=3)).isoformat(),
    }
    payload.update(overrides)
    return payload


async def create_tournament(client: AsyncClient, headers: dict, **overrides) -> dict:
    response = await client.post("/api/tournaments", json=tournament_payload(**overrides), headers=headers)
    assert response.status_code == 201, response.text
    return response.json()


async def register_players(client: AsyncClient, db_session, tournament_id: int, count: int) -> list[dict]:
    players = []
    for i in range(count):
        headers = headers_for(await make_profile(db_session, f"player{i}"))
        response = await client.post(f"/api/tournaments/{tournament_id}/register", headers=headers)
        assert response.status_code == 201, response.text
        players.append(headers)
    return players


@pytest.mark.asyncio
async def test_create_tournament(client: AsyncClient, pro_headers, pro_user):
    """Pro host creates an open tournament shown as upcoming."""
    data = await create_tournament(client, pro_headers)
    assert data["host_id"] == pro_user.id
    assert data["status"] == "open"
    assert data["current_participants"] == 0
    assert data["state"] == "upcoming"


@pytest.mark.asyncio
async def test_create_tournament_free_user(client: AsyncClient, auth_headers):
    response = await client.post("/api/tournaments", json=tournament_payload(), headers=auth_headers)
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_create_tournament_bad_size(client: AsyncClient, pro_headers):
    response = await client.post("/api/tournaments", json=tournament_payload(max_participants=12), headers=pro_headers)
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_create_tournament_deadline_after_start(client: AsyncClient, pro_headers):
    now = datetime.now(timezone.utc)
    response = await client.post(
        "/api/tournaments",
        json=tournament_payload(
            registration_deadline=(now + timedelta(days=4)).isoformat(),
            start_at=(now + timedelta(days=3)).isoformat(),
        ),
        headers=pro_headers,
    )
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_create_tournament_check_in_window(client: AsyncClient, pro_headers):
    """Check-in needs a deadline between registration close and start."""
    now = datetime.now(timezone.utc)
    missing = await client.post(
        "/api/tournaments", json=tournament_payload(check_in_required=True), headers=pro_headers
    )
    assert missing.status_code == 400

    outside = await client.post(
        "/api/tournaments",
        json=tournament_payload(check_in_required=True, check_in_deadline=(now + timedelta(days=5)).isoformat()),
        headers=pro_headers,
    )
    assert outside.status_code == 400


@pytest.mark.asyncio
async def test_list_tournaments_filters(client: AsyncClient, pro_headers, founder_headers):
    await create_tournament(client, pro_headers, title="PC Cup")
    await create_tournament(client, founder_headers, title="Console Cup", platform="ps", game_id="999")

    everything = (await client.get("/api/tournaments")).json()
    assert everything["total"] == 2
    assert [t["title"] for t in everything["tournaments"]] == ["Console Cup", "PC Cup"]

    ps_only = (await client.get("/api/tournaments", params={"platform": "ps"})).json()
    assert [t["title"] for t in ps_only["tournaments"]] == ["Console Cup"]

    by_game = (await client.get("/api/tournaments", params={"game_id": "730", "status": "open"})).json()
    assert [t["title"] for t in by_game["tournaments"]] == ["PC Cup"]

    paged = (await client.get("/api/tournaments", params={"page": 2, "limit": 1})).json()
    assert paged["total"] == 2
    assert [t["title"] for t in paged["tournaments"]] == ["PC Cup"]


@pytest.mark.asyncio
async def test_register_and_duplicate(client: AsyncClient, pro_headers, auth_headers):
    tournament = await create_tournament(client, pro_headers)
    url = f"/api/tournaments/{tournament['id']}/register"

    first = await client.post(url, headers=auth_headers)
    assert first.status_code == 201
    assert first.json()["participant"]["status"] == "registered"

    again = await client.post(url, headers=auth_headers)
    assert again.status_code == 400

    detail = (await client.get(f"/api/tournaments/{tournament['id']}")).json()
    assert detail["tournament"]["current_participants"] == 1
    assert len(detail["participants"]) == 1


@pytest.mark.asyncio
async def test_register_when_full(client: AsyncClient, db_session, pro_headers, auth_headers):
    """The ninth player is refused and the counter never passes the cap."""
    tournament = await create_tournament(client, pro_headers)
    await register_players(client, db_session, tournament["id"], 8)

    response = await client.post(f"/api/tournaments/{tournament['id']}/register", headers=auth_headers)
    assert response.status_code == 400
    assert response.json()["detail"] == "Tournament is full"

    db_session.expire_all()
    row = (await db_session.execute(select(Tournament))).scalar_one()
    assert row.current_participants == 8


@pytest.mark.asyncio
async def test_register_after_deadline(client: AsyncClient, db_session, pro_headers, auth_headers):
    tournament = await create_tournament(client, pro_headers)
    row = (await db_session.execute(select(Tournament))).scalar_one()
    row.registration_deadline = datetime.now(timezone.utc) - timedelta(minutes=1)
    await db_session.commit()

    response = await client.post(f"/api/tournaments/{tournament['id']}/register", headers=auth_headers)
    assert response.status_code == 400
    assert response.json()["detail"] == "Registration deadline has passed"


@pytest.mark.asyncio
async def test_withdraw_and_reregister(client: AsyncClient, pro_headers, auth_headers):
    """Withdrawing frees the seat; registering again reactivates the same row."""
    tournament = await create_tournament(client, pro_headers)
    base = f"/api/tournaments/{tournament['id']}"
    participant_id = (await client.post(f"{base}/register", headers=auth_headers)).json()["participant"]["id"]

    withdrawn = await client.post(f"{base}/withdraw", headers=auth_headers)
    assert withdrawn.status_code == 200
    assert withdrawn.json()["participant"]["status"] == "withdrawn"
    assert (await client.get(base)).json()["tournament"]["current_participants"] == 0

    assert (await client.post(f"{base}/withdraw", headers=auth_headers)).status_code == 400

    back = await client.post(f"{base}/register", headers=auth_headers)
    assert back.status_code == 201
    assert back.json()["participant"]["id"] == participant_id
    assert (await client.get(base)).json()["tournament"]["current_participants"] == 1


@pytest.mark.asyncio
async def test_check_in(client: AsyncClient, pro_headers, auth_headers):
    now = datetime.now(timezone.utc)
    tournament = await create_tournament(
        client,
        pro_headers,
        check_in_required=True,
        registration_deadline=(now + timedelta(days=1)).isoformat(),
        check_in_deadline=(now + timedelta(days=2)).isoformat(),
    )
    base = f"/api/tournaments/{tournament['id']}"

    not_registered = await client.post(f"{base}/check-in", headers=auth_headers)
    assert not_registered.status_code == 400

    await client.post(f"{base}/register", headers=auth_headers)
    checked = await client.post(f"{base}/check-in", headers=auth_headers)
    assert checked.status_code == 200
    assert checked.json()["participant"]["status"] == "checked_in"
    assert checked.json()["participant"]["checked_in_at"] is not None

    twice = await client.post(f"{base}/check-in", headers=auth_headers)
    assert twice.json()["detail"] == "You are already checked in"


@pytest.mark.asyncio
async def test_check_in_not_required(client: AsyncClient, pro_headers, auth_headers):
    tournament = await create_tournament(client, pro_headers)
    await client.post(f"/api/tournaments/{tournament['id']}/register", headers=auth_headers)
    response = await client.post(f"/api/tournaments/{tournament['id']}/check-in", headers=auth_headers)
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_start_needs_full_bracket(client: AsyncClient, db_session, pro_headers):
    tournament = await create_tournament(client, pro_headers)
    await register_players(client, db_session, tournament["id"], 7)
    response = await client.post(f"/api/tournaments/{tournament['id']}/start", headers=pro_headers)
    assert response.status_code == 400
    assert "have 7" in response.json()["detail"]


@pytest.mark.asyncio
async def test_start_host_only(client: AsyncClient, db_session, pro_headers, auth_headers):
    tournament = await create_tournament(client, pro_headers)
    response = await client.post(f"/api/tournaments/{tournament['id']}/start", headers=auth_headers)
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_start_lays_out_bracket(client: AsyncClient, db_session, pro_headers):
    """Eight players give four first-round pairings and empty later rounds."""
    tournament = await create_tournament(client, pro_headers)
    await register_players(client, db_session, tournament["id"], 8)

    response = await client.post(f"/api/tournaments/{tournament['id']}/start", headers=pro_headers)
    assert response.status_code == 200
    matches = response.json()
    assert [(m["round_number"], m["match_number"]) for m in matches] == [
        (1, 1), (1, 2), (1, 3), (1, 4), (2, 1), (2, 2), (3, 1),
    ]
    assert all(m["participant1_id"] and m["participant2_id"] for m in matches[:4])
    assert all(m["participant1_id"] is None for m in matches[4:])

    detail = (await client.get(f"/api/tournaments/{tournament['id']}")).json()
    assert detail["tournament"]["status"] == "in_progress"
    assert detail["tournament"]["state"] == "live"
    assert sorted(p["seed"] for p in detail["participants"]) == list(range(1, 9))

    again = await client.post(f"/api/tournaments/{tournament['id']}/start", headers=pro_headers)
    assert again.status_code == 400


@pytest.mark.asyncio
async def test_finalize_rejects_outsider_winner(client: AsyncClient, db_session, pro_headers):
    tournament = await create_tournament(client, pro_headers)
    await register_players(client, db_session, tournament["id"], 8)
    matches = (await client.post(f"/api/tournaments/{tournament['id']}/start", headers=pro_headers)).json()
    first, second = matches[0], matches[1]
    url = f"/api/tournaments/{tournament['id']}/matches/{first['id']}/finalize"

    outsider = await client.post(
        url, json={"winner_id": second["participant1_id"], "score1": 1, "score2": 0}, headers=pro_headers
    )
    assert outsider.status_code == 400

    ok = await client.post(
        url, json={"winner_id": first["participant1_id"], "score1": 2, "score2": 1}, headers=pro_headers
    )
    assert ok.json() == {"message": "Match finalized", "tournament_complete": False}

    twice = await client.post(
        url, json={"winner_id": first["participant1_id"], "score1": 2, "score2": 1}, headers=pro_headers
    )
    assert twice.status_code == 400


@pytest.mark.asyncio
async def test_finalize_waits_for_both_participants(client: AsyncClient, db_session, pro_headers):
    """A later-round match cannot be decided before its opponent is known."""
    tournament = await create_tournament(client, pro_headers)
    await register_players(client, db_session, tournament["id"], 8)
    matches = (await client.post(f"/api/tournaments/{tournament['id']}/start", headers=pro_headers)).json()
    first, semi = matches[0], matches[4]

    await client.post(
        f"/api/tournaments/{tournament['id']}/matches/{first['id']}/finalize",
        json={"winner_id": first["participant1_id"], "score1": 2, "score2": 0},
        headers=pro_headers,
    )
    response = await client.post(
        f"/api/tournaments/{tournament['id']}/matches/{semi['id']}/finalize",
        json={"winner_id": first["participant1_id"], "score1": 2, "score2": 0},
        headers=pro_headers,
    )
    assert response.status_code == 400
    assert response.json()["detail"] == "Match is still waiting for its participants"


@pytest.mark.asyncio
async def test_finalize_before_start(client: AsyncClient, db_session, pro_headers):
    tournament = await create_tournament(client, pro_headers)
    await register_players(client, db_session, tournament["id"], 2)

    response = await client.post(
        f"/api/tournaments/{tournament['id']}/matches/1/finalize",
        json={"winner_id": 1, "score1": 1, "score2": 0},
        headers=pro_headers,
    )
    assert response.status_code == 400
    assert response.json()["detail"] == "Tournament is not in progress"


@pytest.mark.asyncio
async def test_full_tournament_run(client: AsyncClient, db_session, pro_headers):
    """
    Play every match with participant1 winning. Placements and rewards:
    champion gets a badge and 7 pro days, the finalist 3 days, both
    semifinal losers a top-4 badge.
    """
    tournament = await create_tournament(client, pro_headers)
    tid = tournament["id"]
    await register_players(client, db_session, tid, 8)
    await client.post(f"/api/tournaments/{tid}/start", headers=pro_headers)

    complete = False
    for round_number in (1, 2, 3):
        matches = (await client.get(f"/api/tournaments/{tid}")).json()["matches"]
        for match in [m for m in matches if m["round_number"] == round_number]:
            response = await client.post(
                f"/api/tournaments/{tid}/matches/{match['id']}/finalize",
                json={"winner_id": match["participant1_id"], "score1": 3, "score2": 1},
                headers=pro_headers,
            )
            assert response.status_code == 200, response.text
            complete = response.json()["tournament_complete"]
    assert complete is True

    detail = (await client.get(f"/api/tournaments/{tid}")).json()
    assert detail["tournament"]["status"] == "completed"
    assert detail["tournament"]["state"] == "completed"
    matches = detail["matches"]
    final = matches[-1]
    semis = [m for m in matches if m["round_number"] == 2]
    placements = {p["id"]: p["final_placement"] for p in detail["participants"]}
    assert placements[final["participant1_id"]] == 1
    assert placements[final["participant2_id"]] == 2
    assert placements[semis[0]["participant2_id"]] == 3
    assert placements[semis[1]["participant2_id"]] == 4
    assert sum(1 for v in placements.values() if v is None) == 4

    db_session.expire_all()
    champion_user = (
        await db_session.execute(
            select(TournamentParticipant.user_id).where(TournamentParticipant.id == final["participant1_id"])
        )
    ).scalar_one()
    champion = (await db_session.execute(select(Profile).where(Profile.id == champion_user))).scalar_one()
    assert champion.plan_tier == "pro"
    days_left = champion.plan_expires_at - datetime.now(timezone.utc)
    assert timedelta(days=6, hours=23) < days_left <= timedelta(days=7)

    badges = (await db_session.execute(select(ProfileBadge.badge_key))).scalars().all()
    assert sorted(badges) == ["tournament_finalist", "tournament_top4", "tournament_top4", "tournament_winner"]
    rewards = (await db_session.execute(select(TournamentReward))).scalars().all()
    assert sorted(r.payload["days"] for r in rewards) == [3, 7]


def test_extend_pro_from_later_expiry():
    """An active pro plan is extended from its current expiry, not from now."""
    now = datetime(2026, 5, 1, tzinfo=timezone.utc)
    profile = Profile(plan_tier="pro", plan_expires_at=now + timedelta(days=10))
    assert _extend_pro(profile, 7, now) == now + timedelta(days=17)


def test_extend_pro_lapsed_plan_starts_now():
    now = datetime(2026, 5, 1, tzinfo=timezone.utc)
    profile = Profile(plan_tier="pro", plan_expires_at=now - timedelta(days=30))
    assert _extend_pro(profile, 3, now) == now + timedelta(days=3)


def test_extend_pro_leaves_founders_and_open_ended_plans():
    now = datetime(2026, 5, 1, tzinfo=timezone.utc)
    founder = Profile(plan_tier="founder", plan_expires_at=None)
    unlimited = Profile(plan_tier="pro", plan_expires_at=None)
    assert _extend_pro(founder, 7, now) is None
    assert founder.plan_tier == "founder"
    assert _extend_pro(unlimited, 7, now) is None
    assert unlimited.plan_expires_at is None
