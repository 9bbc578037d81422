"""
Tests for lobbies: quick matchmaking, membership rules, auto-invite and the
inactivity sweep.
"""

import pytest
from datetime import datetime, timezone, timedelta
from httpx import AsyncClient
from sqlalchemy import select, update

from apoxer.models.lobby import Lobby, LobbyMember, LobbyInvite
from apoxer.models.profile import UserGame, Follow
from apoxer.services import lobby_service
from conftest import make_profile, headers_for


async def quick_create(client: AsyncClient, headers: dict, game_id="730", **extra):
    payload = {"game_id": game_id, "game_name": "Counter-Strike 2"}
    payload.update(extra)
    return await client.post("/api/lobbies/quick-create", json=payload, headers=headers)


@pytest.mark.asyncio
async def test_quick_create(client: AsyncClient, db_session, auth_headers, test_user):
    """Creates a two-player lobby hosted by the caller and adds the game to their library."""
    response = await quick_create(client, auth_headers, platform="ps")
    assert response.status_code == 201
    lobby_id = response.json()["lobby_id"]

    lobby = (await db_session.execute(select(Lobby).where(Lobby.id == lobby_id))).scalar_one()
    assert lobby.host_id == test_user.id
    assert lobby.max_players == 2
    assert lobby.platform == "ps"
    assert lobby.status == "open"
    assert lobby.member_count == 1

    member = (await db_session.execute(select(LobbyMember))).scalar_one()
    assert (member.user_id, member.role, member.ready) == (test_user.id, "host", False)
    games = (await db_session.execute(select(UserGame.game_id).where(UserGame.user_id == test_user.id))).scalars().all()
    assert games == ["730"]


@pytest.mark.asyncio
async def test_quick_create_keeps_lobby_when_library_update_fails(client: AsyncClient, db_session, auth_headers, test_user, monkeypatch):
    db_session.add(UserGame(user_id=test_user.id, game_id="730", game_name="Counter-Strike 2"))
    await db_session.commit()

    async def blind_insert(db, user_id, game_id, game_name, cover_url=None):
        db.add(UserGame(user_id=user_id, game_id=game_id, game_name=game_name))
        await db.flush()
        return True

    monkeypatch.setattr(lobby_service, "add_game_to_library", blind_insert)
    response = await quick_create(client, auth_headers)
    assert response.status_code == 201

    db_session.expire_all()
    lobby = (await db_session.execute(select(Lobby))).scalar_one()
    assert lobby.id == response.json()["lobby_id"]
    assert lobby.status == "open"
    games = (await db_session.execute(select(UserGame))).scalars().all()
    assert len(games) == 1


@pytest.mark.asyncio
async def test_quick_create_race_hits_active_host_index(client: AsyncClient, db_session, auth_headers, monkeypatch):
    """If the old lobby is not closed first, the partial unique index refuses a second active one."""
    first = (await quick_create(client, auth_headers)).json()["lobby_id"]

    async def stays_put(db, user_id):
        return 0

    monkeypatch.setattr(lobby_service, "leave_current_lobbies", stays_put)
    response = await quick_create(client, auth_headers, game_id="570")
    assert response.status_code == 409

    db_session.expire_all()
    active = (await db_session.execute(select(Lobby.id).where(Lobby.status != "closed"))).scalars().all()
    assert active == [first]


@pytest.mark.asyncio
async def test_quick_create_replaces_previous_lobby(client: AsyncClient, db_session, auth_headers):
    """A host never has two active lobbies."""
    first = (await quick_create(client, auth_headers)).json()["lobby_id"]
    second = (await quick_create(client, auth_headers, game_id="570")).json()["lobby_id"]
    assert first != second

    db_session.expire_all()
    statuses = dict((await db_session.execute(select(Lobby.id, Lobby.status))).all())
    assert statuses == {first: "closed", second: "open"}
    members = (await db_session.execute(select(LobbyMember.lobby_id))).scalars().all()
    assert members == [second]


@pytest.mark.asyncio
async def test_quick_create_auto_invite_needs_pro(client: AsyncClient, auth_headers):
    response = await quick_create(client, auth_headers, auto_invite=True)
    assert response.status_code == 403
    assert response.json()["detail"]["code"] == "PREMIUM_REQUIRED"


@pytest.mark.asyncio
async def test_join_and_full(client: AsyncClient, db_session, auth_headers):
    """Second player joins; a third finds the lobby full."""
    lobby_id = (await quick_create(client, auth_headers)).json()["lobby_id"]
    guest = headers_for(await make_profile(db_session, "guest"))
    late = headers_for(await make_profile(db_session, "late"))

    joined = await client.post(f"/api/lobbies/{lobby_id}/join", headers=guest)
    assert joined.status_code == 200
    assert joined.json()["id"] == lobby_id

    # joining again is a no-op
    assert (await client.post(f"/api/lobbies/{lobby_id}/join", headers=guest)).status_code == 200

    full = await client.post(f"/api/lobbies/{lobby_id}/join", headers=late)
    assert full.status_code == 400
    assert full.json()["detail"] == "Lobby is full"


@pytest.mark.asyncio
async def test_join_loses_last_seat_to_concurrent_join(client: AsyncClient, db_session, auth_headers, monkeypatch):
    """The seat counter refuses a join whose capacity check went stale."""
    lobby_id = (await quick_create(client, auth_headers)).json()["lobby_id"]
    rival = await make_profile(db_session, "rival")
    late = headers_for(await make_profile(db_session, "late"))

    real_leave = lobby_service.leave_current_lobbies

    async def rival_takes_seat(db, user_id):
        closed = await real_leave(db, user_id)
        db.add(LobbyMember(lobby_id=lobby_id, user_id=rival.id, role="member"))
        await db.execute(
            update(Lobby)
            .where(Lobby.id == lobby_id)
            .values(member_count=Lobby.member_count + 1)
            .execution_options(synchronize_session="fetch")
        )
        return closed

    monkeypatch.setattr(lobby_service, "leave_current_lobbies", rival_takes_seat)
    response = await client.post(f"/api/lobbies/{lobby_id}/join", headers=late)
    assert response.status_code == 400
    assert response.json()["detail"] == "Lobby is full"


@pytest.mark.asyncio
async def test_member_count_follows_joins_and_leaves(client: AsyncClient, db_session):
    host_a = headers_for(await make_profile(db_session, "host_a"))
    host_b = headers_for(await make_profile(db_session, "host_b"))
    guest = headers_for(await make_profile(db_session, "guest"))
    lobby_a = (await quick_create(client, host_a)).json()["lobby_id"]
    lobby_b = (await quick_create(client, host_b)).json()["lobby_id"]

    await client.post(f"/api/lobbies/{lobby_a}/join", headers=guest)
    await client.post(f"/api/lobbies/{lobby_b}/join", headers=guest)

    async def counts() -> dict:
        db_session.expire_all()
        return dict((await db_session.execute(select(Lobby.id, Lobby.member_count))).all())

    assert await counts() == {lobby_a: 1, lobby_b: 2}
    await client.post(f"/api/lobbies/{lobby_b}/leave", headers=guest)
    assert await counts() == {lobby_a: 1, lobby_b: 1}
    await client.post(f"/api/lobbies/{lobby_a}/leave", headers=host_a)
    assert await counts() == {lobby_a: 0, lobby_b: 1}


@pytest.mark.asyncio
async def test_join_moves_member_between_lobbies(client: AsyncClient, db_session):
    """Joining a lobby drops the player's other membership."""
    host_a = headers_for(await make_profile(db_session, "host_a"))
    host_b = headers_for(await make_profile(db_session, "host_b"))
    guest_profile = await make_profile(db_session, "guest")
    guest = headers_for(guest_profile)

    lobby_a = (await quick_create(client, host_a)).json()["lobby_id"]
    lobby_b = (await quick_create(client, host_b)).json()["lobby_id"]
    await client.post(f"/api/lobbies/{lobby_a}/join", headers=guest)
    await client.post(f"/api/lobbies/{lobby_b}/join", headers=guest)

    db_session.expire_all()
    rows = (
        await db_session.execute(select(LobbyMember.lobby_id).where(LobbyMember.user_id == guest_profile.id))
    ).scalars().all()
    assert rows == [lobby_b]


@pytest.mark.asyncio
async def test_host_leaving_closes_lobby(client: AsyncClient, db_session, auth_headers):
    lobby_id = (await quick_create(client, auth_headers)).json()["lobby_id"]
    guest = headers_for(await make_profile(db_session, "guest"))
    await client.post(f"/api/lobbies/{lobby_id}/join", headers=guest)

    response = await client.post(f"/api/lobbies/{lobby_id}/leave", headers=auth_headers)
    assert response.status_code == 204

    db_session.expire_all()
    assert (await db_session.execute(select(Lobby.status))).scalar_one() == "closed"
    assert (await db_session.execute(select(LobbyMember))).scalars().all() == []
    gone = await client.post(f"/api/lobbies/{lobby_id}/join", headers=guest)
    assert gone.status_code == 404


@pytest.mark.asyncio
async def test_member_leave(client: AsyncClient, db_session, auth_headers):
    lobby_id = (await quick_create(client, auth_headers)).json()["lobby_id"]
    guest = headers_for(await make_profile(db_session, "guest"))
    stranger = headers_for(await make_profile(db_session, "stranger"))
    await client.post(f"/api/lobbies/{lobby_id}/join", headers=guest)

    assert (await client.post(f"/api/lobbies/{lobby_id}/leave", headers=guest)).status_code == 204
    assert (await client.post(f"/api/lobbies/{lobby_id}/leave", headers=stranger)).status_code == 404


@pytest.mark.asyncio
async def test_heartbeat_host_only(client: AsyncClient, db_session, auth_headers):
    lobby_id = (await quick_create(client, auth_headers)).json()["lobby_id"]
    guest = headers_for(await make_profile(db_session, "guest"))

    assert (await client.post(f"/api/lobbies/{lobby_id}/heartbeat", headers=auth_headers)).status_code == 200
    assert (await client.post(f"/api/lobbies/{lobby_id}/heartbeat", headers=guest)).status_code == 403


@pytest.mark.asyncio
async def test_count_lobbies(client: AsyncClient, db_session, auth_headers):
    """Counts active lobbies per requested game, zero for the rest."""
    await quick_create(client, auth_headers, game_id="730")
    other = headers_for(await make_profile(db_session, "other"))
    await quick_create(client, other, game_id="730")

    response = await client.post("/api/lobbies/count", json={"game_ids": ["730", "570"]})
    assert response.json() == {"counts": {"730": 2, "570": 0}}


@pytest.mark.asyncio
async def test_auto_invite(client: AsyncClient, db_session, pro_user, pro_headers):
    """
    Invites recently active owners of the game who accept invites. Players
    limited to invites from people they follow are included only when they
    follow the host.
    """
    lobby_id = (await quick_create(client, pro_headers, auto_invite=True)).json()["lobby_id"]
    now = datetime.now(timezone.utc)

    eligible = await make_profile(db_session, "eligible")
    fan = await make_profile(db_session, "fan", invites_from_followers_only=True)
    picky = await make_profile(db_session, "picky", invites_from_followers_only=True)
    closed = await make_profile(db_session, "closed", allow_invites=False)
    idle = await make_profile(db_session, "idle", last_active_at=now - timedelta(hours=2))
    no_game = await make_profile(db_session, "nogame")

    for profile in (eligible, fan, picky, closed, idle):
        db_session.add(UserGame(user_id=profile.id, game_id="730", game_name="Counter-Strike 2"))
    db_session.add(UserGame(user_id=no_game.id, game_id="570", game_name="Dota 2"))
    db_session.add(Follow(follower_id=fan.id, following_id=pro_user.id))
    await db_session.commit()

    response = await client.post(
        "/api/lobbies/auto-invite",
        json={"lobby_id": lobby_id, "game_id": "730"},
        headers=pro_headers,
    )
    assert response.status_code == 200
    assert response.json() == {"invited": 2, "message": None}

    invited = (await db_session.execute(select(LobbyInvite.to_user_id))).scalars().all()
    assert set(invited) == {eligible.id, fan.id}

    again = await client.post(
        "/api/lobbies/auto-invite",
        json={"lobby_id": lobby_id, "game_id": "730"},
        headers=pro_headers,
    )
    assert again.json() == {"invited": 0, "message": "No eligible players found"}


@pytest.mark.asyncio
async def test_auto_invite_free_user(client: AsyncClient, auth_headers):
    lobby_id = (await quick_create(client, auth_headers)).json()["lobby_id"]
    response = await client.post(
        "/api/lobbies/auto-invite",
        json={"lobby_id": lobby_id, "game_id": "730"},
        headers=auth_headers,
    )
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_accepting_invite_on_join(client: AsyncClient, db_session, pro_headers):
    """Joining flips the player's pending invite to accepted."""
    lobby_id = (await quick_create(client, pro_headers)).json()["lobby_id"]
    guest = await make_profile(db_session, "guest")
    db_session.add(UserGame(user_id=guest.id, game_id="730", game_name="Counter-Strike 2"))
    await db_session.commit()
    await client.post("/api/lobbies/auto-invite", json={"lobby_id": lobby_id, "game_id": "730"}, headers=pro_headers)

    await client.post(f"/api/lobbies/{lobby_id}/join", headers=headers_for(guest))

    db_session.expire_all()
    assert (await db_session.execute(select(LobbyInvite.status))).scalar_one() == "accepted"


@pytest.mark.asyncio
async def test_close_inactive_endpoint(client: AsyncClient, db_session, auth_headers, founder_headers):
    """Founder-run sweep closes lobbies whose host went quiet."""
    lobby_id = (await quick_create(client, auth_headers)).json()["lobby_id"]
    await db_session.execute(
        update(Lobby)
        .where(Lobby.id == lobby_id)
        .values(host_last_active_at=datetime.now(timezone.utc) - timedelta(hours=2))
    )
    await db_session.commit()

    assert (await client.post("/api/lobbies/close-inactive", headers=auth_headers)).status_code == 403
    response = await client.post("/api/lobbies/close-inactive", headers=founder_headers)
    assert response.json() == {"closed": 1}
