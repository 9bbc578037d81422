"""
Founder tooling: synthetic player profiles for demos and load on the social
features.

Each seeded profile gets a gamer-style username, a bio, 3-8 games from
SteamGridDB and an avatar/banner cut from game heroes. SteamGridDB and image
failures never abort a seed; the profile is created with whatever could be
fetched.
"""

import random
import re
import secrets
from typing import Optional

from sqlalchemy import select, delete, or_
from sqlalchemy.ext.asyncio import AsyncSession
from fastapi import HTTPException, status

from apoxer.models.profile import Profile, UserGame, Follow
from apoxer.integrations.steamgriddb import SteamGridDBClient
from apoxer.services.fallback import first_success
from apoxer.services import image_service
from apoxer.core.config import get_settings
from apoxer.core.security import hash_password
from apoxer.core.logging import get_logger

logger = get_logger(__name__)
settings = get_settings()

MAX_USERNAME_ATTEMPTS = 20
GAMES_PER_USER = (3, 8)
FOLLOWS_PER_USER = (5, 15)

CLASSIC_GAMES = [
    "DOOM (1993)",
    "Duke Nukem 3D",
    "Quake",
    "Quake II",
    "Quake III Arena",
    "Unreal Tournament (1999)",
    "Unreal Tournament 2004",
    "Serious Sam: The First Encounter",
    "Wolfenstein: Enemy Territory",
    "Return to Castle Wolfenstein",
    "Battlefield 1942",
    "Battlefield 3",
    "Battlefield: Bad Company 2",
    "Call of Duty 2",
    "Call of Duty 4: Modern Warfare",
    "Counter-Strike 1.6",
    "Medal of Honor: Allied Assault",
    "Team Fortress 2",
    "Max Payne 3",
    "Grand Theft Auto IV",
    "Grand Theft Auto: Vice City",
    "Red Dead Redemption 2",
    "James Bond 007: Nightfire",
    "Jazz Jackrabbit 2",
    "Streets of Rage 4",
    "TrackMania Nations Forever",
    "FlatOut 2",
    "Burnout Paradise",
    "Need for Speed: Most Wanted",
    "Tekken 5",
    "SoulCalibur II",
    "Crash Team Racing",
    "World of Warcraft",
    "Diablo II",
    "Guild Wars",
    "Ragnarok Online",
    "Lineage II",
    "Age of Empires II",
    "Warcraft III",
    "Command & Conquer: Red Alert 2",
    "StarCraft: Brood War",
    "NBA Street",
    "Pro Evolution Soccer 6",
]

KNOWN_GAME_IDS = {
    "Team Fortress 2": 440,
    "Red Dead Redemption 2": 1174180,
    "Grand Theft Auto IV": 12210,
    "Counter-Strike 1.6": 10,
    "DOOM (1993)": 2280,
    "Quake": 2310,
    "Quake II": 2320,
    "Quake III Arena": 2330,
    "Unreal Tournament (1999)": 13240,
    "Unreal Tournament 2004": 13230,
    "Call of Duty 4: Modern Warfare": 7940,
    "Age of Empires II": 813780,
    "Warcraft III": 60,
    "StarCraft: Brood War": 50,
    "Diablo II": 40,
    "World of Warcraft": 15,
}

GENERIC_SEARCH_TERMS = ["quake", "doom", "unreal", "battlefield", "call of duty", "counter-strike"]

PREFERRED_USERNAMES = [
    "shadowflux",
    "neonblade",
    "frostvector",
    "rogueecho",
    "steelhorizon",
    "crypticnova",
    "orbitstrike",
    "pixelshade",
    "thundercrypt",
    "retroblade",
    "arcaderunner",
    "quantumghost",
    "midnightphase",
    "silvercaster",
    "goldenpilot",
    "emberglitch",
    "onyxstorm",
    "lunarbyte",
    "driftvector",
    "astroshift",
    "novaspark",
    "cobaltwing",
    "ironpulse",
    "neonwarden",
]

NAME_PREFIXES = [
    "shadow", "neon", "frost", "rogue", "steel", "cryptic", "orbit", "pixel", "thunder",
    "retro", "arcade", "quantum", "midnight", "silver", "golden", "ember", "onyx", "lunar",
    "drift", "radar", "astro", "echo", "nova", "turbo", "silent", "vortex", "omega", "cobalt",
    "iron", "ghost", "frag", "packet", "respawn", "dark", "storm", "night", "dragon", "wolf",
    "phoenix", "cyber", "atomic", "nano", "mega", "void",
]
NAME_SUFFIXES = [
    "flux", "blade", "vector", "echo", "horizon", "nova", "strike", "shade", "crypt",
    "runner", "ghost", "phase", "caster", "pilot", "glitch", "storm", "byte", "shift",
    "agent", "spark", "signal", "core", "trail", "arrow", "drifter", "rift", "scope",
    "wing", "pulse", "warden", "gamer", "hunter", "slayer", "legend", "x", "z", "pro",
]
NAME_NUMBERS = ["99", "2024", "2023", "1337", "88", "77", "66", "55"]

BIOS = [
    "Competitive player looking for skilled teammates",
    "Casual gamer who loves exploring new worlds",
    "Speedrunner and achievement hunter",
    "Team player focused on strategy and communication",
    "PVP enthusiast always up for a match",
    "PVE player who loves story-driven games",
    "Tournament player competing at the highest level",
    "Night owl gamer, always online after midnight",
    "Weekend warrior grinding on Saturdays",
    "Multiplayer specialist, love co-op games",
    "RPG fanatic, hundreds of hours in character building",
    "FPS pro with lightning-fast reflexes",
    "Strategy mastermind planning every move",
    "Fighting game combo master",
    "Open world explorer, completionist at heart",
    "Indie game supporter, always discovering gems",
]

_WORDS = sorted(set(NAME_PREFIXES + NAME_SUFFIXES), key=len, reverse=True)


def generate_username(rng: random.Random) -> str:
    name = ""
    use_prefix = rng.random() > 0.2
    if use_prefix:
        name += rng.choice(NAME_PREFIXES)
        if rng.random() > 0.6:
            name += rng.choice(NAME_PREFIXES)
    if rng.random() > 0.2:
        name += rng.choice(NAME_SUFFIXES)
    if rng.random() > 0.3:
        name += rng.choice(NAME_NUMBERS)
    if not name:
        name = rng.choice(NAME_PREFIXES) + rng.choice(NAME_SUFFIXES)
    name += str(rng.randint(0, 999))
    return name.lower()


def display_name_for(username: str, rng: random.Random) -> str:
    """'shadowflux42' -> 'Shadow Flux' most of the time, else 'Shadowflux42'."""
    if rng.random() <= 0.3:
        return username[:1].upper() + username[1:].lower()

    base = re.sub(r"\d+$", "", username).lower()
    for word in _WORDS:
        if base.startswith(word) and len(base) - len(word) > 2:
            base = f"{word} {base[len(word):]}"
            break
        if base.endswith(word) and len(base) - len(word) > 2:
            base = f"{base[:-len(word)]} {word}"
            break
    clean = " ".join(part.capitalize() for part in base.split(" ") if part)
    return clean if len(clean) >= 3 else username


def _normalize(name: str) -> str:
    return re.sub(r"[^a-z0-9\s]", "", name.lower())


def is_close_match(query: str, candidate: str) -> bool:
    query_words = [w for w in _normalize(query).split() if len(w) > 2]
    candidate_words = _normalize(candidate).split()
    matches = sum(1 for w in query_words if any(w in c or c in w for c in candidate_words))
    return matches >= min(2, len(query_words))


async def _with_cover(client: SteamGridDBClient, game_id: int, name: str) -> Optional[dict]:
    if await client.get_cover(game_id) is None:
        return None
    return {"id": game_id, "name": name}


async def find_game(client: SteamGridDBClient, name: str) -> Optional[dict]:
    """Known id, then the first close search match, then the first search result."""
    results: list[dict] = []

    async def known_id():
        game_id = KNOWN_GAME_IDS.get(name)
        if game_id is None:
            return None
        game = await client.get_game(game_id)
        return await _with_cover(client, game_id, game["name"]) if game else None

    async def close_match():
        results.extend(await client.search(name))
        for game in results:
            if is_close_match(name, game.get("name", "")):
                found = await _with_cover(client, game["id"], game["name"])
                if found:
                    return found
        return None

    async def first_result():
        if not results:
            return None
        return await _with_cover(client, results[0]["id"], results[0]["name"])

    return await first_success([known_id, close_match, first_result], label=f"seed_game:{name}")


async def random_games(client: SteamGridDBClient, count: int, rng: random.Random) -> list[dict]:
    games: list[dict] = []
    used_ids: set[int] = set()

    for name in rng.sample(CLASSIC_GAMES, len(CLASSIC_GAMES)):
        if len(games) >= count:
            break
        game = await find_game(client, name)
        if game and game["id"] not in used_ids:
            games.append(game)
            used_ids.add(game["id"])

    for term in GENERIC_SEARCH_TERMS:
        if len(games) >= count:
            break
        for result in await client.search(term):
            if len(games) >= count:
                break
            if result["id"] in used_ids:
                continue
            game = await _with_cover(client, result["id"], result.get("name", ""))
            if game:
                games.append(game)
                used_ids.add(game["id"])

    return games[:count]


async def _username_taken(db: AsyncSession, username: str) -> bool:
    result = await db.execute(select(Profile.id).where(Profile.username == username))
    return result.scalar_one_or_none() is not None


async def pick_username(db: AsyncSession, rng: random.Random, preferred: Optional[list[str]] = None) -> str:
    """A free name from the preferred list when one is left, else a generated one."""
    preferred = [u.lower() for u in (preferred or PREFERRED_USERNAMES)]
    taken = await db.execute(select(Profile.username).where(Profile.username.in_(preferred)))
    taken_names = {u.lower() for u in taken.scalars().all()}
    available = [u for u in preferred if u not in taken_names]
    if available:
        return rng.choice(available)

    for _ in range(MAX_USERNAME_ATTEMPTS):
        username = generate_username(rng)
        if not await _username_taken(db, username):
            return username
    raise HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail="Failed to generate unique username after multiple attempts",
    )


async def _profile_image(client: SteamGridDBClient, game_id: int, user_id: int, kind: str, rng: random.Random) -> Optional[str]:
    hero = await client.get_hero(game_id)
    if not hero or not hero.get("url"):
        return None
    raw = await image_service.download_image(hero["url"])
    if raw is None:
        return hero["url"]
    try:
        data = image_service.crop_avatar(raw, rng) if kind == "avatar" else image_service.crop_banner(raw, rng)
        return image_service.store_media(user_id, kind, data)
    except (OSError, ValueError) as e:
        logger.warning("seed_image_failed", user_id=user_id, kind=kind, error=str(e))
        return hero["url"]


async def seed_user(
    db: AsyncSession,
    client: SteamGridDBClient,
    rng: random.Random,
    preferred: Optional[list[str]] = None,
) -> tuple[Profile, list[dict]]:
    username = await pick_username(db, rng, preferred)
    games = await random_games(client, rng.randint(*GAMES_PER_USER), rng)

    profile = Profile(
        email=f"{re.sub(r'[^a-z0-9]', '', username.lower())}@{settings.SEED_EMAIL_DOMAIN}",
        username=username,
        display_name=display_name_for(username, rng),
        bio=rng.choice(BIOS),
        hashed_password=hash_password(f"Seed{secrets.token_urlsafe(12)}!"),
        plan_tier="free",
        is_seeded=True,
        preferred_platform=rng.choice(("pc", "pc", "ps", "xbox")),
    )
    db.add(profile)
    await db.flush()

    for game in games:
        db.add(UserGame(user_id=profile.id, game_id=str(game["id"]), game_name=game["name"]))

    if games:
        profile.avatar_url = await _profile_image(client, rng.choice(games)["id"], profile.id, "avatar", rng)
        profile.banner_url = await _profile_image(client, rng.choice(games)["id"], profile.id, "banner", rng)
    await db.flush()
    await db.refresh(profile)

    logger.info("seed_user_created", user_id=profile.id, username=username, games=len(games))
    return profile, games


async def seed_users(
    db: AsyncSession,
    client: SteamGridDBClient,
    count: int,
    usernames: Optional[list[str]] = None,
    rng: Optional[random.Random] = None,
) -> tuple[list[tuple[Profile, list[dict]]], list[str]]:
    rng = rng or random.Random()
    created, errors = [], []
    for _ in range(count):
        try:
            created.append(await seed_user(db, client, rng, usernames or None))
        except HTTPException as e:
            errors.append(str(e.detail))
            logger.warning("seed_user_failed", error=str(e.detail))
    return created, errors


async def list_seeded(db: AsyncSession) -> list[Profile]:
    result = await db.execute(
        select(Profile).where(Profile.is_seeded.is_(True)).order_by(Profile.created_at.desc(), Profile.id.desc())
    )
    return list(result.scalars().all())


async def seeded_games(db: AsyncSession, user_ids: list[int]) -> dict[int, list[str]]:
    games = {uid: [] for uid in user_ids}
    if not user_ids:
        return games
    result = await db.execute(select(UserGame.user_id, UserGame.game_name).where(UserGame.user_id.in_(user_ids)))
    for user_id, game_name in result.all():
        games[user_id].append(game_name)
    return games


async def _get_seeded(db: AsyncSession, user_id: int) -> Profile:
    result = await db.execute(select(Profile).where(Profile.id == user_id, Profile.is_seeded.is_(True)))
    profile = result.scalar_one_or_none()
    if not profile:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Seeded user not found",
        )
    return profile


async def delete_seeded(db: AsyncSession, user_id: int) -> None:
    profile = await _get_seeded(db, user_id)
    await db.execute(delete(UserGame).where(UserGame.user_id == user_id))
    await db.execute(delete(Follow).where(or_(Follow.follower_id == user_id, Follow.following_id == user_id)))
    await db.delete(profile)
    await db.flush()
    removed = image_service.remove_media(user_id)
    logger.info("seed_user_deleted", user_id=user_id, media_removed=removed)


async def seed_follows(db: AsyncSession, user_id: int, rng: Optional[random.Random] = None) -> int:
    """
    Random follow graph between one seeded user and the others:
    50% user follows other, 30% other follows user, 20% mutual.
    """
    rng = rng or random.Random()
    result = await db.execute(select(Profile).where(Profile.id == user_id))
    profile = result.scalar_one_or_none()
    if not profile:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="User not found",
        )
    if not profile.is_seeded:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Only seeded users can have follows generated",
        )

    others = await db.execute(select(Profile.id).where(Profile.is_seeded.is_(True), Profile.id != user_id))
    other_ids = list(others.scalars().all())
    if not other_ids:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="No other seeded users found to create follows with",
        )

    existing = await db.execute(
        select(Follow.follower_id, Follow.following_id).where(
            or_(Follow.follower_id == user_id, Follow.following_id == user_id)
        )
    )
    pairs = {(a, b) for a, b in existing.all()}

    target = min(rng.randint(*FOLLOWS_PER_USER), len(other_ids))
    created = 0
    for other_id in rng.sample(other_ids, len(other_ids)):
        if created >= target:
            break
        roll = rng.random()
        if roll < 0.5:
            wanted = [(user_id, other_id)]
        elif roll < 0.8:
            wanted = [(other_id, user_id)]
        else:
            wanted = [(user_id, other_id), (other_id, user_id)]
        wanted = [pair for pair in wanted if pair not in pairs]
        for follower_id, following_id in wanted:
            db.add(Follow(follower_id=follower_id, following_id=following_id))
            pairs.add((follower_id, following_id))
            created += 1
    await db.flush()

    logger.info("seed_follows_created", user_id=user_id, created=created)
    return created
