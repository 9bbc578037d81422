"""
Pytest fixtures for test database, client, and authentication.

Runs against in-memory SQLite by default (set TEST_DATABASE_URL to point at
a Postgres test database instead). Tables are created and dropped per test
for isolation. Redis and the maintenance scheduler are switched off.
"""

import os
import tempfile

os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("REDIS_ENABLED", "false")
os.environ.setdefault("SCHEDULER_ENABLED", "false")
os.environ.setdefault("STEAMGRIDDB_API_KEY", "test-key")
os.environ.setdefault("MEDIA_ROOT", tempfile.mkdtemp(prefix="apoxer-media-"))
os.environ["DATABASE_URL"] = os.environ.get("TEST_DATABASE_URL", "sqlite+aiosqlite:///:memory:")

import zlib
from datetime import datetime, timezone, timedelta
from io import BytesIO
from typing import AsyncGenerator

import httpx
import pytest_asyncio
from PIL import Image
from httpx import AsyncClient, ASGITransport
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.pool import StaticPool

from apoxer.main import app
from apoxer.db.base import Base
from apoxer.db.session import get_db
from apoxer.core.security import create_access_token, hash_password
from apoxer.models.profile import Profile
from apoxer.integrations.steamgriddb import SteamGridDBClient

TEST_DATABASE_URL = os.environ["DATABASE_URL"]

if TEST_DATABASE_URL.startswith("sqlite"):
    test_engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    # let SQLAlchemy drive BEGIN itself so SAVEPOINTs behave on sqlite
    @event.listens_for(test_engine.sync_engine, "connect")
    def _no_driver_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(test_engine.sync_engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN")

else:
    test_engine = create_async_engine(TEST_DATABASE_URL, echo=False)
TestSessionLocal = async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture(scope="function")
async def db_session() -> AsyncGenerator[AsyncSession, None]:
    """Create tables, yield session, then drop tables for isolation."""
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with TestSessionLocal() as session:
        yield session

    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest_asyncio.fixture(scope="function")
async def client(db_session: AsyncSession) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client that overrides the DB dependency with the test session."""

    async def override_get_db():
        try:
            yield db_session
            await db_session.commit()
        except Exception:
            await db_session.rollback()
            raise

    app.dependency_overrides[get_db] = override_get_db

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


async def make_profile(
    db: AsyncSession,
    username: str,
    plan_tier: str = "free",
    plan_expires_at=None,
    **fields,
) -> Profile:
    """
    Insert a committed profile and detach it, so a rollback inside a request
    never expires the fixture object the test still holds.
    """
    profile = Profile(
        **{
            "email": f"{username}@example.com",
            "username": username,
            "display_name": username.title(),
            "hashed_password": hash_password("testpassword123"),
            "plan_tier": plan_tier,
            "plan_expires_at": plan_expires_at,
            **fields,
        }
    )
    db.add(profile)
    await db.commit()
    await db.refresh(profile)
    db.expunge(profile)
    return profile


def headers_for(profile: Profile) -> dict:
    return {"Authorization": f"Bearer {create_access_token(data={'sub': str(profile.id)})}"}


@pytest_asyncio.fixture
async def test_user(db_session: AsyncSession) -> Profile:
    """Free-tier profile."""
    return await make_profile(db_session, "testuser")


@pytest_asyncio.fixture
async def pro_user(db_session: AsyncSession) -> Profile:
    """Pro profile with thirty days left."""
    return await make_profile(
        db_session,
        "prouser",
        plan_tier="pro",
        plan_expires_at=datetime.now(timezone.utc) + timedelta(days=30),
    )


@pytest_asyncio.fixture
async def founder(db_session: AsyncSession) -> Profile:
    return await make_profile(db_session, "founder", plan_tier="founder")


@pytest_asyncio.fixture
async def auth_headers(test_user: Profile) -> dict:
    """Authorization headers with Bearer token."""
    return headers_for(test_user)


@pytest_asyncio.fixture
async def pro_headers(pro_user: Profile) -> dict:
    return headers_for(pro_user)


@pytest_asyncio.fixture
async def founder_headers(founder: Profile) -> dict:
    return headers_for(founder)


def steamgriddb_handler(request: httpx.Request) -> httpx.Response:
    """Answers every SteamGridDB lookup from a small deterministic catalog."""
    parts = request.url.path.strip("/").split("/")
    kind, key = parts[0], parts[-1]
    if kind == "search":
        base_id = zlib.crc32(key.encode()) % 1_000_000
        data = [
            {"id": base_id + i, "name": key.title() if i == 0 else f"{key.title()} {i + 1}", "verified": i == 0}
            for i in range(12)
        ]
    elif kind == "games":
        data = {"id": int(key), "name": f"Game {key}", "release_date": 1_000_000_000}
    elif kind == "grids":
        data = [
            {"url": f"https://cdn.test/grid/{key}-wide.png", "thumb": None, "width": 920, "height": 430},
            {"url": f"https://cdn.test/grid/{key}.png", "thumb": f"https://cdn.test/grid/{key}-t.png", "width": 600, "height": 900},
        ]
    elif kind == "heroes":
        data = [{"url": f"https://cdn.test/hero/{key}.png", "thumb": f"https://cdn.test/hero/{key}-t.png"}]
    else:
        return httpx.Response(404)
    return httpx.Response(200, json={"success": True, "data": data})


def steamgriddb_client(handler=steamgriddb_handler) -> SteamGridDBClient:
    return SteamGridDBClient(
        api_key="test-key",
        base_url="https://sgdb.test",
        transport=httpx.MockTransport(handler),
    )


def image_bytes(width: int = 1920, height: int = 620, mode: str = "RGB", fmt: str = "PNG") -> bytes:
    """An in-memory image for the cropping code."""
    color = (40, 90, 160, 255)[: len(mode)] if mode in ("RGB", "RGBA") else 128
    output = BytesIO()
    Image.new(mode, (width, height), color).save(output, format=fmt)
    return output.getvalue()
