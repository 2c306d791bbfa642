"""
Test fixtures for the Hapo API test suite.

This module provides shared fixtures used across all test files:

  - db_engine / db_session: Fresh in-memory SQLite database for each test
  - sender: Records verification codes instead of delivering them
  - client: Async HTTP test client (unauthenticated)
  - make_parent: Signs up, verifies and signs in a parent via the real endpoints
  - parent: A signed-in parent
  - make_child / child: A child account created by that parent, signed in
  - live_client / live_family: a synchronous TestClient and a signed-in family
    for the WebSocket endpoints

Key design decisions:
  - In-memory SQLite (sqlite+aiosqlite://) is used for speed and isolation.
    Each test gets a completely fresh database; no state leaks between tests.
  - We override get_db and get_sender so the application code runs exactly as
    in production, but against the test database and a recording sender.
  - Accounts are created through the HTTP flow (signup -> verify -> login ->
    MFA), so every authenticated test also exercises the sign-in path.
  - Each authenticated fixture returns its own headers instead of mutating
    the shared client, so parent and child can act in the same test.
  - Starlette's TestClient runs the app on its own event loop in a worker
    thread, so live_client gets a file-backed database whose engine is only
    ever used from that loop.
"""

import base64
import os

# Settings are read at import time; these must be set before hapo is imported.
os.environ.setdefault("SECRET_KEY", "test-secret-key-not-for-production")
os.environ.setdefault("CODE_ENCRYPTION_KEY", base64.urlsafe_b64encode(b"0" * 32).decode())
os.environ.setdefault("RETRY_BASE_DELAY_SECONDS", "0")
os.environ.setdefault("BALANCE_POLL_SECONDS", "0.01")
# Lifespan startup (TestClient only) creates tables here; keep it off disk
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from httpx import AsyncClient, ASGITransport  # noqa: E402
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker  # noqa: E402

from hapo.database import Base, get_db  # noqa: E402
from hapo.delivery import get_sender  # noqa: E402
from hapo.exceptions import DeliveryFailedError, HapoError  # noqa: E402
from hapo.main import app  # noqa: E402


# In-memory SQLite for fast, isolated tests
TEST_DATABASE_URL = "sqlite+aiosqlite://"

PARENT_PASSWORD = "SecurePass123!"
CHILD_PASSWORD = "KidPass123!"


class RecordingSender:
    """
    Verification sender that keeps every code it is asked to deliver.

    Set ``failures`` to make the next N deliveries fail with
    DeliveryFailedError, as a flaky mail server would.
    """

    def __init__(self):
        self.sent: list[tuple[str, str]] = []
        self.failures = 0
        self.attempts = 0

    async def deliver(self, destination: str, code: str) -> None:
        self.attempts += 1
        if self.failures > 0:
            self.failures -= 1
            raise DeliveryFailedError(destination)
        self.sent.append((destination, code))

    def last_code(self, destination: str) -> str:
        codes = [code for dest, code in self.sent if dest == destination]
        assert codes, f"No code was sent to {destination}"
        return codes[-1]


@pytest_asyncio.fixture
async def db_engine():
    """Create a fresh async engine with all tables for each test."""
    engine = create_async_engine(TEST_DATABASE_URL)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(db_engine):
    """Provide an async session bound to the test engine."""
    async_session = async_sessionmaker(
        db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )
    async with async_session() as session:
        yield session


def _unit_of_work(engine):
    """A get_db replacement bound to ``engine`` with production's commit rules."""
    async_session = async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )

    async def override_get_db():
        async with async_session() as session:
            try:
                yield session
                await session.commit()
            except HapoError:
                await session.commit()
                raise
            except Exception:
                await session.rollback()
                raise

    return override_get_db


@pytest_asyncio.fixture
async def sender():
    return RecordingSender()


@pytest_asyncio.fixture
async def client(db_engine, sender):
    """
    Async HTTP test client with the test database and sender injected.

    The get_db override keeps production's unit-of-work rules: commit on
    success and on domain errors, roll back on anything else.
    """
    app.dependency_overrides[get_db] = _unit_of_work(db_engine)
    app.dependency_overrides[get_sender] = lambda: sender

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac

    app.dependency_overrides.clear()


def bearer(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


@pytest_asyncio.fixture
async def make_parent(client, sender):
    """
    Factory: register, verify and sign in a parent through the real endpoints.

    Returns a dict with the account id, both tokens and ready-made headers.
    """

    async def _make(email: str = "parent@example.com", password: str = PARENT_PASSWORD) -> dict:
        response = await client.post(
            "/auth/signup",
            json={
                "email": email,
                "password": password,
                "first_name": "Pat",
                "last_name": "Parent",
            },
        )
        assert response.status_code == 202, f"Signup failed: {response.text}"

        response = await client.post(
            "/auth/verify-email",
            json={"email": email, "code": sender.last_code(email)},
        )
        assert response.status_code == 200, f"Verification failed: {response.text}"

        response = await client.post(
            "/auth/login", json={"identifier": email, "password": password},
        )
        assert response.status_code == 200
        challenge = response.json()
        assert challenge["status"] == "requires_mfa"

        response = await client.post(
            "/auth/mfa/verify",
            json={"challenge_id": challenge["challenge_id"], "code": sender.last_code(email)},
        )
        assert response.status_code == 200, f"MFA failed: {response.text}"
        session = response.json()
        return {
            "id": session["account_id"],
            "email": email,
            "access_token": session["access_token"],
            "refresh_token": session["refresh_token"],
            "headers": bearer(session["access_token"]),
        }

    return _make


@pytest_asyncio.fixture
async def parent(make_parent):
    return await make_parent()


@pytest_asyncio.fixture
async def make_child(client):
    """Factory: create a child under ``owner`` and sign the child in."""

    async def _make(owner: dict, username: str = "kiddo", **limits) -> dict:
        response = await client.post(
            "/children",
            json={
                "first_name": "Kim",
                "last_name": "Kid",
                "username": username,
                "password": CHILD_PASSWORD,
                **limits,
            },
            headers=owner["headers"],
        )
        assert response.status_code == 201, f"Child creation failed: {response.text}"
        child_id = response.json()["id"]

        response = await client.post(
            "/auth/login", json={"identifier": username, "password": CHILD_PASSWORD},
        )
        assert response.status_code == 200
        session = response.json()
        assert session["status"] == "authenticated"
        return {
            "id": child_id,
            "username": username,
            "access_token": session["access_token"],
            "refresh_token": session["refresh_token"],
            "headers": bearer(session["access_token"]),
        }

    return _make


@pytest_asyncio.fixture
async def child(make_child, parent):
    return await make_child(parent)


@pytest.fixture
def live_sender():
    return RecordingSender()


@pytest.fixture
def live_client(tmp_path, live_sender):
    """
    Synchronous TestClient for the WebSocket endpoints.

    The app, the database engine and every request share the TestClient's
    event loop for the whole test.
    """
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'live.db'}")

    async def create_tables():
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    app.dependency_overrides[get_db] = _unit_of_work(engine)
    app.dependency_overrides[get_sender] = lambda: live_sender

    with TestClient(app) as tc:
        tc.portal.call(create_tables)
        yield tc
        tc.portal.call(engine.dispose)

    app.dependency_overrides.clear()


@pytest.fixture
def live_family(live_client, live_sender):
    """A verified, signed-in parent and one signed-in child, created over HTTP."""
    email = "parent@example.com"
    response = live_client.post(
        "/auth/signup",
        json={"email": email, "password": PARENT_PASSWORD, "first_name": "Pat", "last_name": "Parent"},
    )
    assert response.status_code == 202, f"Signup failed: {response.text}"
    live_client.post("/auth/verify-email", json={"email": email, "code": live_sender.last_code(email)})

    challenge = live_client.post(
        "/auth/login", json={"identifier": email, "password": PARENT_PASSWORD},
    ).json()
    session = live_client.post(
        "/auth/mfa/verify",
        json={"challenge_id": challenge["challenge_id"], "code": live_sender.last_code(email)},
    ).json()
    parent = {
        "id": session["account_id"],
        "access_token": session["access_token"],
        "headers": bearer(session["access_token"]),
    }

    response = live_client.post(
        "/children",
        json={"first_name": "Kim", "last_name": "Kid", "username": "kiddo", "password": CHILD_PASSWORD},
        headers=parent["headers"],
    )
    assert response.status_code == 201, f"Child creation failed: {response.text}"
    child_id = response.json()["id"]
    session = live_client.post(
        "/auth/login", json={"identifier": "kiddo", "password": CHILD_PASSWORD},
    ).json()
    child = {
        "id": child_id,
        "access_token": session["access_token"],
        "headers": bearer(session["access_token"]),
    }
    return {"parent": parent, "child": child}
