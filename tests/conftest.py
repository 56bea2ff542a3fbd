"""Shared fixtures for famsync backend tests.

Uses SQLite (aiosqlite) by default, no PostgreSQL required.
Set TEST_DATABASE_URL to override (e.g. for CI with real PostgreSQL).
"""

import os
import uuid

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

TEST_DATABASE_URL = os.environ.get("TEST_DATABASE_URL", "sqlite+aiosqlite://")

# Ensure settings can be loaded without .env
os.environ.setdefault("SECRET_KEY", "test-secret-key-for-unit-tests")

from famsync.database import Base  # noqa: E402

# ---------------------------------------------------------------------------
# Engine: SQLite in-memory with StaticPool (shared across connections)
# ---------------------------------------------------------------------------

_engine_kwargs = {}
if TEST_DATABASE_URL.startswith("sqlite"):
    _engine_kwargs = {
        "connect_args": {"check_same_thread": False},
        "poolclass": StaticPool,
    }

_engine = create_async_engine(TEST_DATABASE_URL, echo=False, **_engine_kwargs)
_TestSession = async_sessionmaker(
    bind=_engine, class_=AsyncSession, expire_on_commit=False,
)


class FakeWebSocket:
    """Minimal fake WebSocket that records sent frames."""

    def __init__(self):
        self.sent: list[dict] = []
        self.closed = False
        self.close_code: int | None = None

    async def send_json(self, data: dict):
        if self.closed:
            raise RuntimeError("WebSocket closed")
        self.sent.append(data)

    async def close(self, code: int = 1000):
        self.closed = True
        self.close_code = code

    def events(self) -> list[str]:
        return [frame["event"] for frame in self.sent]

    def frames(self, event: str) -> list[dict]:
        return [frame["data"] for frame in self.sent if frame["event"] == event]


# ---------------------------------------------------------------------------
# Session-scoped: create / drop tables
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture(scope="session", autouse=True)
async def _setup_tables():
    import famsync.models  # noqa: F401 (populates Base.metadata)

    async with _engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with _engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await _engine.dispose()


# ---------------------------------------------------------------------------
# Reset rate-limiter counters before every test
# ---------------------------------------------------------------------------

@pytest.fixture(autouse=True)
def _reset_rate_limits():
    """Clear in-memory rate-limit counters so tests never block each other."""
    from famsync.core.rate_limit import limiter

    limiter.reset()


# ---------------------------------------------------------------------------
# Per-test session
# ---------------------------------------------------------------------------

@pytest.fixture()
def session_factory():
    return _TestSession


@pytest_asyncio.fixture()
async def db_session():
    async with _TestSession() as session:
        yield session
        await session.rollback()


# ---------------------------------------------------------------------------
# Realtime: an isolated manager + notifier per test
# ---------------------------------------------------------------------------

@pytest.fixture()
def manager():
    from famsync.services.connection_manager import ConnectionManager

    return ConnectionManager()


@pytest.fixture()
def notifier(manager):
    from famsync.services.notifier import RealtimeNotifier

    return RealtimeNotifier(manager, _TestSession)


@pytest.fixture()
def service(db_session, notifier):
    from famsync.services.family_service import FamilyService

    return FamilyService(db_session, notifier)


# ---------------------------------------------------------------------------
# HTTP test client
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture()
async def client(db_session: AsyncSession, notifier):
    from famsync.core.dependencies import get_notifier
    from famsync.database import get_db
    from famsync.main import app

    async def _override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = _override_get_db
    app.dependency_overrides[get_notifier] = lambda: notifier

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture()
async def make_user(db_session: AsyncSession):
    """Factory inserting a login-capable user directly. Returns the User."""
    from famsync.core.security import get_password_hash
    from famsync.models.user import User

    async def _make(name: str = "Test User") -> User:
        suffix = uuid.uuid4().hex[:8]
        user = User(
            email=f"user-{suffix}@test.de",
            name=name,
            password_hash=get_password_hash("testpassword123"),
        )
        db_session.add(user)
        await db_session.commit()
        return user

    return _make


@pytest.fixture()
def register_user(client: AsyncClient):
    """Factory registering a user through the API. Returns a context dict.

    Keys: headers, user_id, email, token
    """
    from famsync.core.security import decode_token

    async def _register(name: str = "Test User") -> dict:
        suffix = uuid.uuid4().hex[:8]
        email = f"user-{suffix}@test.de"
        resp = await client.post("/api/v1/auth/register", json={
            "email": email,
            "password": "testpassword123",
            "name": name,
        })
        assert resp.status_code == 201, resp.text
        token = resp.json()["data"]["access_token"]

        return {
            "headers": {"Authorization": f"Bearer {token}"},
            "user_id": decode_token(token)["sub"],
            "email": email,
            "token": token,
        }

    return _register


@pytest_asyncio.fixture()
async def registered_user(register_user):
    return await register_user("Test Admin")


@pytest_asyncio.fixture()
async def second_user(register_user):
    return await register_user("Second User")


@pytest_asyncio.fixture()
async def family(client: AsyncClient, registered_user: dict):
    """A family created by ``registered_user``. Returns the family payload."""
    resp = await client.post(
        "/api/v1/families",
        headers=registered_user["headers"],
        json={"name": "Smiths", "description": "Test family"},
    )
    assert resp.status_code == 201, resp.text
    return resp.json()["data"]


@pytest.fixture()
def make_ws():
    """Factory for FakeWebSocket instances."""
    return FakeWebSocket
