import os
import sys
import asyncio

import fakeredis.aioredis
import jwt
import pytest

sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

# A sufficiently long JWT secret for tests
TEST_JWT_SECRET = "x" * 32
os.environ.setdefault("JWT_SECRET", TEST_JWT_SECRET)
# Honour any externally provided DATABASE_URL (e.g. CI may set a file-backed DB)
# but fall back to an in-memory SQLite database so local runs remain isolated.
DEFAULT_DB_URL = os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("DISABLE_RATE_LIMITS", "true")
os.environ.setdefault("ALLOWED_ORIGINS", "http://testserver")

# Register every model on the declarative Base before create_all runs.
from livescore import db, models  # noqa: F401,E402
from livescore.routers import streams  # noqa: E402
from livescore.services import live_sessions  # noqa: E402


@pytest.fixture(scope="session")
def session_loop():
    """Single event loop for all sync fixtures that need to run async DB code."""

    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    yield loop
    loop.close()


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture(autouse=True)
def jwt_secret(monkeypatch):
    """Ensure a strong JWT secret is present for all tests."""
    monkeypatch.setenv("JWT_SECRET", TEST_JWT_SECRET)
    yield


@pytest.fixture(autouse=True, scope="session")
def ensure_database(session_loop):
    """Ensure the test database starts clean and honours DATABASE_URL."""

    mp = pytest.MonkeyPatch()
    desired_url = os.getenv("DATABASE_URL") or DEFAULT_DB_URL
    mp.setenv("DATABASE_URL", desired_url)

    if desired_url.startswith("sqlite") and ":memory:" not in desired_url:
        path = desired_url.split("///")[-1]
        if os.path.exists(path):
            os.remove(path)

    db.engine = None
    db.AsyncSessionLocal = None
    yield
    if db.engine is not None:
        session_loop.run_until_complete(db.engine.dispose())
        db.engine = None

    if db.AsyncSessionLocal is not None:
        db.AsyncSessionLocal = None
    mp.undo()


async def _reset_schema(engine) -> None:
    async with engine.begin() as conn:
        await conn.run_sync(db.Base.metadata.drop_all)
        await conn.run_sync(db.Base.metadata.create_all)


@pytest.fixture(autouse=True)
def reset_schema(request, session_loop):
    """Reset the schema before each test unless preserved via marker."""

    if request.node.get_closest_marker("preserve_schema"):
        yield
        return

    engine = db.engine or db.get_engine()
    session_loop.run_until_complete(_reset_schema(engine))
    yield


@pytest.fixture(autouse=True)
def reset_live_sessions():
    """Live sessions outlive requests; start every test without any."""
    live_sessions.clear()
    yield
    live_sessions.clear()


@pytest.fixture(autouse=True)
def fake_redis(monkeypatch):
    client = fakeredis.aioredis.FakeRedis(decode_responses=True)
    monkeypatch.setattr(streams, "redis_client", client)
    return client


def make_token(sub: str, is_admin: bool = False) -> str:
    return jwt.encode(
        {"sub": sub, "is_admin": is_admin}, TEST_JWT_SECRET, algorithm="HS256"
    )


@pytest.fixture
def auth_headers():
    def _headers(sub: str = "ref-1", is_admin: bool = False) -> dict[str, str]:
        return {"Authorization": f"Bearer {make_token(sub, is_admin)}"}

    return _headers
