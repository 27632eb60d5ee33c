"""Shared test fixtures."""

import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")

from datetime import datetime, timedelta, timezone  # noqa: E402

import pytest  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from payee_rules.api.deps import get_db, get_rule_cache  # noqa: E402
from payee_rules.main import app  # noqa: E402
from payee_rules.models import Base  # noqa: E402
from payee_rules.services.rule_cache import InMemoryRuleCache  # noqa: E402
from payee_rules.services.rule_service import RuleService  # noqa: E402

TENANT_ID = 1
OTHER_TENANT_ID = 2


class TickingClock:
    """Deterministic clock: every call is one second after the previous one."""

    def __init__(self, start: datetime | None = None):
        self.current = start or datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        self.current += timedelta(seconds=1)
        return self.current


@pytest.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, expire_on_commit=False)


@pytest.fixture
async def file_session_factory(tmp_path):
    """Sessions on a file-backed database, each with its own connection."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'rules.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, expire_on_commit=False)
    await engine.dispose()


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def rule_cache():
    return InMemoryRuleCache()


@pytest.fixture
def clock():
    return TickingClock()


@pytest.fixture
def service(db, rule_cache, clock):
    return RuleService(db, cache=rule_cache, clock=clock)


@pytest.fixture
async def client(session_factory, rule_cache):
    """Async test client for the FastAPI app, backed by the test database."""

    async def override_get_db():
        async with session_factory() as session:
            yield session
            await session.commit()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_rule_cache] = lambda: rule_cache
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac
    app.dependency_overrides.clear()
