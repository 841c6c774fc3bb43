from datetime import datetime, timedelta

import httpx
import pytest
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from pinauth.api.deps import get_pin_service
from pinauth.core.security import PinHasher
from pinauth.db.session import Base, get_db
from pinauth.main import app
from pinauth.services.lockout import LockoutPolicy
from pinauth.services.pin_service import PinService
from pinauth.services.rate_limiter import RateLimiter
from pinauth.services.sessions import SessionStore

ADMIN_KEY = "admin-secret"


class FakeClock:
    def __init__(self, start: datetime = datetime(2024, 5, 1, 12, 0, 0)):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock():
    return FakeClock()


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
    return sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def service(clock):
    return PinService(
        sessions=SessionStore(clock=clock),
        limiter=RateLimiter(clock=clock),
        hasher=PinHasher("test-pepper"),
        policy=LockoutPolicy(),
        admin_key=ADMIN_KEY,
        clock=clock,
    )


@pytest.fixture
async def client(service, session_factory):
    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_pin_service] = lambda: service
    app.dependency_overrides[get_db] = override_get_db
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()
