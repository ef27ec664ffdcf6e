import asyncio
import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("EMAIL_HOST", "")
os.environ.setdefault("SCHEDULER_LOCK_FILE", "/tmp/taskhub_test_scheduler.lock")

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine, AsyncSession
from sqlalchemy.pool import StaticPool

from taskhub.database import Base
from taskhub.dependencies import get_db, get_event_bus
from taskhub.main import app
from taskhub.models import audit, email, project, tasks, user, workspace  # noqa: F401 register tables
from taskhub.models.user import User
from taskhub.services import email_worker
from taskhub.services.events import EventBus
from taskhub.utils.security import hash_password


@pytest.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine, monkeypatch):
    factory = async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)
    monkeypatch.setattr(email_worker, "session_factory", factory)
    monkeypatch.setattr(email_worker, "email_queue", asyncio.Queue())
    return factory


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def bus():
    return EventBus()


@pytest.fixture
def make_user(db):
    async def _make(name: str, email: str, password: str | None = "secret123") -> User:
        u = User(
            name=name,
            email=email,
            hashed_password=hash_password(password) if password else None,
        )
        db.add(u)
        await db.commit()
        return u
    return _make


@pytest.fixture
async def client(session_factory, bus):
    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_event_bus] = lambda: bus
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()
