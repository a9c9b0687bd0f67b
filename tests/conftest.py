"""
Shared fixtures: an in-memory SQLite database, a controllable clock and
in-process channel adapters.
"""

import asyncio
import os
from datetime import datetime, timedelta, timezone

# Settings are read once at import time
os.environ.setdefault("JWT_SECRET", "test-jwt-secret")
os.environ.setdefault("CRON_SECRET", "test-cron-secret")
os.environ.setdefault("ENVIRONMENT", "development")

import pytest
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from imfine.core.errors import ChannelError
from imfine.models import (
    Base,
    Contact,
    ContactChannel,
    ContactStatus,
    Subject,
    SubjectState,
)
from imfine.services import (
    ChannelRegistry,
    CheckinEngine,
    ContactDirectory,
    DeliveryChannel,
    DispatchConfig,
    DispatchEngine,
    LinkingProtocol,
)


T0 = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


# =============================================================================
# DATABASE
# =============================================================================


@pytest.fixture
async def db_engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    # SAVEPOINT support needs the driver's implicit transactions turned off
    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine.sync_engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
async def session(db_engine) -> AsyncSession:
    factory = async_sessionmaker(db_engine, expire_on_commit=False, autoflush=False)
    async with factory() as session:
        yield session


@pytest.fixture
async def other_session(db_engine) -> AsyncSession:
    """A second, independent session on the same database."""
    factory = async_sessionmaker(db_engine, expire_on_commit=False, autoflush=False)
    async with factory() as session:
        yield session


# =============================================================================
# CLOCK
# =============================================================================


class FakeClock:
    """Wall clock that only moves when told to."""

    def __init__(self, now: datetime = T0):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now

    def set(self, value: datetime) -> None:
        self.now = value


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


# =============================================================================
# CHANNELS
# =============================================================================


class FakeChannel(DeliveryChannel):
    """Records every send; can be switched to fail, hang or look unconfigured."""

    def __init__(self, channel: ContactChannel, configured: bool = True):
        super().__init__()
        self.channel = channel
        self.configured = configured
        self.fail_with: str | None = None
        self.hang = False
        self.sent: list[dict] = []

    @property
    def is_configured(self) -> bool:
        return self.configured

    async def _deliver(self, destination, title, body, metadata):
        if self.hang:
            await asyncio.sleep(30)
        if self.fail_with:
            raise ChannelError(self.channel.value, self.fail_with)
        self.sent.append({
            "destination": destination,
            "title": title,
            "body": body,
            "metadata": metadata,
        })
        return f"{self.channel.value.lower()}-{len(self.sent)}"

    @property
    def destinations(self) -> list[str]:
        return [m["destination"] for m in self.sent]


class FakeChannels:
    def __init__(self):
        self.push = FakeChannel(ContactChannel.PUSH)
        self.email = FakeChannel(ContactChannel.EMAIL)
        self.sms = FakeChannel(ContactChannel.SMS)
        self.registry = ChannelRegistry([self.push, self.email, self.sms])

    @property
    def total_sent(self) -> int:
        return len(self.push.sent) + len(self.email.sent) + len(self.sms.sent)


@pytest.fixture
def channels() -> FakeChannels:
    return FakeChannels()


# =============================================================================
# ENGINES
# =============================================================================


@pytest.fixture
def dispatch_config() -> DispatchConfig:
    return DispatchConfig(
        cooldown_minutes=5,
        test_alert_bypasses_cooldown=False,
        channel_timeout_seconds=0.2,
        concurrency=5,
    )


@pytest.fixture
def dispatcher(session, channels, dispatch_config, clock) -> DispatchEngine:
    return DispatchEngine(session, channels.registry, config=dispatch_config, clock=clock)


@pytest.fixture
def checkin(session, dispatcher, clock) -> CheckinEngine:
    return CheckinEngine(session, dispatcher, clock=clock)


@pytest.fixture
def directory(session) -> ContactDirectory:
    return ContactDirectory(session, max_owners_per_destination=3)


@pytest.fixture
def linking(session, dispatcher, directory, clock) -> LinkingProtocol:
    return LinkingProtocol(
        session,
        dispatcher,
        directory=directory,
        invite_base_url="https://fine.test",
        clock=clock,
    )


# =============================================================================
# FACTORIES
# =============================================================================


@pytest.fixture
def make_subject(session):
    counter = {"n": 0}

    async def factory(**overrides) -> Subject:
        counter["n"] += 1
        n = counter["n"]
        values = {
            "auth_user_id": f"user-{n}",
            "email": f"user{n}@example.com",
            "display_name": f"User {n}",
            "state": SubjectState.ONBOARDING,
            "checkin_interval_minutes": 60,
            "grace_period_minutes": 15,
        }
        values.update(overrides)
        subject = Subject(**values)
        session.add(subject)
        await session.commit()
        return subject

    return factory


@pytest.fixture
def make_contact(session):
    async def factory(owner: Subject, **overrides) -> Contact:
        values = {
            "owner_id": owner.id,
            "name": "Contact",
            "channel": ContactChannel.EMAIL,
            "destination": "helper@example.com",
            "status": ContactStatus.CONFIRMED,
        }
        values.update(overrides)
        contact = Contact(**values)
        session.add(contact)
        await session.commit()
        return contact

    return factory


@pytest.fixture
def reload(session):
    """Fresh copy of a row, bypassing the identity map."""

    async def _reload(model, id_):
        return await session.get(model, id_, populate_existing=True)

    return _reload
