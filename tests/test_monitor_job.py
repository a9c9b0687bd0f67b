"""Tests for the scheduled check-in monitor job."""

from datetime import timedelta

import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from conftest import FakeChannels
from imfine.jobs import checkin_monitor
from imfine.models import Base, Contact, ContactChannel, ContactStatus, Subject, SubjectState, utcnow


@pytest.fixture
async def database_url(tmp_path):
    url = f"sqlite+aiosqlite:///{tmp_path / 'monitor.db'}"
    engine = create_async_engine(url)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield url
    await engine.dispose()


@pytest.fixture
def alerts(monkeypatch):
    sent: list[dict] = []

    async def fake_send_alert(title, message, severity="error", details=None):
        sent.append({"title": title, "severity": severity, "details": details})

    monkeypatch.setattr(checkin_monitor, "send_alert", fake_send_alert)
    return sent


async def seed(database_url: str, **subject_values) -> None:
    engine = create_async_engine(database_url)
    async with async_sessionmaker(engine)() as session:
        subject = Subject(auth_user_id="user-1", email="maya@example.com", display_name="Maya", **subject_values)
        session.add(subject)
        await session.flush()
        session.add(Contact(
            owner_id=subject.id,
            name="Ana",
            channel=ContactChannel.EMAIL,
            destination="ana@example.com",
            status=ContactStatus.CONFIRMED,
        ))
        await session.commit()
    await engine.dispose()


async def state_of(database_url: str) -> SubjectState:
    engine = create_async_engine(database_url)
    async with async_sessionmaker(engine)() as session:
        state = (await session.execute(select(Subject.state))).scalar_one()
    await engine.dispose()
    return state


async def test_job_escalates_overdue_subject(database_url, alerts):
    channels = FakeChannels()
    await seed(
        database_url,
        state=SubjectState.GRACE,
        checkin_interval_minutes=60,
        grace_period_minutes=15,
        last_confirmed_at=utcnow() - timedelta(hours=3),
    )

    results = await checkin_monitor.run_monitor_job(database_url, channels=channels.registry)

    assert results["scanned"] == 1
    assert results["to_escalated"] == 1
    assert results["errors"] == []
    assert results["completed_at"] is not None
    assert channels.email.destinations == ["ana@example.com"]
    assert await state_of(database_url) == SubjectState.ESCALATED
    assert alerts == []


async def test_job_with_nothing_due(database_url, alerts):
    await seed(
        database_url,
        state=SubjectState.ACTIVE,
        last_confirmed_at=utcnow(),
    )

    results = await checkin_monitor.run_monitor_job(database_url, channels=FakeChannels().registry)

    assert results["to_grace"] == 0
    assert results["to_escalated"] == 0
    assert await state_of(database_url) == SubjectState.ACTIVE


async def test_failed_deliveries_are_not_job_failures(database_url, alerts):
    channels = FakeChannels()
    channels.email.fail_with = "HTTP 503"
    await seed(
        database_url,
        state=SubjectState.GRACE,
        checkin_interval_minutes=60,
        grace_period_minutes=15,
        last_confirmed_at=utcnow() - timedelta(hours=3),
    )

    results = await checkin_monitor.run_monitor_job(database_url, channels=channels.registry)

    assert results["to_escalated"] == 1
    assert results["dispatch_failures"] == 0
    assert alerts == []


async def test_crash_sends_critical_alert(tmp_path, alerts):
    # No tables: the scan query itself fails
    url = f"sqlite+aiosqlite:///{tmp_path / 'empty.db'}"

    with pytest.raises(Exception):
        await checkin_monitor.run_monitor_job(url, channels=FakeChannels().registry)

    assert [a["severity"] for a in alerts] == ["critical"]
