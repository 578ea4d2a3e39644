"""Pytest configuration and shared fixtures.

Fixtures are organized by category:
    - Time: a controllable clock shared by every component
    - Database: an in-memory SQLite engine with the schema created
    - Transports: recording channel senders and address data
    - Engine: a fully wired ServiceContext and an HTTP client for the API

Everything runs without external infrastructure: no Redis, no gateway and
no background poll loop. Tests drive the poll loop by calling
``process_due`` / ``process_due_retries`` / ``worker.run_once`` directly.
"""

from __future__ import annotations

import os
from collections.abc import AsyncGenerator
from datetime import timedelta
from typing import TYPE_CHECKING

import pytest
from httpx import ASGITransport, AsyncClient

from clinic_notifications.app.context import GATEWAY_CHANNELS, ServiceContext
from clinic_notifications.core.database import Database
from clinic_notifications.core.settings import DatabaseSettings, NotificationSettings, RedisSettings
from clinic_notifications.features.notifications import (
    Channel,
    InMemorySessionDirectory,
    SessionInfo,
    StaticAddressBook,
)
from tests.utils import PARENT, SESSION_PARAMS, THERAPIST, FakeClock, RecordingSender

if TYPE_CHECKING:
    from fastapi import FastAPI

# Ensure tests run without external infrastructure
os.environ.setdefault("REDIS_URL", "")
os.environ.setdefault("NOTIFY_GATEWAY_URL", "")
os.environ.setdefault("NOTIFY_SCHEDULER_ENABLED", "false")


# ============================================================================
# Time Fixtures
# ============================================================================


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


# ============================================================================
# Database Fixtures
# ============================================================================


@pytest.fixture
async def db() -> AsyncGenerator[Database]:
    """In-memory SQLite database with every table created."""
    database = Database.from_settings(DatabaseSettings(url="sqlite+aiosqlite:///:memory:"))
    await database.create_all()
    yield database
    await database.dispose()


# ============================================================================
# Transport Fixtures
# ============================================================================


@pytest.fixture
def sender() -> RecordingSender:
    """One recording sender shared by sms, push, email and whatsapp."""
    return RecordingSender()


@pytest.fixture
def address_book() -> StaticAddressBook:
    addresses: dict[str, dict[Channel, str]] = {}
    for user_id, phone in (("parent-1", "+966500000001"), ("therapist-1", "+966500000002")):
        addresses[user_id] = {
            Channel.SMS: phone,
            Channel.WHATSAPP: phone,
            Channel.PUSH: f"device-{user_id}",
            Channel.EMAIL: f"{user_id}@example.com",
        }
    return StaticAddressBook(addresses)


@pytest.fixture
def session_info(clock: FakeClock) -> SessionInfo:
    """A session two days from now with a parent and a therapist."""
    return SessionInfo(
        session_id="session-1",
        starts_at=clock() + timedelta(hours=48),
        stakeholders=(PARENT, THERAPIST),
        params=dict(SESSION_PARAMS),
    )


@pytest.fixture
def directory(session_info: SessionInfo) -> InMemorySessionDirectory:
    return InMemorySessionDirectory({session_info.session_id: session_info})


# ============================================================================
# Engine Fixtures
# ============================================================================


@pytest.fixture
def notification_settings() -> NotificationSettings:
    return NotificationSettings(
        worker_id="test-worker",
        default_max_retries=3,
        retry_base_delay=1.0,
        retry_max_delay=60.0,
        scheduler_enabled=False,
        gateway_url=None,
    )


@pytest.fixture
async def context(
    db: Database,
    clock: FakeClock,
    sender: RecordingSender,
    directory: InMemorySessionDirectory,
    address_book: StaticAddressBook,
    notification_settings: NotificationSettings,
) -> AsyncGenerator[ServiceContext]:
    """Fully wired engine on the in-memory database, poll loop stopped."""
    ctx = ServiceContext(
        directory=directory,
        address_book=address_book,
        senders=dict.fromkeys(GATEWAY_CHANNELS, sender),
        database=db,
        notification_settings=notification_settings,
        db_settings=DatabaseSettings(url="sqlite+aiosqlite:///:memory:"),
        redis_settings=RedisSettings(url=None),
        clock=clock,
    )
    await ctx.start(run_worker=False)
    yield ctx
    await ctx.stop()


@pytest.fixture
def app(context: ServiceContext) -> FastAPI:
    """Application bound to the test context.

    ASGITransport does not run the lifespan, so the context is attached to
    ``app.state`` directly.
    """
    from clinic_notifications.app.main import create_app

    application = create_app(lambda: context, configure_logs=False)
    application.state.context = context
    return application


@pytest.fixture
async def client(app: FastAPI) -> AsyncGenerator[AsyncClient]:
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
