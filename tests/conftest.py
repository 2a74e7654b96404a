"""Shared pytest fixtures for Drift Engine tests.

Every test gets its own SQLite file (through aiosqlite) with the full schema,
a fresh in-process event bus and helpers for creating profiles.  SQLite
serialises writers on a database-wide lock; concurrent tests lean on the
busy timeout and on ``run_transaction`` retrying "database is locked".
"""
import itertools
import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("DB_RETRY_ATTEMPTS", "12")
os.environ.setdefault("DB_RETRY_MAX_WAIT", "0.2")
os.environ.setdefault("LOG_LEVEL", "WARNING")

import httpx
import pytest
import pytest_asyncio
from sqlalchemy import event
from sqlalchemy.ext.asyncio import create_async_engine

import drift_engine.models  # noqa: F401  (registers every table)
from drift_engine.database import (
    Base,
    build_session_factory,
    get_session_factory,
    register_sqlite_math,
    session_scope,
)
from drift_engine.models.enums import LookingFor
from drift_engine.services.profile_service import ProfileService
from drift_engine.services.realtime import InMemoryEventBus, set_event_bus


@pytest_asyncio.fixture
async def engine(tmp_path):
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'drift.db'}",
        connect_args={"timeout": 30},
    )
    register_sqlite_math(engine)

    @event.listens_for(engine.sync_engine, "connect")
    def _enable_foreign_keys(dbapi_connection, _record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture(autouse=True)
def event_bus():
    """A fresh in-process bus per test, installed as the process-wide bus."""
    bus = InMemoryEventBus(max_queue=64, dedupe_window=128)
    set_event_bus(bus)
    yield bus
    set_event_bus(None)


@pytest.fixture
def make_profile(session_factory):
    """Return ``async (name=None, **fields) -> user_id``.

    Defaults: age 30, looking for both, onboarding done, no coordinates.
    """
    service = ProfileService()
    counter = itertools.count()

    async def _make(name=None, **fields):
        n = next(counter)
        fields.setdefault("age", 30)
        fields.setdefault("looking_for", LookingFor.BOTH)
        async with session_scope(session_factory) as db:
            profile, _ = await service.create_profile(
                db,
                email=f"user{n}@drift.test",
                display_name=name or f"User {n}",
                **fields,
            )
            return profile.user_id

    return _make


@pytest.fixture
def run(session_factory):
    """Return ``async (fn, *args, **kwargs)`` running ``fn(db, ...)`` in its
    own committed unit of work, retried on transient store failures."""
    from drift_engine.database import run_transaction

    async def _run(fn, *args, **kwargs):
        return await run_transaction(session_factory, lambda db: fn(db, *args, **kwargs))

    return _run


@pytest_asyncio.fixture
async def client(session_factory):
    from drift_engine.main import app

    app.dependency_overrides[get_session_factory] = lambda: session_factory
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c
    app.dependency_overrides.clear()
