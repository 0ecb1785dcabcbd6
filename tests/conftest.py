"""
Shared test fixtures.

Uses a file-backed SQLite database (via aiosqlite) so tests run without
Docker / PostgreSQL / Redis.  Every transaction opens with
``BEGIN IMMEDIATE``: concurrent sessions queue on the write lock instead
of failing with SQLITE_BUSY, and SAVEPOINTs behave as on PostgreSQL.
"""

from datetime import timedelta
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from todaride.domain.entities import utc_now
from todaride.domain.enums import RideStatus, UserRole
from todaride.infrastructure.database import Base
from todaride.infrastructure.models import RideModel, UserModel


# ── Engine / sessions ─────────────────────────────────────────────────


@pytest_asyncio.fixture
async def test_engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'test.db'}",
        echo=False,
        connect_args={"timeout": 15},
    )

    @event.listens_for(engine.sync_engine, "connect")
    def _disable_pysqlite_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(test_engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


# ── Sample data ───────────────────────────────────────────────────────


USERS = {
    "maria": dict(first_name="Maria", last_name="Santos", role=UserRole.COMMUTER, phone_number="09170000001"),
    "jose": dict(first_name="Jose", last_name="Reyes", role=UserRole.COMMUTER),
    "ramon": dict(first_name="Ramon", last_name="Dela Cruz", role=UserRole.DRIVER, toda_name="BNBB TODA", phone_number="09180000001"),
    "nestor": dict(first_name="Nestor", last_name="Aquino", role=UserRole.DRIVER, toda_name="BNBB TODA"),
    "carlo": dict(first_name="Carlo", last_name="Mendoza", role=UserRole.DRIVER, toda_name="BPP TODA"),
    "admin": dict(first_name="Site", last_name="Admin", role=UserRole.ADMIN),
    "banned": dict(first_name="Bad", last_name="Actor", role=UserRole.DRIVER, toda_name="BNBB TODA", is_banned=True),
}


@pytest_asyncio.fixture
async def users(session_factory) -> dict[str, str]:
    """Insert the sample users; returns ``{key: user_id}``."""
    async with session_factory() as session:
        models = {
            key: UserModel(id=f"u-{key}", email=f"{key}@example.com", **fields)
            for key, fields in USERS.items()
        }
        session.add_all(models.values())
        await session.commit()
    return {key: f"u-{key}" for key in USERS}


PICKUP = {"name": "Bayan", "latitude": 14.8847, "longitude": 120.8572}
DROPOFF = {"name": "Bagong Nayon", "latitude": 14.8920, "longitude": 120.8590}


@pytest.fixture
def make_ride(session_factory, users):
    """Insert a ride directly; ``age_minutes`` backdates ``created_at``."""

    async def _make(
        passenger: str = "maria",
        status: RideStatus = RideStatus.PENDING,
        driver: str | None = None,
        toda_name: str | None = "BNBB TODA",
        age_minutes: int = 0,
        **extra,
    ) -> str:
        async with session_factory() as session:
            ride = RideModel(
                passenger_id=users[passenger],
                passenger_first_name=USERS[passenger]["first_name"],
                passenger_last_name=USERS[passenger]["last_name"],
                pickup_name=PICKUP["name"],
                pickup_lat=PICKUP["latitude"],
                pickup_lng=PICKUP["longitude"],
                dropoff_name=DROPOFF["name"],
                dropoff_lat=DROPOFF["latitude"],
                dropoff_lng=DROPOFF["longitude"],
                distance_km=1.2,
                fare=18,
                toda_name=toda_name,
                status=status,
                driver_id=users[driver] if driver else None,
                created_at=utc_now() - timedelta(minutes=age_minutes),
                **extra,
            )
            session.add(ride)
            await session.commit()
            return ride.id

    return _make
