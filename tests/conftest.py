"""Shared fixtures for the distro test suite."""

from __future__ import annotations

import os

# Settings are read at import time
os.environ["DATABASE_URL"] = "sqlite+aiosqlite://"
os.environ["ADMIN_TOKEN"] = "test-admin-token"
os.environ["RETRY_BACKOFF_SECONDS"] = "0"
os.environ["FX_RATES"] = "EUR:USD=1.10,GBP:USD=1.25,USD:JPY=150"

import uuid
from contextlib import asynccontextmanager
from datetime import date
from decimal import Decimal

import pytest
import pytest_asyncio
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from distro.core import database
from distro.core.database import Base
from distro.models import PayoutCurrency, PayoutMethod, User
from distro.services import payouts as payout_service
from distro.services import royalties as royalty_service
from distro.services import users as user_service
from distro.services.fx import FXService, StaticFXProvider
from distro.services.royalties import SplitSpec


def enable_sqlite_savepoints(engine: AsyncEngine) -> None:
    """Let SQLAlchemy emit BEGIN itself so SAVEPOINT works on SQLite."""

    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN")


# The application engine is used by the HTTP tests
enable_sqlite_savepoints(database.engine)


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------

async def _memory_engine() -> AsyncEngine:
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    enable_sqlite_savepoints(engine)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    return engine


@pytest_asyncio.fixture
async def engine():
    engine = await _memory_engine()
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def db(engine) -> AsyncSession:
    session_maker = async_sessionmaker(engine, expire_on_commit=False, autoflush=False)
    async with session_maker() as session:
        yield session


@pytest.fixture
def isolated_session():
    """Open a session on a brand new database, for tests that need one per example."""

    @asynccontextmanager
    async def _open():
        engine = await _memory_engine()
        try:
            async with async_sessionmaker(engine, expire_on_commit=False, autoflush=False)() as session:
                yield session
        finally:
            await engine.dispose()

    return _open


# ---------------------------------------------------------------------------
# FX
# ---------------------------------------------------------------------------

@pytest.fixture
def fx() -> FXService:
    return FXService(
        StaticFXProvider(
            {
                ("EUR", "USD"): Decimal("1.10"),
                ("GBP", "USD"): Decimal("1.25"),
                ("USD", "JPY"): Decimal("150"),
            }
        )
    )


# ---------------------------------------------------------------------------
# Factories
# ---------------------------------------------------------------------------

@pytest.fixture
def make_user(db):
    counter = {"n": 0}

    async def _make(**kwargs) -> User:
        counter["n"] += 1
        return await user_service.create_user(
            db,
            email=kwargs.pop("email", f"artist{counter['n']}@example.com"),
            display_name=kwargs.pop("display_name", f"Artist {counter['n']}"),
            **kwargs,
        )

    return _make


@pytest.fixture
def make_recipient(db, make_user):
    async def _make(
        minimum: str = "0",
        currency: PayoutCurrency = PayoutCurrency.USD,
        **fields,
    ) -> User:
        user = await make_user()
        await payout_service.upsert_recipient(
            db,
            user.id,
            payment_method=PayoutMethod.BANK_TRANSFER,
            payout_currency=currency,
            minimum_payout_amount=Decimal(minimum),
            **fields,
        )
        return user

    return _make


@pytest.fixture
def make_processed_royalty(db, fx):
    """Ingest a royalty and give 100% of it to one recipient."""

    async def _make(
        recipient_id,
        amount: str,
        currency: str = "USD",
        period_end: date = date(2024, 3, 31),
        **split_fields,
    ):
        royalty = await royalty_service.create_royalty(
            db,
            track_id=uuid.uuid4(),
            store_name="Spotify",
            amount=Decimal(amount),
            currency=currency,
            period_start=date(period_end.year, period_end.month, 1),
            period_end=period_end,
            fx=fx,
        )
        return await royalty_service.process_royalty(
            db,
            royalty.id,
            [SplitSpec(recipient_id=recipient_id, percentage=Decimal("100"), **split_fields)],
        )

    return _make
