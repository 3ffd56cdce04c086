"""
Shared Test Fixtures and Configuration

This module provides pytest fixtures used across unit and integration tests:
- A controllable clock
- A temporary SQLite database (sqlite+aiosqlite) with all tables created
- A fake push transport that records messages and returns scripted results
"""

import os
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import AsyncGenerator, Awaitable, Callable, Optional

import pytest
import pytest_asyncio
from dotenv import load_dotenv

# Load .env first so the overrides below win over anything in it
_env_file = Path(__file__).parent.parent / ".env"
if _env_file.exists():
    load_dotenv(_env_file)

# The app-level engine is created at import time; keep it off PostgreSQL
os.environ["DATABASE_URL_OVERRIDE"] = "sqlite+aiosqlite:///:memory:"
os.environ["DEBUG"] = "false"

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker  # noqa: E402

from microflash.db.base import create_engine_for_url, init_db  # noqa: E402
from microflash.enums.notifications import DeliveryErrorKind  # noqa: E402
from microflash.services.notifications.delivery import (  # noqa: E402
    DeliveryMessage,
    DeliveryResult,
)

T0 = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)


# ============================================================================
# Clock
# ============================================================================


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime = T0):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now

    def set(self, now: datetime) -> None:
        self.now = now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


# ============================================================================
# Database
# ============================================================================


@pytest_asyncio.fixture
async def engine(tmp_path):
    """Fresh file-backed SQLite database per test."""
    test_engine = create_engine_for_url(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    await init_db(bind=test_engine)
    yield test_engine
    await test_engine.dispose()


@pytest.fixture
def session_maker(engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db(session_maker) -> AsyncGenerator[AsyncSession, None]:
    async with session_maker() as session:
        yield session


# ============================================================================
# Push transport
# ============================================================================


class FakeTransport:
    """
    Records every batch and answers per token.

    Tokens listed in `permanent` / `transient` fail with that kind; all
    others succeed. `raise_error` makes send_batch raise instead. `on_send`
    runs before results are returned (e.g. to simulate a concurrent write).
    """

    def __init__(self):
        self.batches: list[list[DeliveryMessage]] = []
        self.permanent: set[str] = set()
        self.transient: set[str] = set()
        self.raise_error: Optional[Exception] = None
        self.on_send: Optional[Callable[[list[DeliveryMessage]], Awaitable[None]]] = None

    @property
    def messages(self) -> list[DeliveryMessage]:
        return [m for batch in self.batches for m in batch]

    async def send_batch(self, messages: list[DeliveryMessage]) -> list[DeliveryResult]:
        self.batches.append(list(messages))
        if self.on_send is not None:
            await self.on_send(messages)
        if self.raise_error is not None:
            raise self.raise_error

        results = []
        for message in messages:
            if message.token in self.permanent:
                results.append(
                    DeliveryResult.failed(message.token, "DeviceNotRegistered", DeliveryErrorKind.PERMANENT)
                )
            elif message.token in self.transient:
                results.append(
                    DeliveryResult.failed(message.token, "MessageRateExceeded", DeliveryErrorKind.TRANSIENT)
                )
            else:
                results.append(DeliveryResult.ok(message.token, f"ticket-{len(results)}"))
        return results


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()
