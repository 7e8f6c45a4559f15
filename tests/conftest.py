"""
Shared fixtures: a temporary SQLite record store, a fully wired service,
a deterministic clock and a small in-memory stand-in for the Redis client.
"""

from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional

import pytest
import pytest_asyncio
from redis.exceptions import ConnectionError as RedisConnectionError

from app.infrastructure.record_store import SQLRecordStore
from services.currency_service import CurrencyConverter, StaticRateConverter
from services.exceptions import CurrencyConversionError
from services.user_context_service import UserContextService


BASE_TIME = datetime(2025, 1, 6, 9, 0, tzinfo=timezone.utc)


class StepClock:
    """Each call returns a time one minute after the previous one."""

    def __init__(self, start: datetime = BASE_TIME, step: timedelta = timedelta(minutes=1)):
        self.current = start
        self.step = step

    def __call__(self) -> datetime:
        value = self.current
        self.current = self.current + self.step
        return value


class FailingConverter(CurrencyConverter):
    def __init__(self):
        self.calls = 0

    async def convert(self, amount, from_currency, to_currency):
        self.calls += 1
        raise CurrencyConversionError(f"No rate for {from_currency} -> {to_currency}")


class FakePipeline:
    def __init__(self, redis: "FakeRedis"):
        self.redis = redis
        self.commands: List[str] = []

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False

    def delete(self, key: str):
        self.commands.append(key)
        return self

    async def execute(self):
        if self.redis.fail:
            raise RedisConnectionError("connection reset")
        return [1 if self.redis.data.pop(key, None) is not None else 0 for key in self.commands]


class FakeRedis:
    """Just enough of redis.asyncio.Redis for the record store."""

    def __init__(self):
        self.data: Dict[str, str] = {}
        self.fail = False
        self.closed = False

    def _check(self):
        if self.fail:
            raise RedisConnectionError("connection refused")

    async def ping(self):
        self._check()
        return True

    async def get(self, key: str) -> Optional[str]:
        self._check()
        return self.data.get(key)

    async def set(self, key: str, value: str):
        self._check()
        self.data[key] = value
        return True

    def pipeline(self, transaction: bool = True) -> FakePipeline:
        return FakePipeline(self)

    async def aclose(self):
        self.closed = True


def booking(origin="SEA", destination="YVR", amount=250.0, currency="USD", **extra):
    data = {
        "origin": origin,
        "destination": destination,
        "price": {"amount": amount, "currency": currency},
    }
    data.update(extra)
    return data


@pytest.fixture
def clock():
    return StepClock()


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest_asyncio.fixture
async def store(tmp_path):
    store = SQLRecordStore.from_url(f"sqlite+aiosqlite:///{tmp_path / 'records.db'}")
    await store.initialize()
    yield store
    await store.close()


@pytest_asyncio.fixture
async def service(store, clock):
    return UserContextService(store, converter=StaticRateConverter(), clock=clock)
