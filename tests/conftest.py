"""
Pytest configuration and shared fixtures.

Services run against an in-memory SQLite database (aiosqlite) and a
recording queue; HTTP deliveries go through httpx.MockTransport.
"""
from datetime import timedelta

import httpx
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from hookrelay.models.base import Base
from hookrelay.schemas import DeliveryJob, SubscriptionCreate
from hookrelay.services.attempt_ledger import AttemptLedger
from hookrelay.services.delivery import DeliveryWorker, create_http_client
from hookrelay.services.dispatcher import WebhookDispatcher
from hookrelay.services.registry import WebhookRegistry

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

TENANT_A = "tenant-a"
TENANT_B = "tenant-b"


class RecordingQueue:
    """DeliveryQueue that keeps jobs in memory instead of Redis."""

    def __init__(self):
        self.jobs: list[tuple[DeliveryJob, timedelta | None]] = []
        self._keys: set[str] = set()

    async def enqueue(self, job: DeliveryJob, delay: timedelta | None = None) -> bool:
        if job.job_key in self._keys:
            return False
        self._keys.add(job.job_key)
        self.jobs.append((job, delay))
        return True

    def pop(self) -> DeliveryJob | None:
        if not self.jobs:
            return None
        job, _ = self.jobs.pop(0)
        return job


class Receiver:
    """Fake subscriber endpoint. Responds with the queued status codes in order."""

    def __init__(self, *status_codes: int, body: str = "ok"):
        self.status_codes = list(status_codes) or [200]
        self.body = body
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        code = self.status_codes.pop(0) if len(self.status_codes) > 1 else self.status_codes[0]
        return httpx.Response(code, text=self.body)


@pytest_asyncio.fixture
async def session_factory():
    """Fresh in-memory database per test."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, expire_on_commit=False)

    await engine.dispose()


@pytest.fixture
def registry(session_factory) -> WebhookRegistry:
    return WebhookRegistry(session_factory)


@pytest.fixture
def ledger(session_factory) -> AttemptLedger:
    return AttemptLedger(session_factory, failure_threshold=10)


@pytest.fixture
def queue() -> RecordingQueue:
    return RecordingQueue()


@pytest.fixture
def dispatcher(registry, queue) -> WebhookDispatcher:
    return WebhookDispatcher(registry, queue)


@pytest_asyncio.fixture
async def make_worker(registry, ledger, queue):
    """Build a DeliveryWorker whose HTTP calls are answered by `handler`."""
    clients = []

    def _make(handler) -> DeliveryWorker:
        client = create_http_client(transport=httpx.MockTransport(handler))
        clients.append(client)
        return DeliveryWorker(registry, ledger, queue, client)

    yield _make

    for client in clients:
        await client.aclose()


@pytest.fixture
def subscription_data():
    """Factory for SubscriptionCreate payloads."""

    def _data(**overrides) -> SubscriptionCreate:
        values = {
            "name": "Orders hook",
            "url": "https://receiver.example.com/hooks",
            "events": ["order.created"],
            "secret": "whsec_test",
        }
        values.update(overrides)
        return SubscriptionCreate(**values)

    return _data
