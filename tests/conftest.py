"""Test fixtures for lockstep."""

import asyncio
from collections.abc import AsyncGenerator, Callable

import pytest
from httpx import ASGITransport, AsyncClient

from lockstep.locking import LockClient
from lockstep.lockserver import LockServerSettings, LockStore, create_app

NAMESPACE = "test-ns"
BASE_URL = "http://test"


class FakeClock:
    """Millisecond clock that only moves when told to."""

    def __init__(self, now: int = 1_000_000):
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


class RecordingSleep:
    """Stand-in for asyncio.sleep that records the requested delays.

    `on_sleep` is called with the number of sleeps so far, e.g. to release a
    contended lease after a few rounds of backoff.
    """

    def __init__(self, on_sleep: Callable[[int], object] | None = None):
        self.delays: list[float] = []
        self.on_sleep = on_sleep

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        if self.on_sleep is not None:
            res = self.on_sleep(len(self.delays))
            if asyncio.iscoroutine(res):
                await res
        await asyncio.sleep(0)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store(clock) -> LockStore:
    return LockStore(clock=clock)


@pytest.fixture
def app(store):
    return create_app(store=store, settings=LockServerSettings())


@pytest.fixture
async def client(app) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client talking to the in-process lock service."""
    async with AsyncClient(
        transport=ASGITransport(app=app), base_url=BASE_URL
    ) as ac:
        yield ac


@pytest.fixture
def make_lock_client(client) -> Callable[..., LockClient]:
    """Create LockClients for different holders, sharing the in-process service."""

    def _make(client_id: str, namespace: str = NAMESPACE) -> LockClient:
        return LockClient(f"{BASE_URL}/{namespace}", client_id, http_client=client)

    return _make


@pytest.fixture
def make_sleep() -> Callable[..., RecordingSleep]:
    return RecordingSleep
