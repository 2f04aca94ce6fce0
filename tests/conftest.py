"""Shared fixtures: temp store, fake clock, captured webhook receiver."""

import asyncio
import heapq
import itertools
import json
from datetime import datetime, timedelta

import httpx
import pytest

from finnotify.config import EmailConfig, WebhooksConfig
from finnotify.notify.email import EmailNotifier
from finnotify.notify.orchestrator import NotificationOrchestrator
from finnotify.realtime.channel import RealtimeChannel
from finnotify.store.ledger import LedgerStore
from finnotify.utils.clock import Clock
from finnotify.webhooks.dispatcher import WebhookDispatcher


class FakeClock(Clock):
    """Virtual wall clock.

    ``sleep`` parks the caller until ``run_until`` moves time past its wake
    point; sleepers are released in wake order.
    """

    def __init__(self, now: datetime) -> None:
        self.current = now
        self.sleeps: list[float] = []
        self._waiters: list[tuple[datetime, int, asyncio.Future[None]]] = []
        self._seq = itertools.count()

    def now(self) -> datetime:
        return self.current

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        wake_at = self.current + timedelta(seconds=max(seconds, 0.0))
        future = asyncio.get_running_loop().create_future()
        heapq.heappush(self._waiters, (wake_at, next(self._seq), future))
        await future

    async def settle(self, rounds: int = 20) -> None:
        for _ in range(rounds):
            await asyncio.sleep(0)

    async def run_until(self, until: datetime) -> None:
        await self.settle()
        while self._waiters and self._waiters[0][0] <= until:
            wake_at, _, future = heapq.heappop(self._waiters)
            if future.done():
                continue
            self.current = max(self.current, wake_at)
            future.set_result(None)
            await self.settle()
        self.current = max(self.current, until)


class Receiver:
    """httpx mock handler that records every POST and answers per URL."""

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.responses: dict[str, int] = {}
        self.errors: dict[str, Exception] = {}

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        url = str(request.url)
        if url in self.errors:
            raise self.errors[url]
        return httpx.Response(self.responses.get(url, 200), text="ok")

    def bodies(self) -> list[dict]:
        return [json.loads(r.content) for r in self.requests]


class FakeSocket:
    def __init__(self) -> None:
        self.sent: list[dict] = []

    async def send_json(self, data):
        self.sent.append(data)


@pytest.fixture
def clock():
    return FakeClock(datetime(2026, 3, 15, 12, 0, 0))


@pytest.fixture
async def store(tmp_path):
    s = LedgerStore(tmp_path / "finnotify.db")
    await s.start()
    yield s
    await s.stop()


@pytest.fixture
async def user(store):
    return await store.create_user("alice@example.com", "Alice")


@pytest.fixture
def receiver():
    return Receiver()


@pytest.fixture
async def http_client(receiver):
    client = httpx.AsyncClient(transport=httpx.MockTransport(receiver))
    yield client
    await client.aclose()


@pytest.fixture
def webhooks_config():
    return WebhooksConfig()


@pytest.fixture
def dispatcher(webhooks_config, store, http_client):
    return WebhookDispatcher(webhooks_config, store, client=http_client)


@pytest.fixture
def realtime():
    return RealtimeChannel()


@pytest.fixture
def email():
    return EmailNotifier(EmailConfig())


@pytest.fixture
def orchestrator(store, dispatcher, realtime, email):
    return NotificationOrchestrator(store, dispatcher, realtime, email)
