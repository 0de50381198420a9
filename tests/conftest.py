"""Shared fixtures for the webhook tests."""

import pytest

from hookline.core.observability import ObservabilityHook
from hookline.webhooks.store import InMemoryWebhookStore
from hookline.webhooks.registry import WebhookRegistry


class FakeClock:
    """Manually advanced time source (seconds)."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingSleep:
    """Stands in for asyncio.sleep and remembers the requested delays."""

    def __init__(self):
        self.calls = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


class RecordingHook(ObservabilityHook):
    """Observability hook that keeps every signal it receives."""

    def __init__(self):
        self.completed = []
        self.rejected = []
        self.bookkeeping_failures = []

    def delivery_completed(self, webhook_id, delivery_id, event_type, success, attempts, duration_ms):
        self.completed.append((webhook_id, success, attempts))

    def circuit_rejected(self, webhook_id, key, reason):
        self.rejected.append((webhook_id, key, reason))

    def bookkeeping_failed(self, operation, webhook_id, delivery_id, error):
        self.bookkeeping_failures.append((operation, webhook_id, str(error)))


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def sleeper():
    return RecordingSleep()


@pytest.fixture
def hook():
    return RecordingHook()


@pytest.fixture
def store():
    store = InMemoryWebhookStore()
    store.add_inbox("inbox-a1", owner_id="owner-a")
    store.add_inbox("inbox-a2", owner_id="owner-a")
    store.add_inbox("inbox-b1", owner_id="owner-b")
    return store


@pytest.fixture
def registry(store):
    return WebhookRegistry(store)
