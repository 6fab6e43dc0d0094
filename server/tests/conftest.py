from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest

from proofly.errors import NotificationDispatchError
from proofly.services.jobs import JobRepository
from proofly.services.kv_store import MemoryKeyValueStore
from proofly.services.mirror import MirrorOutbox, RemoteMirror
from proofly.services.remote_signing import RemoteSigningManager

T0 = datetime(2024, 5, 1, 9, 30, 0, 123456, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, now: datetime = T0):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


class FakeNotifier:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.sent = []

    def send(self, channel, address, job, url):
        if self.fail:
            raise NotificationDispatchError("SMS not available on this device")
        self.sent.append((channel, address, job["id"], url))


@pytest.fixture()
def clock():
    return FakeClock()


@pytest.fixture()
def store():
    return MemoryKeyValueStore()


@pytest.fixture()
def mongo():
    return MagicMock()


@pytest.fixture()
def outbox(store, mongo, clock):
    return MirrorOutbox(store, RemoteMirror(mongo), clock=clock)


@pytest.fixture()
def notifier():
    return FakeNotifier()


@pytest.fixture()
def jobs(store, clock):
    return JobRepository(store, clock=clock)


@pytest.fixture()
def job(jobs):
    return jobs.create("worker-1", {
        "clientName": "Jane Doe",
        "clientPhone": "555-010-1234",
        "serviceType": "Gutter cleaning",
        "address": "12 Elm St",
    })


@pytest.fixture()
def manager(store, outbox, notifier, jobs, clock):
    return RemoteSigningManager(
        store, outbox, notifier,
        identity=lambda: "worker-1",
        jobs=jobs,
        clock=clock,
    )
