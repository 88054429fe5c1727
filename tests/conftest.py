import asyncio
import os
import sys

import fakeredis
import pytest

# Ensure the repository root (holding the top-level modules) is on sys.path
CURRENT_DIR = os.path.dirname(__file__)
PROJECT_ROOT = os.path.abspath(os.path.join(CURRENT_DIR, '..'))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

from coordinator import RoomCoordinator
from models import SessionContext
from repository import RoomRepository
from watcher import RoomWatcher


@pytest.fixture()
def fake_server():
    return fakeredis.FakeServer()


@pytest.fixture()
async def redis_client(fake_server):
    client = fakeredis.FakeAsyncRedis(server=fake_server, decode_responses=True)
    yield client
    await client.aclose()


@pytest.fixture()
def repository(redis_client):
    return RoomRepository(redis_client)


@pytest.fixture()
def coordinator(repository):
    return RoomCoordinator(repository)


@pytest.fixture()
def watcher(redis_client, repository):
    return RoomWatcher(redis_client, repository)


@pytest.fixture()
def alice():
    return SessionContext(identity="alice@x", display_name="Alice")


@pytest.fixture()
def bob():
    return SessionContext(identity="bob@y", display_name="Bob")


@pytest.fixture()
def carol():
    return SessionContext(identity="carol@z", display_name="Carol")


class Recorder:
    """Collects everything handed to it and lets a test wait for a match."""

    def __init__(self):
        self.items = []
        self._queue = asyncio.Queue()

    async def __call__(self, item):
        self.items.append(item)
        await self._queue.put(item)

    async def next(self, timeout=2.0):
        return await asyncio.wait_for(self._queue.get(), timeout=timeout)

    async def wait_for(self, predicate, timeout=2.0):
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while True:
            item = await self.next(timeout=max(0.01, deadline - loop.time()))
            if predicate(item):
                return item


@pytest.fixture()
def recorder():
    return Recorder()


@pytest.fixture()
def error_recorder():
    return Recorder()
