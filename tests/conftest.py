from typing import List

import pytest
from fastapi.testclient import TestClient

from jobs import JobStore, SyncJobStore


class FakeAsyncRedis:
    def __init__(self):
        self._store = {}

    async def ping(self):
        return True

    async def close(self):
        return None

    async def get(self, key: str):
        return self._store.get(key)

    async def set(self, key: str, value: str, ex: int | None = None):
        self._store[key] = value
        return True

    async def delete(self, key: str):
        self._store.pop(key, None)
        return 1

    async def exists(self, key: str):
        return 1 if key in self._store else 0

    async def scan(self, cursor: int = 0, match: str = "*", count: int = 100):
        keys = [k for k in self._store.keys() if k.startswith(match.replace("*", ""))]
        return 0, keys

    async def mget(self, keys: List[str]):
        return [self._store.get(k) for k in keys]


class FakeSyncRedis:
    """Blocking view over the same dict, as the worker sees Redis"""

    def __init__(self, store: dict):
        self._store = store

    def get(self, key: str):
        return self._store.get(key)

    def set(self, key: str, value: str, ex: int | None = None):
        self._store[key] = value
        return True


class DummySender:
    def __init__(self):
        self.sent = []

    def send_task(self, name, args=None, kwargs=None):
        self.sent.append((name, args))
        return None


@pytest.fixture()
def fake_redis() -> FakeAsyncRedis:
    return FakeAsyncRedis()


@pytest.fixture()
def sync_store(fake_redis) -> SyncJobStore:
    return SyncJobStore(FakeSyncRedis(fake_redis._store), ttl_seconds=60)


@pytest.fixture()
def sender() -> DummySender:
    return DummySender()


@pytest.fixture()
def client(monkeypatch, tmp_path, fake_redis, sender) -> TestClient:
    import server

    monkeypatch.setattr(server, "job_store", JobStore(fake_redis, ttl_seconds=60))
    monkeypatch.setattr(server, "celery_app", sender)
    monkeypatch.setattr(server, "OUTPUT_DIR", tmp_path)
    monkeypatch.setattr(server, "rate_limiter", server.RateLimiter(1000, 60))

    return TestClient(server.app)
