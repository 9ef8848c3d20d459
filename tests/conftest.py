import pytest
from fastapi.testclient import TestClient

from app import create_app
from backend import InMemoryCacheBackend


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


@pytest.fixture()
def fake_clock():
    return FakeClock()


@pytest.fixture()
def cache():
    return InMemoryCacheBackend()


@pytest.fixture()
def clocked_cache(fake_clock):
    return InMemoryCacheBackend(clock=fake_clock)


@pytest.fixture()
def client(cache):
    app = create_app(cache=cache)
    with TestClient(app) as test_client:
        yield test_client
