import os
import socket

import httpx
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from distress_scraper.models import scraper_models  # noqa: F401
from distress_scraper.models.property_models import Base, ScrapedProperty


@pytest.fixture(autouse=True)
def block_network(monkeypatch):
    if os.getenv("LIVE") == "1":
        return

    real_connect = socket.socket.connect

    def guarded_connect(sock, address):
        host = address[0] if isinstance(address, tuple) else address
        if host not in ("127.0.0.1", "localhost"):
            raise RuntimeError("Network access blocked in tests")
        return real_connect(sock, address)

    monkeypatch.setattr(socket.socket, "connect", guarded_connect)


class SleepRecorder:
    """Async sleep stand-in that records requested delays."""

    def __init__(self):
        self.calls = []

    async def __call__(self, seconds):
        self.calls.append(seconds)


class FakeClock:
    """Monotonic clock advanced only by its own sleep."""

    def __init__(self, start=0.0):
        self.now = start
        self.sleeps = []

    def __call__(self):
        return self.now

    async def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture
def sleeper():
    return SleepRecorder()


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def make_client():
    def factory(handler):
        return httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return factory


@pytest.fixture
def make_property():
    def factory(**fields):
        data = {
            "source": "zillow",
            "address": "123 Main St",
            "city": "Phoenix",
            "state": "AZ",
            "zip": "85001",
        }
        data.update(fields)
        return ScrapedProperty(**data)
    return factory


@pytest.fixture
def session_factory():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    factory = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    yield factory
    engine.dispose()
