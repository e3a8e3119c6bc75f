from __future__ import annotations

import asyncio
import os
import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

os.environ.setdefault("WSCHAT_LOG_FILE", "0")


class DummyWebSocket:
    """In-memory stand-in for a websockets client connection."""

    def __init__(self) -> None:
        self.sent_messages: list[str] = []
        self.inbound: asyncio.Queue = asyncio.Queue()
        self.pings = 0
        self.closed = False
        self.close_code: int | None = None
        self.send_error: Exception | None = None
        self.ping_error: Exception | None = None
        self.answer_pings = True

    def feed(self, frame) -> None:
        """Queue a frame (str, bytes) or an exception for recv()"""
        self.inbound.put_nowait(frame)

    async def send(self, data: str) -> None:
        if self.send_error is not None:
            raise self.send_error
        self.sent_messages.append(data)

    async def recv(self):
        item = await self.inbound.get()
        if isinstance(item, BaseException):
            raise item
        return item

    async def ping(self, data=None):
        if self.ping_error is not None:
            raise self.ping_error
        self.pings += 1
        waiter = asyncio.get_running_loop().create_future()
        if self.answer_pings:
            waiter.set_result(0.0)
        return waiter

    async def close(self, code: int = 1000, reason: str = "") -> None:
        self.closed = True
        self.close_code = code


class DummyConnector:
    """Hands out a fresh DummyWebSocket per connect and remembers them."""

    def __init__(self) -> None:
        self.sockets: list[DummyWebSocket] = []
        self.urls: list[str] = []
        self.error: Exception | None = None
        self.gate: asyncio.Event | None = None

    async def __call__(self, url: str) -> DummyWebSocket:
        self.urls.append(url)
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        ws = DummyWebSocket()
        self.sockets.append(ws)
        return ws

    @property
    def last(self) -> DummyWebSocket:
        return self.sockets[-1]


async def wait_for(predicate, timeout: float = 2.0) -> bool:
    loop = asyncio.get_running_loop()
    end = loop.time() + timeout
    while loop.time() < end:
        if predicate():
            return True
        await asyncio.sleep(0.01)
    return predicate()


class EventRecorder:
    def __init__(self, controller) -> None:
        self.states = []
        self.histories = []
        self.errors = []
        controller.on("state", self.states.append)
        controller.on("history", self.histories.append)
        controller.on("error", self.errors.append)


@pytest.fixture
def connector() -> DummyConnector:
    return DummyConnector()


@pytest.fixture
def make_controller(connector):
    from client.ws_client import ConnectionController

    def factory(**overrides):
        overrides.setdefault("server_url", "ws://chat.test:3000")
        overrides.setdefault("ping_interval", 30.0)
        return ConnectionController(connector=connector, **overrides)

    return factory


@pytest.fixture
def clean_env(monkeypatch):
    for var in list(os.environ):
        if var.startswith("WSCHAT_") and var != "WSCHAT_LOG_FILE":
            monkeypatch.delenv(var, raising=False)
    return monkeypatch
