import asyncio
import json

import pytest
from websockets.exceptions import ConnectionClosed
from websockets.frames import Close


class FakeWebSocket:
    """In-memory stand-in for a websockets client connection."""

    _DROP = object()

    def __init__(self):
        self.incoming: asyncio.Queue = asyncio.Queue()
        self.outgoing: asyncio.Queue = asyncio.Queue()
        self.sent: list[dict] = []
        self.closed = False
        self.close_calls = 0
        self.reject_sends = False

    def feed(self, payload) -> None:
        self.incoming.put_nowait(payload if isinstance(payload, str) else json.dumps(payload))

    def close_with(self, code: int, reason: str = "") -> None:
        self.incoming.put_nowait(Close(code, reason))

    def drop(self) -> None:
        """End the stream without a close frame."""
        self.incoming.put_nowait(self._DROP)

    async def recv(self):
        item = await self.incoming.get()
        if item is self._DROP:
            raise ConnectionClosed(None, None)
        if isinstance(item, Close):
            raise ConnectionClosed(item, None)
        return item

    async def send(self, data: str) -> None:
        if self.closed or self.reject_sends:
            raise ConnectionClosed(None, None)
        payload = json.loads(data)
        self.sent.append(payload)
        self.outgoing.put_nowait(payload)

    async def close(self) -> None:
        self.closed = True
        self.close_calls += 1

    async def next_sent(self, timeout: float = 1.0) -> dict:
        return await asyncio.wait_for(self.outgoing.get(), timeout)

    def ops(self) -> list:
        return [payload.get("op") for payload in self.sent]


class FakeConnector:
    """Hands out FakeWebSockets and records how each one was opened."""

    def __init__(self, hello_interval: int | None = None, preload: list | None = None):
        self.hello_interval = hello_interval
        self.preload = preload or []
        self.calls: list[tuple[str, dict]] = []
        self.sockets: list[FakeWebSocket] = []
        self.failures = 0
        self.reject_sends = False

    @property
    def last(self) -> FakeWebSocket:
        return self.sockets[-1]

    async def __call__(self, url: str, **kwargs) -> FakeWebSocket:
        self.calls.append((url, kwargs))
        if self.failures:
            self.failures -= 1
            raise OSError("connection refused")

        ws = FakeWebSocket()
        ws.reject_sends = self.reject_sends
        if self.hello_interval is not None:
            ws.feed({"op": 10, "d": {"heartbeat_interval": self.hello_interval}})
        for frame in self.preload:
            ws.feed(frame)
        self.sockets.append(ws)
        return ws


@pytest.fixture
def gateway_connector() -> FakeConnector:
    return FakeConnector(hello_interval=60_000)


@pytest.fixture
def node_connector() -> FakeConnector:
    return FakeConnector()


@pytest.fixture
def events() -> asyncio.Queue:
    return asyncio.Queue()
