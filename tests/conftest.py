import asyncio
import json
from typing import Any, Dict, List, Optional, Tuple

import pytest

from gateway_session import GatewayInfo, GatewaySession, SessionFailed, Transport


class FakeTransport(Transport):
    """In-memory transport, closing it reports the closure right away."""

    def __init__(self, url: str, *, fail: bool = False, unstable: bool = False) -> None:
        super().__init__(url)

        self.fail = fail
        self.unstable = unstable
        self.opened = False

        self.sent: List[Dict[str, Any]] = []
        self.closes: List[int] = []

    async def open(self) -> None:
        if self.fail:
            raise OSError('Connection refused')
        self.opened = True

        if self.unstable:
            # Accepted, then dropped before anything was received
            asyncio.get_running_loop().call_soon(self.drop, 1006)

    def send(self, data: str) -> None:
        self.sent.append(json.loads(data))

    def close(self, code: int) -> None:
        self.closes.append(code)
        self._emit_close(code)

    def receive(self, frame: Dict[str, Any]) -> None:
        self._emit_message(json.dumps(frame))

    def drop(self, code: Optional[int]) -> None:
        """Simulate the gateway closing the connection."""
        self._emit_close(code)

    @property
    def attached(self) -> bool:
        return self._on_message is not None or self._on_close is not None

    def ops(self) -> List[int]:
        return [frame['op'] for frame in self.sent]


class TransportFactory:
    def __init__(self) -> None:
        self.transports: List[FakeTransport] = []
        self.failures = 0
        self.unstable = False

    def __call__(self, url: str) -> FakeTransport:
        fail = self.failures > 0
        if fail:
            self.failures -= 1

        transport = FakeTransport(url, fail=fail, unstable=self.unstable)
        self.transports.append(transport)
        return transport

    @property
    def latest(self) -> FakeTransport:
        return self.transports[-1]


class RecordingSink:
    def __init__(self) -> None:
        self.events: List[Tuple[str, Any]] = []
        self.errors: List[SessionFailed] = []

    def on_event(self, type: str, payload: Any) -> None:
        self.events.append((type, payload))

    def on_fatal_error(self, reason: SessionFailed) -> None:
        self.errors.append(reason)


class FakeResolver:
    def __init__(self, url: str = 'wss://gateway.example.com') -> None:
        self.url = url
        self.calls = 0

    async def resolve(self, **query: Any) -> GatewayInfo:
        self.calls += 1
        return GatewayInfo(self.url, 1)


@pytest.fixture()
def factory() -> TransportFactory:
    return TransportFactory()


@pytest.fixture()
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture()
def resolver() -> FakeResolver:
    return FakeResolver()


@pytest.fixture()
def session(
    factory: TransportFactory, sink: RecordingSink, resolver: FakeResolver
) -> GatewaySession:
    return GatewaySession(
        'token',
        resolver=resolver,
        sink=sink,
        intents=[1 << 0, 1 << 9],
        transport_factory=factory,
        max_reconnect_delay=0,
        jitter=lambda: 0.5,
    )
