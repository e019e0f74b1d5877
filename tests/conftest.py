"""Shared fixtures: an in-memory transport and a recording sink."""

import asyncio
import json
from typing import Callable, Optional

import pytest

from serbridge.core.config import SessionConfig
from serbridge.core.exceptions import TransportError
from serbridge.core.models import Device
from serbridge.serial.session import DeviceSessionManager, Sink, StreamEvent
from serbridge.serial.transport import Transport, TransportListener


class FakeTransport(Transport):
    """Transport that records writes instead of touching hardware."""

    def __init__(self, listener: TransportListener, fail_open: Optional[str] = None,
                 fail_write_on: Optional[str] = None):
        super().__init__(listener)
        self.fail_open = fail_open
        self.fail_write_on = fail_write_on
        self.write_gate: Optional[asyncio.Event] = None
        self.open_calls: list[tuple[str, Optional[int]]] = []
        self.written: list[str] = []
        self.close_calls = 0
        self._open = False

    @property
    def is_open(self) -> bool:
        return self._open

    async def open(self, path, baud_rate=None):
        self.open_calls.append((path, baud_rate))
        await asyncio.sleep(0)
        if self.fail_open:
            raise TransportError(self.fail_open)
        self._open = True

    async def write_line(self, data):
        if self.write_gate:
            await self.write_gate.wait()
        await asyncio.sleep(0)
        text = data.decode()
        if self.fail_write_on and text.strip() == self.fail_write_on:
            raise TransportError("write failed")
        self.written.append(text)

    async def close(self):
        self._open = False
        self.close_calls += 1


class FakeTransportFactory:
    """Builds FakeTransports and remembers them."""

    def __init__(self, **kwargs):
        self.kwargs = kwargs
        self.created: list[FakeTransport] = []

    def __call__(self, listener: TransportListener) -> FakeTransport:
        transport = FakeTransport(listener, **self.kwargs)
        self.created.append(transport)
        return transport


class RecordingSink(Sink):
    """Sink that keeps every event it receives."""

    def __init__(self):
        self.events: list[StreamEvent] = []
        self.ended = False
        self.callbacks: list[Callable[[], None]] = []

    def push(self, event):
        self.events.append(event)

    def end(self):
        self.ended = True

    def add_disconnect_callback(self, callback):
        self.callbacks.append(callback)

    def disconnect(self):
        for callback in self.callbacks:
            callback()

    @property
    def states(self) -> list[str]:
        return [
            json.loads(e.data)["state"] for e in self.events if e.event == "connection"
        ]

    @property
    def lines(self) -> list[str]:
        return [e.data for e in self.events if e.event is None and not e.comment]


async def settle(rounds: int = 10) -> None:
    """Let pending callbacks and tasks on the loop run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


@pytest.fixture
def make_manager():
    """Build a DeviceSessionManager backed by a FakeTransport."""

    def _make(config: Optional[SessionConfig] = None, traffic_log_dir=None, **transport_kwargs):
        factory = FakeTransportFactory(**transport_kwargs)
        device = Device(id="ttyUSB0", path="/dev/ttyUSB0")
        manager = DeviceSessionManager(
            device,
            factory,
            config=config or SessionConfig(),
            traffic_log_dir=traffic_log_dir,
        )
        return manager, factory.created[0]

    return _make


@pytest.fixture
def sink_factory():
    return RecordingSink


@pytest.fixture
def transport_factory():
    return FakeTransportFactory()


@pytest.fixture(name="settle")
def settle_fixture():
    return settle
