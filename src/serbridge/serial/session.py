"""
Per-device session management.

A DeviceSessionManager owns the connection to one serial device. It opens the
device on demand when a reader attaches or a writer needs it, broadcasts every
received line to all attached read sessions, serializes writers with a
first-come-first-served lock and closes the device once it has been idle.

All methods must be called from the event loop that owns the manager.
"""

import asyncio
import json
import logging
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Callable, Iterable, Optional, Union

from serbridge.core.config import SessionConfig
from serbridge.core.exceptions import DeviceUnavailable, TransportError, WriteConflict
from serbridge.core.models import Device
from serbridge.serial.commands import Sleep, parse_payload
from serbridge.serial.traffic import TrafficLogger
from serbridge.serial.transport import Transport, TransportListener

logger = logging.getLogger(__name__)


class DeviceState(Enum):
    """Connection state of a device."""

    CLOSED = "closed"
    OPENING = "opening"
    OPEN = "open"
    CLOSING = "closing"


class ConnectionState(Enum):
    """States reported to read sessions in connection events."""

    CONNECTING = "connecting"
    CONNECTED = "connected"
    CLOSED = "closed"
    ERROR = "error"


@dataclass(frozen=True)
class StreamEvent:
    """
    One message pushed to a read session.

    Data events have no name. Connection events are named "connection" and
    carry a JSON document. Comment events carry nothing and only keep the
    stream alive.
    """

    data: str = ""
    event: Optional[str] = None
    comment: bool = False

    @classmethod
    def connection(cls, state: ConnectionState, error: Optional[str] = None) -> "StreamEvent":
        message = {"type": "servermessage", "state": state.value}
        if error is not None:
            message["error"] = error
        return cls(data=json.dumps(message), event="connection")


KEEPALIVE = StreamEvent(comment=True)


class Sink(ABC):
    """Output channel of one read session."""

    @abstractmethod
    def push(self, event: StreamEvent) -> None:
        """Queue an event for delivery. Must not block."""

    @abstractmethod
    def end(self) -> None:
        """Terminate the stream."""

    @abstractmethod
    def add_disconnect_callback(self, callback: Callable[[], None]) -> None:
        """Register a callback to run once when the client goes away."""


class LockToken:
    """Opaque proof of ownership of a device's write lock."""

    __slots__ = ("_id",)

    def __init__(self):
        self._id = uuid.uuid4().hex

    def __repr__(self) -> str:
        return f"LockToken({self._id[:8]})"


@dataclass(eq=False)
class Session:
    """A client subscribed to a device's read stream."""

    sink: Sink
    origin: str
    connected_at: datetime = field(default_factory=datetime.now)


TransportFactory = Callable[[TransportListener], Transport]


class DeviceSessionManager(TransportListener):
    """
    Connection state machine for one device.

    States move Closed -> Opening -> Open -> Closing -> Closed. The manager
    is reused across connections; only the transport connection is torn down.
    """

    def __init__(
        self,
        device: Device,
        transport_factory: TransportFactory,
        config: Optional[SessionConfig] = None,
        traffic_log_dir: Optional[Path] = None,
        encoding: str = "utf-8",
    ):
        """
        Initialize session manager.

        Args:
            device: Device this manager owns
            transport_factory: Called with the manager to build its transport
            config: Session timing and limits
            traffic_log_dir: Directory for traffic transcripts (None to disable)
            encoding: Encoding used for lines written to the device
        """
        self.device = device
        self.config = config or SessionConfig()
        self.traffic_log_dir = traffic_log_dir
        self.encoding = encoding

        self._transport = transport_factory(self)
        self._state = DeviceState.CLOSED
        self._sessions: list[Session] = []
        self._lock: Optional[LockToken] = None
        self._opened: Optional[asyncio.Future] = None
        self._open_task: Optional[asyncio.Task] = None
        self._close_task: Optional[asyncio.Task] = None
        self._keepalive_task: Optional[asyncio.Task] = None
        self._idle_handle: Optional[asyncio.TimerHandle] = None
        self._traffic: Optional[TrafficLogger] = None

    @property
    def state(self) -> DeviceState:
        return self._state

    @property
    def session_count(self) -> int:
        return len(self._sessions)

    @property
    def is_locked(self) -> bool:
        return self._lock is not None

    @property
    def idle_timer_armed(self) -> bool:
        return self._idle_handle is not None

    @property
    def path(self) -> str:
        return self.device.path

    # --- Configuration ---

    def configure(self, baud_rate: Optional[int]) -> None:
        """Set the baud rate used the next time the device is opened."""
        self.device.configured_baud_rate = baud_rate
        logger.info(f"{self.path}: baud rate set to {baud_rate}")

    # --- Read sessions ---

    def attach(self, sink: Sink, origin: str) -> Session:
        """
        Subscribe a sink to the device's output, opening the device if needed.

        Args:
            sink: Channel receiving lines and connection events
            origin: Client description used for logging

        Returns:
            The new session
        """
        session = Session(sink=sink, origin=origin)
        self._sessions.append(session)
        self._cancel_idle_timer()
        logger.info(f'{self.path}: streaming to "{origin}"')

        loop = asyncio.get_running_loop()
        sink.add_disconnect_callback(
            lambda: loop.call_soon_threadsafe(self.detach, session)
        )

        if self._state in (DeviceState.CLOSED, DeviceState.CLOSING):
            self._start_open()
        elif self._state is DeviceState.OPENING:
            sink.push(StreamEvent.connection(ConnectionState.CONNECTING))
        else:
            sink.push(StreamEvent.connection(ConnectionState.CONNECTED))
        return session

    def detach(self, session: Session) -> None:
        """Remove a session; arms the idle timer when it was the last one."""
        if session not in self._sessions:
            return
        self._sessions.remove(session)
        duration = (datetime.now() - session.connected_at).total_seconds()
        logger.info(f'{self.path}: closing stream to "{session.origin}" after {duration:.1f}s')

        if not self._sessions and self._state in (DeviceState.OPENING, DeviceState.OPEN):
            self._arm_idle_timer()

    # --- Write lock ---

    def acquire(self, token: Optional[LockToken] = None) -> LockToken:
        """
        Claim the write lock, or keep it when token already holds it.

        Raises:
            WriteConflict: If another token holds the lock
        """
        if self._lock is not None and self._lock is not token:
            raise WriteConflict(f"{self.path} is busy with another write")
        if token is None:
            token = LockToken()
        self._lock = token
        return token

    def release(self, token: LockToken) -> None:
        """Release the write lock held by token."""
        if self._lock is not token:
            raise ValueError(f"{token!r} does not hold the write lock")
        self._lock = None
        if not self._sessions and self._state in (DeviceState.OPENING, DeviceState.OPEN):
            self._arm_idle_timer()

    async def write(
        self,
        payload: Union[str, Iterable[str]],
        origin: str,
        token: Optional[LockToken] = None,
    ) -> LockToken:
        """
        Send a sequence of command lines without interleaving other writers.

        The device is opened if necessary; the lock is held across the open
        so no other writer can slip in. Each line is flushed before the next
        one is sent.

        Args:
            payload: Newline separated commands or a sequence of lines
            origin: Client description used for logging
            token: Lock token of a write already in progress

        Returns:
            The token the write ran under

        Raises:
            InvalidPayload: If the payload cannot be parsed
            WriteConflict: If another writer holds the lock
            DeviceUnavailable: If the device failed to open or errored
        """
        steps = parse_payload(payload, self.config.max_sleep_ms)
        token = self.acquire(token)
        self._cancel_idle_timer()

        try:
            await self._wait_open()
            for step in steps:
                if self._lock is not token:
                    raise DeviceUnavailable(f"{self.path} closed during write")
                if isinstance(step, Sleep):
                    await asyncio.sleep(step.seconds)
                    continue

                logger.info(f'{self.path}: sending "{step.text}" from "{origin}"')
                if self._traffic:
                    self._traffic.log_sent(step.text, origin)
                try:
                    await self._transport.write_line(step.encode(self.encoding))
                except TransportError as e:
                    if self._lock is token:
                        self._fail(e)
                    raise DeviceUnavailable(str(e)) from e

            if self._lock is not token:
                raise DeviceUnavailable(f"{self.path} closed during write")
        finally:
            if self._lock is token:
                self.release(token)
        return token

    # --- Closing ---

    def force_close(self) -> None:
        """
        Close the device, ending every session and clearing the write lock.

        Safe to call in any state.
        """
        was_connected = self._state in (DeviceState.OPENING, DeviceState.OPEN)

        self._cancel_idle_timer()
        if self._keepalive_task:
            self._keepalive_task.cancel()
            self._keepalive_task = None
        if self._open_task and self._open_task is not asyncio.current_task():
            self._open_task.cancel()
        self._open_task = None
        if self._opened and not self._opened.done():
            self._opened.set_exception(
                DeviceUnavailable(f"{self.path} closed before it finished opening")
            )
            # Waiters are optional; mark the exception as retrieved
            self._opened.exception()
        self._lock = None

        if was_connected:
            self._state = DeviceState.CLOSING
            self._broadcast(StreamEvent.connection(ConnectionState.CLOSED))
            logger.info(f"{self.path}: closed")
            self._close_task = asyncio.get_running_loop().create_task(
                self._close_transport()
            )

        sessions, self._sessions = self._sessions, []
        for session in sessions:
            session.sink.end()

        if self._traffic:
            self._traffic.stop()
            self._traffic = None

    async def aclose(self) -> None:
        """Force close and wait for the transport to shut down."""
        self.force_close()
        if self._close_task:
            await self._close_task

    # --- Transport events ---

    def on_line(self, line: str) -> None:
        if self._state is not DeviceState.OPEN:
            return
        if self._traffic:
            self._traffic.log_received(line)
        self._broadcast(StreamEvent(data=line))

    def on_closed(self) -> None:
        if self._state in (DeviceState.OPENING, DeviceState.OPEN):
            logger.info(f"{self.path}: connection dropped")
            self.force_close()

    def on_error(self, error: Exception) -> None:
        if self._state in (DeviceState.OPENING, DeviceState.OPEN):
            self._fail(error)

    # --- Internals ---

    def _start_open(self) -> None:
        """Move from Closed to Opening and start connecting."""
        loop = asyncio.get_running_loop()
        self._state = DeviceState.OPENING
        self._broadcast(StreamEvent.connection(ConnectionState.CONNECTING))
        logger.info(f"{self.path}: opening")
        self._opened = loop.create_future()
        self._open_task = loop.create_task(self._open())

    async def _open(self) -> None:
        # A previous connection may still be shutting down
        if self._close_task:
            await self._close_task

        try:
            await self._transport.open(self.path, self.device.configured_baud_rate)
        except Exception as e:
            if not isinstance(e, TransportError):
                logger.exception(f"{self.path}: unexpected error while opening")
            self._fail(e)
            return

        self._state = DeviceState.OPEN
        self._open_task = None
        if self.traffic_log_dir:
            traffic = TrafficLogger(self.traffic_log_dir, self.device.id)
            try:
                traffic.start()
            except OSError as e:
                logger.warning(f"{self.path}: traffic log disabled: {e}")
            else:
                self._traffic = traffic
        self._broadcast(StreamEvent.connection(ConnectionState.CONNECTED))
        logger.info(f"{self.path}: opened")
        self._keepalive_task = asyncio.get_running_loop().create_task(self._keepalive())
        if self._opened and not self._opened.done():
            self._opened.set_result(None)

    async def _wait_open(self) -> None:
        """Open the device if needed and wait until it is usable."""
        if self._state is DeviceState.OPEN:
            return
        if self._state in (DeviceState.CLOSED, DeviceState.CLOSING):
            self._start_open()
        await asyncio.shield(self._opened)

    async def _close_transport(self) -> None:
        await self._transport.close()
        if self._state is DeviceState.CLOSING:
            self._state = DeviceState.CLOSED
        self._close_task = None

    def _fail(self, error: Exception) -> None:
        logger.error(f"{self.path}: Error: {error}")
        self._broadcast(StreamEvent.connection(ConnectionState.ERROR, error=str(error)))
        self.force_close()

    async def _keepalive(self) -> None:
        while True:
            await asyncio.sleep(self.config.keepalive_interval)
            self._broadcast(KEEPALIVE)

    def _broadcast(self, event: StreamEvent) -> None:
        """Push an event to every attached session."""
        failed = []
        for session in self._sessions:
            try:
                session.sink.push(event)
            except Exception as e:
                logger.debug(f"{self.path}: failed to push to \"{session.origin}\": {e}")
                failed.append(session)

        for session in failed:
            self.detach(session)

    def _arm_idle_timer(self) -> None:
        self._cancel_idle_timer()
        self._idle_handle = asyncio.get_running_loop().call_later(
            self.config.idle_timeout, self._on_idle
        )

    def _cancel_idle_timer(self) -> None:
        if self._idle_handle:
            self._idle_handle.cancel()
            self._idle_handle = None

    def _on_idle(self) -> None:
        self._idle_handle = None
        if self._sessions or self._lock is not None:
            return
        if self._state in (DeviceState.OPENING, DeviceState.OPEN):
            logger.info(f"{self.path}: idle, closing")
            self.force_close()
