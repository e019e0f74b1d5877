"""
Transports connecting the bridge to physical serial devices.

A transport opens one device, delivers each received line to a listener and
writes command lines, waiting until every line has left the host before
returning.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Optional

import serial
import serial.tools.list_ports
import serial_asyncio

from serbridge.core.exceptions import TransportError

logger = logging.getLogger(__name__)


class TransportListener(ABC):
    """Receives events from a transport."""

    @abstractmethod
    def on_line(self, line: str) -> None:
        """A complete line was read from the device."""

    @abstractmethod
    def on_closed(self) -> None:
        """The device closed the connection."""

    @abstractmethod
    def on_error(self, error: Exception) -> None:
        """The connection failed."""


class Transport(ABC):
    """Abstract base class for device transports."""

    def __init__(self, listener: TransportListener):
        self.listener = listener

    @property
    @abstractmethod
    def is_open(self) -> bool:
        """Check if the connection is open."""

    @abstractmethod
    async def open(self, path: str, baud_rate: Optional[int] = None) -> None:
        """
        Open the device.

        Args:
            path: Platform device path
            baud_rate: Baud rate, or None for the transport default

        Raises:
            TransportError: If the device cannot be opened
        """

    @abstractmethod
    async def write_line(self, data: bytes) -> None:
        """
        Write one encoded line and wait until it has been flushed.

        Raises:
            TransportError: If the write fails
        """

    @abstractmethod
    async def close(self) -> None:
        """Close the device. Safe to call when already closed."""


class SerialTransport(Transport):
    """Transport backed by pyserial-asyncio."""

    DEFAULT_BAUD = 9600

    def __init__(self, listener: TransportListener, encoding: str = "utf-8"):
        super().__init__(listener)
        self.encoding = encoding
        self._reader: Optional[asyncio.StreamReader] = None
        self._writer: Optional[asyncio.StreamWriter] = None
        self._read_task: Optional[asyncio.Task] = None

    @property
    def is_open(self) -> bool:
        return self._writer is not None

    async def open(self, path: str, baud_rate: Optional[int] = None) -> None:
        if self.is_open:
            raise TransportError(f"{path} is already open")
        try:
            self._reader, self._writer = await serial_asyncio.open_serial_connection(
                url=path, baudrate=baud_rate or self.DEFAULT_BAUD
            )
        except (serial.SerialException, OSError, ValueError) as e:
            raise TransportError(str(e)) from e

        # drain() then only returns once the transport buffer is empty
        self._writer.transport.set_write_buffer_limits(high=0)
        self._read_task = asyncio.create_task(self._read_loop())

    async def write_line(self, data: bytes) -> None:
        if not self._writer:
            raise TransportError("Port is not open")
        try:
            self._writer.write(data)
            await self._writer.drain()
            port = self._writer.transport.serial
            await asyncio.get_running_loop().run_in_executor(None, port.flush)
        except (serial.SerialException, OSError, ConnectionError) as e:
            raise TransportError(str(e)) from e

    async def close(self) -> None:
        writer, self._writer = self._writer, None
        self._reader = None

        if self._read_task:
            self._read_task.cancel()
            try:
                await self._read_task
            except asyncio.CancelledError:
                pass
            self._read_task = None

        if writer:
            writer.close()
            try:
                await writer.wait_closed()
            except (serial.SerialException, OSError):
                pass

    async def _read_loop(self) -> None:
        """Read lines from the device and hand them to the listener."""
        reader = self._reader
        try:
            while True:
                raw = await reader.readline()
                if not raw:
                    break
                line = raw.decode(self.encoding, errors="replace").rstrip("\r\n")
                self.listener.on_line(line)
        except (serial.SerialException, OSError) as e:
            logger.error(f"Serial read error: {e}")
            self.listener.on_error(e)
            return
        self.listener.on_closed()


@dataclass
class PortInfo:
    """A serial port found during enumeration."""

    path: str
    metadata: dict[str, Any] = field(default_factory=dict)


def list_serial_ports() -> list[PortInfo]:
    """Enumerate serial ports present on this host."""
    ports = []
    for p in serial.tools.list_ports.comports():
        ports.append(
            PortInfo(
                path=p.device,
                metadata={
                    "description": p.description,
                    "hwid": p.hwid,
                    "manufacturer": p.manufacturer,
                    "product": p.product,
                    "serial_number": p.serial_number,
                    "vid": p.vid,
                    "pid": p.pid,
                    "location": p.location,
                },
            )
        )
    return ports
