"""
Registry of serial devices known to the bridge.

Maps stable device ids to their DeviceSessionManager. Managers are created
the first time a device is enumerated and dropped when it disappears.
"""

import asyncio
import logging
import re
from pathlib import Path
from typing import Callable, Iterable, Optional, Union

from serbridge.core.config import Config
from serbridge.core.exceptions import DeviceNotFound
from serbridge.core.models import Device
from serbridge.serial.session import DeviceSessionManager, LockToken, Session, Sink
from serbridge.serial.transport import (
    PortInfo,
    SerialTransport,
    Transport,
    TransportListener,
    list_serial_ports,
)

logger = logging.getLogger(__name__)

PROTOCOL_VERSION = "1"


def create_device_id(path: str) -> str:
    """
    Derive a URL-safe device id from a platform device path.

    "/dev/ttyUSB0" becomes "ttyUSB0" and "COM3" stays "COM3".
    """
    device_id = re.sub(r"^/dev/", "", path)
    device_id = device_id.replace(":", "")
    return device_id.replace("/", "-")


class DeviceRegistry:
    """Maps device ids to session managers."""

    def __init__(
        self,
        config: Optional[Config] = None,
        transport_factory: Optional[Callable[[TransportListener], Transport]] = None,
        port_lister: Callable[[], list[PortInfo]] = list_serial_ports,
    ):
        """
        Initialize device registry.

        Args:
            config: Bridge configuration
            transport_factory: Builds a transport for a manager; defaults to
                SerialTransport using the configured read encoding
            port_lister: Enumerates the ports present on the host
        """
        self.config = config or Config()
        self.port_lister = port_lister
        if transport_factory is None:
            encoding = self.config.serial.read_encoding

            def transport_factory(listener: TransportListener) -> Transport:
                return SerialTransport(listener, encoding=encoding)

        self.transport_factory = transport_factory
        self.managers: dict[str, DeviceSessionManager] = {}

    @property
    def traffic_log_dir(self) -> Optional[Path]:
        return self.config.traffic_log_dir

    async def refresh(self) -> list[dict]:
        """
        Enumerate ports, registering new devices and dropping vanished ones.

        Returns:
            Device descriptions in enumeration order
        """
        loop = asyncio.get_running_loop()
        ports = await loop.run_in_executor(None, self.port_lister)

        seen = []
        for port in ports:
            device_id = create_device_id(port.path)
            manager = self.managers.get(device_id)
            if manager is None:
                manager = self._create_manager(device_id, port)
                self.managers[device_id] = manager
                logger.info(f"Registered device {device_id} ({port.path})")
            else:
                manager.device.metadata = dict(port.metadata)
            seen.append(device_id)

        for device_id in list(self.managers):
            if device_id not in seen:
                logger.info(f"Device {device_id} disappeared")
                self.managers.pop(device_id).force_close()

        return [self.managers[device_id].device.to_dict() for device_id in seen]

    def _create_manager(self, device_id: str, port: PortInfo) -> DeviceSessionManager:
        device = Device(
            id=device_id,
            path=port.path,
            configured_baud_rate=self.config.serial.default_baud,
            metadata=dict(port.metadata),
        )
        return DeviceSessionManager(
            device,
            self.transport_factory,
            config=self.config.session,
            traffic_log_dir=self.traffic_log_dir,
            encoding=self.config.serial.read_encoding,
        )

    def get(self, device_id: str) -> DeviceSessionManager:
        """
        Get the manager for a device.

        Raises:
            DeviceNotFound: If no device has this id
        """
        manager = self.managers.get(device_id)
        if manager is None:
            raise DeviceNotFound(device_id)
        return manager

    def list_devices(self) -> list[dict]:
        """Describe registered devices without enumerating again."""
        return [m.device.to_dict() for m in self.managers.values()]

    # --- Operations by device id ---

    async def attach(self, device_id: str, sink: Sink, origin: str) -> Session:
        return self.get(device_id).attach(sink, origin)

    async def write(
        self,
        device_id: str,
        payload: Union[str, Iterable[str]],
        origin: str,
    ) -> LockToken:
        return await self.get(device_id).write(payload, origin)

    async def configure(self, device_id: str, baud_rate: Optional[int]) -> None:
        self.get(device_id).configure(baud_rate)

    async def force_close(self, device_id: str) -> None:
        self.get(device_id).force_close()

    async def close_all(self) -> None:
        """Close every device, waiting for their transports."""
        for manager in list(self.managers.values()):
            await manager.aclose()
