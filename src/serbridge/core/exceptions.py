"""
Exceptions raised by the serial bridge.

The web layer maps each of these onto an HTTP status code.
"""


class BridgeError(Exception):
    """Base class for all bridge errors."""


class DeviceNotFound(BridgeError):
    """No device is registered under the requested id."""

    def __init__(self, device_id: str):
        super().__init__(f"Device '{device_id}' not found")
        self.device_id = device_id


class WriteConflict(BridgeError):
    """Another writer currently holds the device's write lock."""


class DeviceUnavailable(BridgeError):
    """The device could not be opened or failed while in use."""


class InvalidPayload(BridgeError):
    """A write payload could not be parsed."""


class TransportError(BridgeError):
    """Raised by transports when the underlying I/O fails."""
