"""
Transcript logging of serial traffic.

Each device connection gets its own timestamped file recording every line
read from and written to the device.
"""

from datetime import datetime
from pathlib import Path
from typing import Optional


class TrafficLogger:
    """Logs all serial traffic of one connection to a timestamped file."""

    def __init__(self, log_dir: Path, device_id: str):
        self.log_dir = log_dir
        self.device_id = device_id
        self.log_file: Optional[Path] = None
        self._file_handle = None

    @property
    def is_active(self) -> bool:
        return self._file_handle is not None

    def start(self) -> Path:
        """Start logging, returns log file path."""
        self.log_dir.mkdir(parents=True, exist_ok=True)
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        self.log_file = self.log_dir / f"{self.device_id}_{timestamp}.log"

        self._file_handle = open(self.log_file, "a", buffering=1)  # Line buffered
        self._file_handle.write(f"# Device: {self.device_id}\n")
        self._file_handle.write(f"# Started: {datetime.now().isoformat()}\n")
        self._file_handle.write("# Direction: >> = from device, << = to device\n")
        self._file_handle.write("#" + "=" * 60 + "\n")
        return self.log_file

    def log_received(self, line: str) -> None:
        """Log a line read from the device."""
        if self._file_handle:
            timestamp = datetime.now().strftime("%H:%M:%S.%f")[:-3]
            self._file_handle.write(f"[{timestamp}] >> {line!r}\n")

    def log_sent(self, line: str, origin: str) -> None:
        """Log a line written to the device."""
        if self._file_handle:
            timestamp = datetime.now().strftime("%H:%M:%S.%f")[:-3]
            self._file_handle.write(f"[{timestamp}] << [{origin}] {line!r}\n")

    def stop(self) -> None:
        """Stop logging."""
        if self._file_handle:
            self._file_handle.write("#" + "=" * 60 + "\n")
            self._file_handle.write(f"# Ended: {datetime.now().isoformat()}\n")
            self._file_handle.close()
            self._file_handle = None
