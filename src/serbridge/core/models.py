"""
Data models for the serial bridge.
"""

from dataclasses import dataclass, field
from typing import Any, Optional


@dataclass
class Device:
    """One physical serial endpoint."""

    id: str
    path: str
    configured_baud_rate: Optional[int] = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to the JSON shape returned by device listings."""
        data = dict(self.metadata)
        data["id"] = self.id
        data["path"] = self.path
        data["baud_rate"] = self.configured_baud_rate
        return data
