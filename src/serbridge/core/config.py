"""
Configuration management for the serial bridge.

Loads configuration from YAML files with environment variable overrides.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

import yaml


# Default configuration paths
DEFAULT_CONFIG_DIR = Path.home() / ".config" / "serbridge"
DEFAULT_CONFIG_FILE = DEFAULT_CONFIG_DIR / "config.yaml"
SYSTEM_CONFIG_FILE = Path("/etc/serbridge/config.yaml")


def resolve_bind(bind: str) -> str:
    """Translate the 'any' shorthand into the all-interfaces address."""
    return "::" if bind == "any" else bind


@dataclass
class ServerConfig:
    """HTTP server configuration."""

    bind: str = "127.0.0.1"
    port: int = 9615
    static_dir: Optional[Path] = None


@dataclass
class SessionConfig:
    """Per-device session behaviour."""

    idle_timeout: float = 5.0
    keepalive_interval: float = 50.0
    max_sleep_ms: int = 10000
    max_body_bytes: int = 4096


@dataclass
class SerialConfig:
    """Serial port configuration."""

    default_baud: Optional[int] = None
    read_encoding: str = "utf-8"


@dataclass
class Config:
    """Main configuration for the serial bridge."""

    server: ServerConfig = field(default_factory=ServerConfig)
    session: SessionConfig = field(default_factory=SessionConfig)
    serial: SerialConfig = field(default_factory=SerialConfig)
    traffic_log_dir: Optional[Path] = None
    log_level: str = "INFO"

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Config":
        """Create Config from dictionary."""
        server_data = data.get("server", {})
        session_data = data.get("session", {})
        serial_data = data.get("serial", {})

        static_dir = server_data.get("static_dir")
        server = ServerConfig(
            bind=server_data.get("bind", "127.0.0.1"),
            port=server_data.get("port", 9615),
            static_dir=Path(static_dir) if static_dir else None,
        )

        session = SessionConfig(
            idle_timeout=session_data.get("idle_timeout", 5.0),
            keepalive_interval=session_data.get("keepalive_interval", 50.0),
            max_sleep_ms=session_data.get("max_sleep_ms", 10000),
            max_body_bytes=session_data.get("max_body_bytes", 4096),
        )

        serial = SerialConfig(
            default_baud=serial_data.get("default_baud"),
            read_encoding=serial_data.get("read_encoding", "utf-8"),
        )

        traffic_log_dir = data.get("traffic_log_dir")
        return cls(
            server=server,
            session=session,
            serial=serial,
            traffic_log_dir=Path(traffic_log_dir) if traffic_log_dir else None,
            log_level=data.get("log_level", "INFO"),
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert Config to dictionary."""
        return {
            "server": {
                "bind": self.server.bind,
                "port": self.server.port,
                "static_dir": str(self.server.static_dir) if self.server.static_dir else None,
            },
            "session": {
                "idle_timeout": self.session.idle_timeout,
                "keepalive_interval": self.session.keepalive_interval,
                "max_sleep_ms": self.session.max_sleep_ms,
                "max_body_bytes": self.session.max_body_bytes,
            },
            "serial": {
                "default_baud": self.serial.default_baud,
                "read_encoding": self.serial.read_encoding,
            },
            "traffic_log_dir": str(self.traffic_log_dir) if self.traffic_log_dir else None,
            "log_level": self.log_level,
        }


def load_config(config_path: Optional[Path] = None) -> Config:
    """
    Load configuration from YAML file.

    Search order:
    1. Explicit path if provided
    2. SERBRIDGE_CONFIG environment variable
    3. ~/.config/serbridge/config.yaml
    4. /etc/serbridge/config.yaml
    5. Default values

    Environment variable overrides:
    - SERBRIDGE_BIND: Override server.bind
    - SERBRIDGE_PORT: Override server.port
    - SERBRIDGE_STATIC_DIR: Override server.static_dir
    - SERBRIDGE_IDLE_TIMEOUT: Override session.idle_timeout
    - SERBRIDGE_LOG_LEVEL: Override log_level

    Args:
        config_path: Optional explicit path to config file

    Returns:
        Loaded configuration
    """
    if config_path:
        paths_to_try = [config_path]
    else:
        env_path = os.environ.get("SERBRIDGE_CONFIG")
        paths_to_try = []
        if env_path:
            paths_to_try.append(Path(env_path))
        paths_to_try.extend([DEFAULT_CONFIG_FILE, SYSTEM_CONFIG_FILE])

    config_data = {}
    for path in paths_to_try:
        if path.exists():
            try:
                with open(path) as f:
                    config_data = yaml.safe_load(f) or {}
                break
            except (OSError, yaml.YAMLError):
                continue

    config = Config.from_dict(config_data)
    return _apply_env_overrides(config)


def _apply_env_overrides(config: Config) -> Config:
    """Apply environment variable overrides to config."""
    if "SERBRIDGE_BIND" in os.environ:
        config.server.bind = os.environ["SERBRIDGE_BIND"]

    if "SERBRIDGE_PORT" in os.environ:
        try:
            config.server.port = int(os.environ["SERBRIDGE_PORT"])
        except ValueError:
            pass

    if "SERBRIDGE_STATIC_DIR" in os.environ:
        config.server.static_dir = Path(os.environ["SERBRIDGE_STATIC_DIR"])

    if "SERBRIDGE_IDLE_TIMEOUT" in os.environ:
        try:
            config.session.idle_timeout = float(os.environ["SERBRIDGE_IDLE_TIMEOUT"])
        except ValueError:
            pass

    if "SERBRIDGE_LOG_LEVEL" in os.environ:
        config.log_level = os.environ["SERBRIDGE_LOG_LEVEL"]

    return config

