"""Configuration file loading and defaults."""

import logging
import tomllib
from dataclasses import dataclass, field
from pathlib import Path

logger = logging.getLogger(__name__)


@dataclass
class ServerConfig:
    host: str = "127.0.0.1"
    port: int = 8080
    enable_http_server: bool = True
    send_timeout: float = 0.5
    queue_size: int = 16  # per WebSocket client
    log_level: str = "INFO"

    def __post_init__(self) -> None:
        if not 0 < self.port < 65536:
            raise ValueError(f"port must be 1-65535, got {self.port}")
        if self.queue_size < 1:
            raise ValueError(f"queue_size must be at least 1, got {self.queue_size}")


@dataclass
class BLEConfig:
    scan_timeout: float = 5.0
    connect_timeout: float = 10.0
    reconnect_min: float = 1.0
    reconnect_max: float = 30.0
    liveness_interval: float = 1.0
    confirm_timeout: float = 1.0  # only with noninteractive_rescan

    def __post_init__(self) -> None:
        for name in ("scan_timeout", "connect_timeout", "reconnect_min", "liveness_interval", "confirm_timeout"):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive")
        if self.reconnect_max < self.reconnect_min:
            raise ValueError("reconnect_max must not be below reconnect_min")


@dataclass
class DeviceConfig:
    catalog_path: str = "devices.json"
    hrm_mac: str = ""
    hrm_index: int = 0  # 1-based, 0 means none
    accept_new_device: bool = False
    pin_device: bool = False
    noninteractive_rescan: bool = False


@dataclass
class LogConfig:
    enable_csv_log: bool = False
    csv_folder: str = ""


@dataclass
class Config:
    server: ServerConfig = field(default_factory=ServerConfig)
    ble: BLEConfig = field(default_factory=BLEConfig)
    device: DeviceConfig = field(default_factory=DeviceConfig)
    log: LogConfig = field(default_factory=LogConfig)


def load_config() -> Config:
    """Load the first config file found; any problem with it means defaults."""
    paths = [
        Path("./config.toml"),
        Path.home() / ".config" / "hr-relay" / "config.toml",
    ]

    path = next((p for p in paths if p.exists()), None)
    if path is None:
        return Config()

    try:
        with open(path, "rb") as f:
            return _parse_config(tomllib.load(f))
    except tomllib.TOMLDecodeError as e:
        logger.warning("Failed to parse config '%s': %s. Using defaults.", path, e)
    except TypeError as e:
        logger.warning("Unknown setting in config '%s': %s. Using defaults.", path, e)
    except ValueError as e:
        logger.warning("Invalid setting in config '%s': %s. Using defaults.", path, e)
    return Config()


def _parse_config(data: dict) -> Config:
    """Parse TOML dict into Config dataclass.

    Missing sections and keys keep their defaults.

    Raises:
        TypeError: A section holds an unknown key
        ValueError: A value is out of range
    """
    return Config(
        server=ServerConfig(**data.get("server", {})),
        ble=BLEConfig(**data.get("ble", {})),
        device=DeviceConfig(**data.get("device", {})),
        log=LogConfig(**data.get("log", {})),
    )
