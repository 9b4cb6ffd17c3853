"""BLE heart rate relay: one sensor, many consumers."""

from .adaptors import DEFAULT_REGISTRY, AdaptorRegistry, DebugAdaptor, HeartRateServiceAdaptor
from .catalog import DeviceCatalog, SelectionPolicy, SensorIdentity
from .config import Config, load_config
from .csv_log import CsvLogger
from .hub import Hub, Subscription
from .log import setup_logging
from .manager import ConnectionManager
from .parser import HeartRateMeasurement, parse_battery_level, parse_heart_rate
from .reading import HeartRateData, Reading
from .server import RelayServer

__all__ = [
    "parse_heart_rate",
    "parse_battery_level",
    "HeartRateMeasurement",
    "HeartRateData",
    "Reading",
    "AdaptorRegistry",
    "DEFAULT_REGISTRY",
    "HeartRateServiceAdaptor",
    "DebugAdaptor",
    "DeviceCatalog",
    "SelectionPolicy",
    "SensorIdentity",
    "ConnectionManager",
    "Hub",
    "Subscription",
    "CsvLogger",
    "Config",
    "load_config",
    "setup_logging",
    "RelayServer",
]
