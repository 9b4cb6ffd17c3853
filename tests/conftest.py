"""Shared test fixtures for hr_relay tests."""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest

from hr_relay.catalog import DeviceCatalog, SelectionPolicy, SensorIdentity
from hr_relay.manager import ConnectionManager
from tests.helpers import FakeLink, RecordingHub, make_hr_packet

STRAP_ADDRESS = "AA:BB:CC:DD:EE:FF"
OTHER_ADDRESS = "11:22:33:44:55:66"


@pytest.fixture
def hr_packet_simple() -> bytes:
    """Simple 8-bit BPM packet (72 bpm)."""
    return make_hr_packet(72)


@pytest.fixture
def hr_packet_16bit() -> bytes:
    """16-bit BPM packet (180 bpm)."""
    return make_hr_packet(180, is_16bit=True)


@pytest.fixture
def hr_packet_with_contact() -> bytes:
    """Packet with sensor contact detected."""
    return make_hr_packet(85, sensor_contact=True)


@pytest.fixture
def hr_packet_full() -> bytes:
    """Packet with all fields populated."""
    return make_hr_packet(
        150,
        is_16bit=True,
        sensor_contact=True,
        energy=1500,
        rr_intervals=[800, 850],
    )


@pytest.fixture
def strap() -> SensorIdentity:
    return SensorIdentity(display_name="Polar H10", address=STRAP_ADDRESS)


@pytest.fixture
def catalog(strap) -> DeviceCatalog:
    return DeviceCatalog([strap])


@pytest.fixture
def hub() -> RecordingHub:
    return RecordingHub()


@pytest.fixture
def make_manager(hub, catalog):
    """Build a ConnectionManager wired to a FakeLink; returns (manager, link)."""

    def factory(
        advertisements=None,
        policy: SelectionPolicy | None = None,
        catalog_override: DeviceCatalog | None = None,
        **kwargs,
    ):
        links: list[FakeLink] = []
        link_options = {
            key: kwargs.pop(key) for key in ("services", "notifiable", "battery") if key in kwargs
        }

        def link_factory(post):
            link = FakeLink(post, advertisements=advertisements, **link_options)
            links.append(link)
            return link

        options = {
            "scan_timeout": 0.05,
            "connect_timeout": 1.0,
            "reconnect_min": 0.01,
            "reconnect_max": 0.05,
            "liveness_interval": 0.05,
            "confirm_timeout": 0.05,
        }
        options.update(kwargs)
        manager = ConnectionManager(
            hub,
            catalog if catalog_override is None else catalog_override,
            policy,
            link_factory=link_factory,
            **options,
        )
        return manager, links[0]

    return factory


# Mock fixtures for WebSocket
@pytest.fixture
def mock_websocket():
    """Create a mock WebSocket connection."""
    ws = AsyncMock()
    ws.send = AsyncMock()
    ws.close = AsyncMock()
    ws.remote_address = ("127.0.0.1", 50000)
    return ws


# Config fixtures
@pytest.fixture
def sample_config_dict() -> dict:
    """Sample config dict as would be parsed from TOML."""
    return {
        "server": {
            "host": "0.0.0.0",
            "port": 9000,
            "enable_http_server": False,
            "send_timeout": 1.0,
            "queue_size": 4,
            "log_level": "DEBUG",
        },
        "ble": {
            "scan_timeout": 10.0,
            "connect_timeout": 20.0,
            "reconnect_min": 2.0,
            "reconnect_max": 60.0,
            "liveness_interval": 2.0,
            "confirm_timeout": 3.0,
        },
        "device": {
            "catalog_path": "/tmp/devices.json",
            "hrm_mac": "11:22:33:44:55:66",
            "hrm_index": 2,
            "accept_new_device": True,
            "pin_device": True,
            "noninteractive_rescan": True,
        },
        "log": {
            "enable_csv_log": True,
            "csv_folder": "/var/log/hr",
        },
    }


@pytest.fixture
def partial_config_dict() -> dict:
    """Partial config dict with some values missing."""
    return {
        "server": {"port": 8081},
        "ble": {"scan_timeout": 3.0},
    }
