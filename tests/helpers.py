"""Shared test helper functions for hr_relay tests."""

from __future__ import annotations

import asyncio
from collections.abc import Callable

from hr_relay.adaptors import BATTERY_CHAR_UUID, HR_CHAR_UUID, HR_SERVICE_UUID
from hr_relay.ble import Discovered, LinkLost, Notification
from hr_relay.catalog import Advertisement
from hr_relay.errors import LinkError
from hr_relay.hub import Hub


def make_hr_packet(
    bpm: int,
    *,
    is_16bit: bool = False,
    sensor_contact: bool | None = None,
    energy: int | None = None,
    rr_intervals: list[int] | None = None,
) -> bytes:
    """Build a BLE HR measurement packet.

    Args:
        bpm: Heart rate in BPM
        is_16bit: If True, use 16-bit BPM format
        sensor_contact: None=not supported, True=detected, False=not detected
        energy: Energy expended in joules (if supported)
        rr_intervals: RR intervals in 1/1024 second units
    """
    flags = 0
    if is_16bit:
        flags |= 0b1
    if sensor_contact is not None:
        flags |= 0b100
        if sensor_contact:
            flags |= 0b10
    if energy is not None:
        flags |= 0b1000
    if rr_intervals:
        flags |= 0b10000

    data = bytearray([flags])
    data.extend(bpm.to_bytes(2 if is_16bit else 1, "little"))
    if energy is not None:
        data.extend(energy.to_bytes(2, "little"))
    for rr in rr_intervals or []:
        data.extend(rr.to_bytes(2, "little"))
    return bytes(data)


def hr_advertisement(address: str, name: str = "HR Monitor") -> Advertisement:
    return Advertisement(address=address, name=name, service_uuids=(HR_SERVICE_UUID,))


class FakeLink:
    """Scripted stand-in for BleakLink."""

    def __init__(
        self,
        post: Callable,
        advertisements: list[Advertisement] | None = None,
        services: list[str] | None = None,
        notifiable: list[str] | None = None,
        battery: bytes | None = b"\x55",
    ):
        self.post = post
        self.advertisements = list(advertisements or [])
        self.services = [HR_SERVICE_UUID] if services is None else list(services)
        self.notifiable = [HR_CHAR_UUID, BATTERY_CHAR_UUID] if notifiable is None else list(notifiable)
        self.battery = battery
        self.connect_errors: list[Exception] = []
        self.connect_delay = 0.0
        self.scan_errors: list[Exception] = []
        self.connected_address: str | None = None
        self.connects: list[tuple[str, bool]] = []
        self.notifying: list[str] = []
        self.scan_count = 0
        self.scanning = False
        self.described = False

    async def start_scan(self) -> None:
        if self.scan_errors:
            raise self.scan_errors.pop(0)
        self.scan_count += 1
        self.scanning = True
        for adv in self.advertisements:
            self.post(Discovered(adv))

    async def stop_scan(self) -> None:
        self.scanning = False

    async def connect(self, address: str, timeout: float, pair: bool = False) -> None:
        self.connects.append((address, pair))
        if self.connect_delay:
            await asyncio.sleep(self.connect_delay)
        if self.connect_errors:
            raise self.connect_errors.pop(0)
        self.connected_address = address

    @property
    def is_connected(self) -> bool:
        return self.connected_address is not None

    def service_uuids(self) -> list[str]:
        return list(self.services)

    def notifiable_uuids(self) -> list[str]:
        return list(self.notifiable)

    async def read(self, uuid: str) -> bytes:
        if self.battery is None:
            raise LinkError("characteristic not found")
        return self.battery

    async def start_notify(self, uuid: str) -> None:
        self.notifying.append(uuid)

    def describe(self) -> None:
        self.described = True

    async def disconnect(self) -> None:
        self.connected_address = None
        self.notifying.clear()

    # Drivers used by tests

    def notify(self, uuid: str, data: bytes) -> None:
        self.post(Notification(uuid, data))

    def drop(self) -> None:
        self.connected_address = None
        self.post(LinkLost("signal lost"))


class RecordingHub(Hub):
    """Hub that remembers everything published to it."""

    def __init__(self) -> None:
        super().__init__(queue_size=256)
        self.published = []

    def publish(self, reading) -> None:
        self.published.append(reading)
        super().publish(reading)

    def heart_rates(self) -> list[int]:
        return [r.data.heart_rate_bpm for r in self.published if r.data is not None]


async def wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    """Poll ``predicate`` until true or fail after ``timeout`` seconds."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("Condition not met in time")
        await asyncio.sleep(0.002)
