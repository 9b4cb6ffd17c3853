"""BLE radio access: scanning, connecting and notifications via bleak.

Everything the radio reports is posted as a :data:`LinkEvent` to a single
callback, which the connection manager feeds into its event queue.
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass

from bleak import BleakClient, BleakScanner
from bleak.backends.device import BLEDevice
from bleak.backends.scanner import AdvertisementData
from bleak.exc import BleakBluetoothNotAvailableError, BleakError

from .catalog import Advertisement
from .errors import LinkError, LinkTimeout, PairingRejected, RadioUnavailable

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Discovered:
    advertisement: Advertisement


@dataclass(frozen=True)
class Notification:
    uuid: str
    data: bytes


@dataclass(frozen=True)
class LinkLost:
    reason: str


LinkEvent = Discovered | Notification | LinkLost
PostCallback = Callable[[LinkEvent], None]


class BleakLink:
    """Exclusive owner of the radio for one connection manager."""

    def __init__(self, post: PostCallback):
        self._post = post
        self._scanner: BleakScanner | None = None
        self._client: BleakClient | None = None

    def _detection_callback(self, device: BLEDevice, adv: AdvertisementData) -> None:
        self._post(
            Discovered(
                Advertisement(
                    address=device.address,
                    name=device.name or adv.local_name,
                    service_uuids=tuple(adv.service_uuids or ()),
                )
            )
        )

    def _disconnected_callback(self, client: BleakClient) -> None:
        if client is self._client:
            self._post(LinkLost("peripheral disconnected"))

    async def start_scan(self) -> None:
        """Start posting Discovered events.

        Raises:
            RadioUnavailable: No usable Bluetooth adapter
            LinkError: The scanner refused to start, e.g. a scan already in progress
        """
        self._scanner = BleakScanner(detection_callback=self._detection_callback)
        try:
            await self._scanner.start()
        except BleakBluetoothNotAvailableError as e:
            self._scanner = None
            raise RadioUnavailable(str(e)) from e
        except (BleakError, OSError) as e:
            self._scanner = None
            raise LinkError(f"Could not start scanning: {e}") from e

    async def stop_scan(self) -> None:
        if self._scanner is None:
            return
        scanner, self._scanner = self._scanner, None
        try:
            await scanner.stop()
        except BleakError as e:
            logger.debug("Stopping scan failed: %s", e)

    async def connect(self, address: str, timeout: float, pair: bool = False) -> None:
        """Connect to ``address``, pairing first if requested.

        Raises:
            LinkTimeout: The peripheral did not answer in time
            PairingRejected: Pairing was refused
            LinkError: Any other connection failure
            RadioUnavailable: No usable Bluetooth adapter
        """
        self._client = BleakClient(address, disconnected_callback=self._disconnected_callback, timeout=timeout)
        try:
            await self._client.connect()
        except BleakBluetoothNotAvailableError as e:
            await self.disconnect()
            raise RadioUnavailable(str(e)) from e
        except TimeoutError as e:
            await self.disconnect()
            raise LinkTimeout(f"Timed out connecting to {address}") from e
        except (BleakError, OSError) as e:
            await self.disconnect()
            raise LinkError(f"Could not connect to {address}: {e}") from e

        if pair:
            try:
                await self._client.pair()
            except NotImplementedError:
                logger.debug("Backend pairs implicitly, skipping explicit pairing")
            except (BleakError, OSError) as e:
                await self.disconnect()
                raise PairingRejected(f"Pairing with {address} failed: {e}") from e

    @property
    def is_connected(self) -> bool:
        return self._client is not None and self._client.is_connected

    def _characteristics(self) -> list:
        if self._client is None:
            return []
        return [char for service in self._client.services for char in service.characteristics]

    def service_uuids(self) -> list[str]:
        if self._client is None:
            return []
        return [service.uuid for service in self._client.services]

    def notifiable_uuids(self) -> list[str]:
        return [
            char.uuid
            for char in self._characteristics()
            if "notify" in char.properties or "indicate" in char.properties
        ]

    async def read(self, uuid: str) -> bytes:
        if self._client is None:
            raise LinkError("Not connected")
        try:
            return bytes(await self._client.read_gatt_char(uuid))
        except (BleakError, OSError) as e:
            raise LinkError(f"Reading {uuid} failed: {e}") from e

    async def start_notify(self, uuid: str) -> None:
        if self._client is None:
            raise LinkError("Not connected")

        def handler(_: object, data: bytearray) -> None:
            self._post(Notification(uuid, bytes(data)))

        try:
            await self._client.start_notify(uuid, handler)
        except (BleakError, OSError) as e:
            raise LinkError(f"Subscribing to {uuid} failed: {e}") from e

    def describe(self) -> None:
        """Log every service and characteristic of the connected device."""
        if self._client is None:
            return
        logger.info("Device %s services:", self._client.address)
        for service in sorted(self._client.services, key=lambda s: s.uuid):
            logger.info("  %s (%s)", service.uuid, service.description)
            for char in service.characteristics:
                logger.info("    %s %s [%s]", char.uuid, char.description, ", ".join(char.properties))

    async def disconnect(self) -> None:
        """Close the connection; safe to call when not connected."""
        client, self._client = self._client, None
        if client is None:
            return
        try:
            if client.is_connected:
                await client.disconnect()
        except (BleakError, OSError, TimeoutError) as e:
            logger.debug("Disconnect failed: %s", e)
