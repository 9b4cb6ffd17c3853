"""Vendor adaptors that turn notification bytes into heart rate data.

An adaptor is any object satisfying :class:`Adaptor`. The registry probes
them in registration order unless an adaptor id is forced.
"""

import logging
from collections.abc import Collection, Iterable
from typing import Protocol

from bleak.uuids import normalize_uuid_str

from .errors import DecodeError, NoCompatibleAdaptor, UnknownAdaptor
from .parser import parse_battery_level, parse_heart_rate
from .reading import HeartRateData

logger = logging.getLogger(__name__)

HR_SERVICE_UUID = normalize_uuid_str("180D")
HR_CHAR_UUID = normalize_uuid_str("2A37")
BATTERY_CHAR_UUID = normalize_uuid_str("2A19")

DEBUG_ADAPTOR_ID = 0
HR_SERVICE_ADAPTOR_ID = 1


class Adaptor(Protocol):
    adaptor_id: int
    name: str
    battery_uuid: str | None

    def matches(self, service_uuids: Collection[str]) -> bool: ...

    def notify_uuids(self, available: Collection[str]) -> list[str]: ...

    def decode(self, data: bytes) -> HeartRateData: ...

    def decode_battery(self, data: bytes) -> int: ...


def _normalize(uuids: Iterable[str]) -> set[str]:
    return {normalize_uuid_str(u) for u in uuids}


class HeartRateServiceAdaptor:
    """Straps implementing the standard Heart Rate service (0x180D)."""

    adaptor_id = HR_SERVICE_ADAPTOR_ID
    name = "heart-rate-service"
    battery_uuid = BATTERY_CHAR_UUID

    def matches(self, service_uuids: Collection[str]) -> bool:
        return HR_SERVICE_UUID in _normalize(service_uuids)

    def notify_uuids(self, available: Collection[str]) -> list[str]:
        notifiable = _normalize(available)
        return [u for u in (HR_CHAR_UUID, BATTERY_CHAR_UUID) if u in notifiable]

    def decode(self, data: bytes) -> HeartRateData:
        measurement = parse_heart_rate(data)
        return HeartRateData(heart_rate_bpm=measurement.bpm, skin_contact=measurement.sensor_contact)

    def decode_battery(self, data: bytes) -> int:
        return parse_battery_level(data)


class DebugAdaptor:
    """Dumps every notification of every characteristic.

    Only used when forced; probing never selects it.
    """

    adaptor_id = DEBUG_ADAPTOR_ID
    name = "debug"
    battery_uuid = BATTERY_CHAR_UUID

    def matches(self, service_uuids: Collection[str]) -> bool:
        return False

    def notify_uuids(self, available: Collection[str]) -> list[str]:
        return sorted(_normalize(available))

    def decode(self, data: bytes) -> HeartRateData:
        logger.info("Notification: %s", data.hex(" ") or "<empty>")
        measurement = parse_heart_rate(data)
        return HeartRateData(heart_rate_bpm=measurement.bpm, skin_contact=measurement.sensor_contact)

    def decode_battery(self, data: bytes) -> int:
        logger.info("Battery notification: %s", data.hex(" ") or "<empty>")
        return parse_battery_level(data)


class AdaptorRegistry:
    """Ordered collection of adaptors with a selection policy."""

    def __init__(self, adaptors: Iterable[Adaptor]):
        self._adaptors: list[Adaptor] = []
        for adaptor in adaptors:
            if any(a.adaptor_id == adaptor.adaptor_id for a in self._adaptors):
                raise ValueError(f"Duplicate adaptor id {adaptor.adaptor_id}")
            self._adaptors.append(adaptor)

    @property
    def ids(self) -> list[int]:
        return [a.adaptor_id for a in self._adaptors]

    def get(self, adaptor_id: int) -> Adaptor:
        for adaptor in self._adaptors:
            if adaptor.adaptor_id == adaptor_id:
                return adaptor
        raise UnknownAdaptor(f"No adaptor with id {adaptor_id}")

    def select(self, service_uuids: Collection[str], forced_id: int | None = None) -> Adaptor:
        """Pick the adaptor for a device advertising ``service_uuids``.

        A forced id is used unconditionally. Otherwise the first adaptor
        whose ``matches`` accepts the services wins.

        Raises:
            UnknownAdaptor: The forced id is not registered
            NoCompatibleAdaptor: No adaptor matches
        """
        if forced_id is not None:
            return self.get(forced_id)

        for adaptor in self._adaptors:
            if adaptor.matches(service_uuids):
                logger.debug("Adaptor %s matched", adaptor.name)
                return adaptor
        raise NoCompatibleAdaptor(f"No adaptor matches services {sorted(service_uuids)}")

    def any_matches(self, service_uuids: Collection[str]) -> bool:
        return any(a.matches(service_uuids) for a in self._adaptors)


DEFAULT_REGISTRY = AdaptorRegistry([HeartRateServiceAdaptor(), DebugAdaptor()])
