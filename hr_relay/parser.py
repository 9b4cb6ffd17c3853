"""Byte-level parsers for the standard BLE Heart Rate and Battery characteristics."""

from dataclasses import dataclass
from enum import IntFlag

from .errors import DecodeError


class HRFlags(IntFlag):
    """Flags byte of the Heart Rate Measurement characteristic (0x2A37)."""

    UINT16 = 0b1
    CONTACT_DETECTED = 0b10
    CONTACT_SUPPORTED = 0b100
    ENERGY_EXPENDED = 0b1000
    RR_INTERVALS = 0b10000


@dataclass
class HeartRateMeasurement:
    """Parsed heart rate measurement data."""

    bpm: int
    sensor_contact: bool | None  # None if not supported
    energy_expended: int | None  # Joules, if present
    rr_count: int  # RR intervals are validated but not converted


def parse_heart_rate(data: bytes) -> HeartRateMeasurement:
    """Parse a Heart Rate Measurement notification.

    Raises:
        DecodeError: If data is empty, truncated or has a dangling RR byte
    """
    if not data:
        raise DecodeError("Empty HR data received")

    flags = HRFlags(data[0] & 0b11111)
    hr_size = 2 if HRFlags.UINT16 in flags else 1
    offset = 1

    required = offset + hr_size + (2 if HRFlags.ENERGY_EXPENDED in flags else 0)
    if len(data) < required:
        raise DecodeError(f"HR data too short: {len(data)} bytes, need {required}")

    bpm = int.from_bytes(data[offset : offset + hr_size], "little")
    offset += hr_size

    sensor_contact = None
    if HRFlags.CONTACT_SUPPORTED in flags:
        sensor_contact = HRFlags.CONTACT_DETECTED in flags

    energy_expended = None
    if HRFlags.ENERGY_EXPENDED in flags:
        energy_expended = int.from_bytes(data[offset : offset + 2], "little")
        offset += 2

    rr_count = 0
    if HRFlags.RR_INTERVALS in flags:
        remaining = len(data) - offset
        if remaining % 2:
            raise DecodeError(f"RR interval list has odd length {remaining}")
        rr_count = remaining // 2

    return HeartRateMeasurement(
        bpm=bpm,
        sensor_contact=sensor_contact,
        energy_expended=energy_expended,
        rr_count=rr_count,
    )


def parse_battery_level(data: bytes) -> int:
    """Parse a Battery Level value (0x2A19) in percent."""
    if not data:
        raise DecodeError("Empty battery level received")
    level = data[0]
    if level > 100:
        raise DecodeError(f"Battery level out of range: {level}")
    return level
