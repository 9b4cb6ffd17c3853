"""Normalized heart rate readings exchanged between the manager and the hub."""

from __future__ import annotations

from dataclasses import dataclass
from time import time_ns


def now_ms() -> int:
    """Current wall clock time in epoch milliseconds."""
    return time_ns() // 1_000_000


@dataclass(frozen=True)
class HeartRateData:
    """Values reported by a connected strap."""

    heart_rate_bpm: int
    skin_contact: bool | None = None  # None if the strap does not report contact
    battery_pct: int | None = None


@dataclass(frozen=True)
class Reading:
    """A heart rate observation, or a disconnect event when ``data`` is None."""

    timestamp_ms: int
    data: HeartRateData | None = None

    @classmethod
    def disconnected(cls, timestamp_ms: int | None = None) -> Reading:
        return cls(timestamp_ms=now_ms() if timestamp_ms is None else timestamp_ms)

    @classmethod
    def connected(cls, data: HeartRateData, timestamp_ms: int | None = None) -> Reading:
        return cls(timestamp_ms=now_ms() if timestamp_ms is None else timestamp_ms, data=data)

    @property
    def is_connected(self) -> bool:
        return self.data is not None

    def to_dict(self) -> dict:
        """Wire representation shared by every transport and the log."""
        if self.data is None:
            return {"timestamp": self.timestamp_ms, "status": "disconnected"}
        return {
            "timestamp": self.timestamp_ms,
            "status": "connected",
            "heart_rate": self.data.heart_rate_bpm,
            "skin_contact": self.data.skin_contact,
            "battery": self.data.battery_pct,
        }
