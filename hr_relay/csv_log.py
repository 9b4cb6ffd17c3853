"""CSV log of every published reading."""

import asyncio
import csv
import logging
from datetime import datetime, timezone
from pathlib import Path

from .errors import LogWriteFailure
from .reading import Reading

logger = logging.getLogger(__name__)

HEADER = ["timestamp (utc)", "time (local)", "status", "heart rate (bpm)", "skin contact", "battery (%)"]


def _cell(value: object) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "yes" if value else "no"
    return str(value)


def format_row(reading: Reading) -> list[str]:
    moment = datetime.fromtimestamp(reading.timestamp_ms / 1000, tz=timezone.utc)
    row = [
        moment.isoformat(timespec="milliseconds"),
        moment.astimezone().strftime("%H:%M:%S"),
    ]
    if reading.data is None:
        return row + ["disconnected", "", "", ""]
    return row + [
        "connected",
        str(reading.data.heart_rate_bpm),
        _cell(reading.data.skin_contact),
        _cell(reading.data.battery_pct),
    ]


class CsvLogger:
    """Appends one row per reading to a file created on first write."""

    def __init__(self, folder: Path):
        self.folder = folder
        self.path: Path | None = None

    def _append(self, row: list[str]) -> None:
        if self.path is None:
            name = f"heartrate-log-{datetime.now().strftime('%Y-%m-%d %H-%M-%S')}.csv"
            path = self.folder / name
            with open(path, "a", newline="", encoding="utf-8") as f:
                csv.writer(f).writerow(HEADER)
            self.path = path
            logger.info("Logging readings to %s", path)

        with open(self.path, "a", newline="", encoding="utf-8") as f:
            csv.writer(f).writerow(row)

    async def write(self, reading: Reading) -> None:
        try:
            await asyncio.to_thread(self._append, format_row(reading))
        except OSError as e:
            raise LogWriteFailure(f"Could not write to {self.path or self.folder}: {e}") from e

    async def close(self) -> None:
        if self.path is not None:
            logger.debug("CSV log closed: %s", self.path)
