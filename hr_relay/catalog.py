"""Known sensors and the rules for choosing which one to connect to."""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Callable, Iterable, Iterator, Sequence
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)

MAC_PATTERN = re.compile(r"^([0-9A-F]{2}:){5}[0-9A-F]{2}$")


def normalize_address(address: str) -> str:
    return address.strip().upper()


def is_mac_address(address: str) -> bool:
    return MAC_PATTERN.match(normalize_address(address)) is not None


@dataclass(frozen=True)
class SensorIdentity:
    display_name: str
    address: str
    forced_adaptor_id: int | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "address", normalize_address(self.address))


@dataclass(frozen=True)
class Advertisement:
    """A peripheral seen during a scan."""

    address: str
    name: str | None
    service_uuids: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "address", normalize_address(self.address))


@dataclass(frozen=True)
class Candidate:
    identity: SensorIdentity
    known: bool
    choices: tuple[SensorIdentity, ...] = ()  # unknown devices the user may pick from


class DeviceCatalog:
    """Ordered set of known sensors, keyed by address.

    Persisted as ``{"hrm_list": [{"name": ..., "mac": ..., "adaptor_id": ...}]}``.
    """

    def __init__(self, entries: Iterable[SensorIdentity] = (), path: Path | None = None):
        self.path = path
        self._entries: list[SensorIdentity] = []
        for entry in entries:
            if self.contains(entry.address):
                logger.warning("Duplicate catalog entry for %s ignored", entry.address)
                continue
            self._entries.append(entry)

    @classmethod
    def load(cls, path: Path) -> DeviceCatalog:
        """Load the catalog from ``path``; an unreadable file yields an empty catalog."""
        if not path.exists():
            return cls(path=path)

        try:
            with open(path, encoding="utf-8") as f:
                data = json.load(f)
            entries = [
                SensorIdentity(
                    display_name=str(item.get("name", "")),
                    address=item["mac"],
                    forced_adaptor_id=item.get("adaptor_id"),
                )
                for item in data.get("hrm_list", [])
            ]
        except (OSError, json.JSONDecodeError, AttributeError, KeyError, TypeError) as e:
            logger.warning("Failed to load device catalog '%s': %s. Starting empty.", path, e)
            return cls(path=path)

        return cls(entries, path=path)

    def save(self) -> None:
        if self.path is None:
            return
        hrm_list = []
        for entry in self._entries:
            item: dict[str, str | int] = {"name": entry.display_name, "mac": entry.address}
            if entry.forced_adaptor_id is not None:
                item["adaptor_id"] = entry.forced_adaptor_id
            hrm_list.append(item)
        with open(self.path, "w", encoding="utf-8") as f:
            json.dump({"hrm_list": hrm_list}, f, indent=2)

    def add(self, identity: SensorIdentity) -> bool:
        """Append a new device and persist the catalog.

        Returns False if a device with the same address is already known.
        """
        if self.contains(identity.address):
            return False
        logger.info("Adding new device %s (%s)", identity.display_name, identity.address)
        self._entries.append(identity)
        try:
            self.save()
        except OSError as e:
            logger.error("Error while saving device catalog: %s", e)
        return True

    def find(self, address: str) -> SensorIdentity | None:
        address = normalize_address(address)
        for entry in self._entries:
            if entry.address == address:
                return entry
        return None

    def contains(self, address: str) -> bool:
        return self.find(address) is not None

    def by_index(self, index: int) -> SensorIdentity | None:
        """Entry at a 1-based index."""
        if 1 <= index <= len(self._entries):
            return self._entries[index - 1]
        return None

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[SensorIdentity]:
        return iter(list(self._entries))


@dataclass
class SelectionPolicy:
    hrm_mac: str | None = None
    hrm_index: int | None = None
    accept_new_device: bool = False
    pin_device: bool = False
    noninteractive_rescan: bool = False


def resolve_target(catalog: DeviceCatalog, policy: SelectionPolicy, pinned: str | None = None) -> str | None:
    """Address the next connection is restricted to, if any.

    Precedence: pinned device, then ``hrm_mac``, then ``hrm_index``.
    """
    if pinned:
        return normalize_address(pinned)
    if policy.hrm_mac:
        return normalize_address(policy.hrm_mac)
    if policy.hrm_index:
        identity = catalog.by_index(policy.hrm_index)
        if identity is not None:
            return identity.address
    return None


def pick_candidate(
    seen: Sequence[Advertisement],
    catalog: DeviceCatalog,
    target: str | None,
    is_compatible: Callable[[Advertisement], bool],
    scan_complete: bool = False,
) -> Candidate | None:
    """Choose a candidate among advertisements, in discovery order.

    Known devices are picked as soon as they are seen. Unknown compatible
    devices are only offered once the scan window has closed without a known
    one; the first of them is the default and all are listed in ``choices``.
    """
    if target is not None:
        for adv in seen:
            if adv.address == target:
                return _to_candidate(adv, catalog)
        return None

    for adv in seen:
        identity = catalog.find(adv.address)
        if identity is not None:
            return Candidate(identity, known=True)

    if scan_complete:
        choices = tuple(_to_candidate(adv, catalog).identity for adv in seen if is_compatible(adv))
        if choices:
            return Candidate(choices[0], known=False, choices=choices)
    return None


def _to_candidate(adv: Advertisement, catalog: DeviceCatalog) -> Candidate:
    identity = catalog.find(adv.address)
    if identity is not None:
        return Candidate(identity, known=True)
    return Candidate(SensorIdentity(display_name=adv.name or adv.address, address=adv.address), known=False)
