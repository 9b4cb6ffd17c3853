"""Connection lifecycle of the single heart rate sensor.

The manager runs on one task. It is the only writer of the connection state
and the only caller of :meth:`Hub.publish`. Radio callbacks and control
requests arrive on one event queue, so each transition is driven by exactly
one event.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, replace

from .adaptors import DEBUG_ADAPTOR_ID, DEFAULT_REGISTRY, Adaptor, AdaptorRegistry
from .ble import BleakLink, Discovered, LinkLost, Notification, PostCallback
from .catalog import (
    Advertisement,
    DeviceCatalog,
    SelectionPolicy,
    SensorIdentity,
    pick_candidate,
    resolve_target,
)
from .errors import AdaptorError, DecodeError, LinkError, NoCompatibleAdaptor, RadioUnavailable
from .hub import Hub
from .reading import HeartRateData, Reading

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Idle:
    pass


@dataclass(frozen=True)
class Scanning:
    pass


@dataclass(frozen=True)
class CandidateFound:
    identity: SensorIdentity
    known: bool
    choices: tuple[SensorIdentity, ...] = ()


@dataclass(frozen=True)
class Connecting:
    identity: SensorIdentity


@dataclass(frozen=True)
class Connected:
    identity: SensorIdentity
    adaptor_id: int


@dataclass(frozen=True)
class Disconnected:
    last: SensorIdentity | None


ConnectionState = Idle | Scanning | CandidateFound | Connecting | Connected | Disconnected


@dataclass(frozen=True)
class ReconnectRequested:
    pass


@dataclass(frozen=True)
class CandidateAccepted:
    identity: SensorIdentity


@dataclass(frozen=True)
class StopRequested:
    pass


CONTROL_EVENTS = (ReconnectRequested, CandidateAccepted, StopRequested)
INTERRUPTS = (ReconnectRequested, StopRequested)

LinkFactory = Callable[[PostCallback], BleakLink]
CandidateCallback = Callable[[list[SensorIdentity]], None]


class ConnectionManager:
    """Discovers, connects to and follows one heart rate sensor."""

    def __init__(
        self,
        hub: Hub,
        catalog: DeviceCatalog,
        policy: SelectionPolicy | None = None,
        link_factory: LinkFactory = BleakLink,
        registry: AdaptorRegistry = DEFAULT_REGISTRY,
        scan_timeout: float = 5.0,
        connect_timeout: float = 10.0,
        reconnect_min: float = 1.0,
        reconnect_max: float = 30.0,
        liveness_interval: float = 1.0,
        confirm_timeout: float = 1.0,
        on_candidate: CandidateCallback | None = None,
    ):
        self._hub = hub
        self._catalog = catalog
        self._policy = policy or SelectionPolicy()
        self._registry = registry
        self._scan_timeout = scan_timeout
        self._connect_timeout = connect_timeout
        self._reconnect_min = reconnect_min
        self._reconnect_max = reconnect_max
        self._liveness_interval = liveness_interval
        self._confirm_timeout = confirm_timeout
        self._on_candidate = on_candidate

        self._events: asyncio.Queue = asyncio.Queue()
        self._link = link_factory(self._events.put_nowait)
        self._state: ConnectionState = Idle()
        self._running = False
        self._reconnect_delay = reconnect_min
        self._has_connected = False
        self._forced_adaptor_id: int | None = None
        self._pinned: str | None = None
        self._identity: SensorIdentity | None = None
        self._adaptor: Adaptor | None = None
        self._last_data: HeartRateData | None = None
        self._battery: int | None = None

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def pinned_address(self) -> str | None:
        return self._pinned

    def request_reconnect(self) -> None:
        """Drop the current connection (or attempt) and scan again."""
        self._events.put_nowait(ReconnectRequested())

    def accept_candidate(self, identity: SensorIdentity) -> None:
        """Approve one of the unknown devices waiting for confirmation."""
        self._events.put_nowait(CandidateAccepted(identity))

    def force_adaptor(self, adaptor_id: int | None) -> None:
        """Use ``adaptor_id`` for every connection; None restores probing.

        Raises:
            UnknownAdaptor: The id is not registered
        """
        if adaptor_id is not None:
            self._registry.get(adaptor_id)
        self._forced_adaptor_id = adaptor_id

    async def stop(self) -> None:
        """Ask ``run`` to finish; it publishes a terminal reading on the way out."""
        logger.debug("Stopping connection manager...")
        self._running = False
        self._events.put_nowait(StopRequested())

    def _set_state(self, state: ConnectionState) -> None:
        logger.debug("State %s -> %s", type(self._state).__name__, type(state).__name__)
        self._state = state

    def _increase_backoff(self) -> None:
        self._reconnect_delay = min(self._reconnect_delay * 2, self._reconnect_max)

    async def run(self) -> None:
        """Drive the state machine until stopped or cancelled.

        Raises:
            RadioUnavailable: The Bluetooth adapter is missing; not retried
        """
        self._running = True
        self._set_state(Scanning())
        try:
            while self._running:
                state = self._state
                if isinstance(state, Scanning):
                    await self._scan()
                elif isinstance(state, CandidateFound):
                    await self._approve(state)
                elif isinstance(state, Connecting):
                    await self._connect(state.identity)
                elif isinstance(state, Connected):
                    await self._follow(state)
                else:
                    await self._rest()
        except RadioUnavailable:
            logger.error("Bluetooth radio unavailable, giving up")
            raise
        finally:
            self._running = False
            await self._link.stop_scan()
            await self._link.disconnect()
            self._set_state(Disconnected(self._identity))
            self._hub.publish(Reading.disconnected())
            logger.debug("Connection manager stopped")

    async def _next_event(self, timeout: float | None) -> object | None:
        try:
            event = await asyncio.wait_for(self._events.get(), timeout)
        except TimeoutError:
            return None
        if isinstance(event, StopRequested):
            self._running = False
        return event

    async def _wait_control(self, timeout: float | None) -> object | None:
        """Wait for a control event, discarding radio events; None on timeout."""
        loop = asyncio.get_running_loop()
        deadline = None if timeout is None else loop.time() + timeout
        while True:
            remaining = None if deadline is None else deadline - loop.time()
            if remaining is not None and remaining <= 0:
                return None
            event = await self._next_event(remaining)
            if event is None or isinstance(event, CONTROL_EVENTS):
                return event
            logger.debug("Ignoring %s", type(event).__name__)

    def _drain_radio_events(self) -> None:
        kept = []
        while not self._events.empty():
            event = self._events.get_nowait()
            if isinstance(event, CONTROL_EVENTS):
                kept.append(event)
        for event in kept:
            self._events.put_nowait(event)

    async def _interruptible(self, work: Awaitable[None]) -> object | None:
        """Await ``work`` unless a control event arrives first.

        Returns the control event that interrupted it, or None when the work
        completed. Exceptions from the work propagate.
        """
        task = asyncio.ensure_future(work)
        try:
            while True:
                waiter = asyncio.ensure_future(self._events.get())
                done, _ = await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
                if waiter not in done:
                    waiter.cancel()
                    task.result()
                    return None
                event = waiter.result()
                if isinstance(event, StopRequested):
                    self._running = False
                if isinstance(event, INTERRUPTS):
                    return event
                logger.debug("Ignoring %s", type(event).__name__)
        finally:
            if not task.done():
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError, LinkError):
                    await task

    async def _backoff_wait(self) -> None:
        """Sleep for the backoff delay; a reconnect request cuts it short."""
        await self._wait_control(self._reconnect_delay)
        self._increase_backoff()

    def _is_compatible(self, adv: Advertisement) -> bool:
        return self._registry.any_matches(adv.service_uuids)

    async def _scan(self) -> None:
        self._drain_radio_events()
        target = resolve_target(self._catalog, self._policy, self._pinned)
        if target:
            logger.info("Scanning for %s...", target)
        else:
            logger.info("Scanning for heart rate devices...")

        seen: list[Advertisement] = []
        candidate = None
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self._scan_timeout

        try:
            await self._link.start_scan()
        except LinkError as e:
            logger.warning("Scan failed: %s, retrying in %.1fs...", e, self._reconnect_delay)
            await self._backoff_wait()
            return

        try:
            while candidate is None:
                remaining = deadline - loop.time()
                if remaining <= 0:
                    break
                event = await self._next_event(remaining)
                if event is None:
                    break
                if isinstance(event, StopRequested):
                    return
                if isinstance(event, ReconnectRequested):
                    logger.info("Scan abandoned, starting over")
                    self._set_state(Disconnected(self._identity))
                    self._hub.publish(Reading.disconnected())
                    self._set_state(Scanning())
                    return
                if isinstance(event, Discovered):
                    self._remember(seen, event.advertisement)
                    candidate = pick_candidate(seen, self._catalog, target, self._is_compatible)
        finally:
            await self._link.stop_scan()

        if candidate is None:
            candidate = pick_candidate(seen, self._catalog, target, self._is_compatible, scan_complete=True)
        if candidate is None:
            logger.warning(
                "No suitable device among %d seen, rescanning in %.1fs...", len(seen), self._reconnect_delay
            )
            await self._backoff_wait()
            return

        logger.info("Found %s (%s)", candidate.identity.display_name, candidate.identity.address)
        self._set_state(CandidateFound(candidate.identity, candidate.known, candidate.choices))

    @staticmethod
    def _remember(seen: list[Advertisement], adv: Advertisement) -> None:
        for i, known in enumerate(seen):
            if known.address == adv.address:
                # Later advertisements may carry a name or services the first lacked
                seen[i] = Advertisement(
                    address=adv.address,
                    name=adv.name or known.name,
                    service_uuids=tuple(dict.fromkeys(known.service_uuids + adv.service_uuids)),
                )
                return
        logger.debug("Discovered: %s (%s)", adv.name or "Unknown", adv.address)
        seen.append(adv)

    async def _approve(self, state: CandidateFound) -> None:
        identity = state.identity
        if state.known or identity.address == self._pinned or self._policy.accept_new_device:
            self._set_state(Connecting(identity))
            return

        choices = state.choices or (identity,)
        logger.info("%d new device(s) need confirmation", len(choices))
        if self._on_candidate is not None:
            self._on_candidate(list(choices))

        timeout = None
        if self._policy.noninteractive_rescan and self._has_connected:
            timeout = self._confirm_timeout

        event = await self._wait_control(timeout)
        if isinstance(event, StopRequested):
            return
        if isinstance(event, CandidateAccepted) and any(c.address == event.identity.address for c in choices):
            self._set_state(Connecting(event.identity))
            return

        logger.info("No device confirmed, rescanning")
        self._set_state(Scanning())

    def _adaptor_for(self, identity: SensorIdentity) -> Adaptor:
        forced = self._forced_adaptor_id
        if forced is None:
            forced = identity.forced_adaptor_id
        return self._registry.select(self._link.service_uuids(), forced)

    async def _read_battery(self, adaptor: Adaptor) -> int | None:
        if adaptor.battery_uuid is None:
            return None
        try:
            battery = adaptor.decode_battery(await self._link.read(adaptor.battery_uuid))
        except LinkError as e:
            logger.debug("No battery level available: %s", e)
            return None
        except DecodeError as e:
            logger.warning("Malformed battery level: %s", e)
            return None
        logger.info("Device has %d%% battery left", battery)
        return battery

    async def _connect(self, identity: SensorIdentity) -> None:
        self._identity = identity
        known = self._catalog.contains(identity.address)
        logger.info("Connecting to %s (%s)...", identity.display_name, identity.address)

        try:
            interrupted = await self._interruptible(
                self._link.connect(identity.address, self._connect_timeout, pair=not known)
            )
            if interrupted is None:
                adaptor = self._adaptor_for(identity)
                if adaptor.adaptor_id == DEBUG_ADAPTOR_ID:
                    self._link.describe()
                uuids = adaptor.notify_uuids(self._link.notifiable_uuids())
                if not uuids:
                    raise NoCompatibleAdaptor(f"{identity.address} exposes nothing to subscribe to")
                battery = await self._read_battery(adaptor)
                for uuid in uuids:
                    await self._link.start_notify(uuid)
        except (LinkError, AdaptorError) as e:
            logger.warning("Connection to %s failed: %s", identity.display_name, e)
            await self._link.disconnect()
            self._set_state(Disconnected(identity))
            self._hub.publish(Reading.disconnected())
            self._set_state(Idle())
            return

        if interrupted is not None:
            logger.info("Connection attempt to %s abandoned", identity.address)
            await self._link.disconnect()
            self._set_state(Disconnected(identity))
            self._hub.publish(Reading.disconnected())
            if isinstance(interrupted, ReconnectRequested):
                self._set_state(Scanning())
            return

        self._adaptor = adaptor
        self._battery = battery
        self._last_data = HeartRateData(heart_rate_bpm=0, skin_contact=None, battery_pct=battery)
        self._reconnect_delay = self._reconnect_min
        self._has_connected = True
        if not known and adaptor.adaptor_id != DEBUG_ADAPTOR_ID:
            self._catalog.add(replace(identity, forced_adaptor_id=adaptor.adaptor_id))
        if self._policy.pin_device:
            self._pinned = identity.address

        logger.info("Connected to %s using adaptor %s", identity.display_name, adaptor.name)
        self._set_state(Connected(identity, adaptor.adaptor_id))
        self._hub.publish(Reading.connected(self._last_data))

    def _handle_notification(self, event: Notification) -> None:
        adaptor = self._adaptor
        if adaptor is None or self._last_data is None:
            logger.debug("Notification from %s without a connection, ignored", event.uuid)
            return
        try:
            if event.uuid == adaptor.battery_uuid:
                self._battery = adaptor.decode_battery(event.data)
                data = replace(self._last_data, battery_pct=self._battery)
            else:
                data = replace(adaptor.decode(event.data), battery_pct=self._battery)
        except DecodeError as e:
            logger.warning("Malformed notification from %s skipped: %s", event.uuid, e)
            return

        logger.debug("HR: %d bpm, contact: %s, battery: %s", data.heart_rate_bpm, data.skin_contact, data.battery_pct)
        self._last_data = data
        self._hub.publish(Reading.connected(data))

    async def _drop(self, identity: SensorIdentity, reason: str) -> None:
        logger.info("Disconnected from %s: %s", identity.display_name, reason)
        await self._link.disconnect()
        self._adaptor = None
        self._last_data = None
        self._set_state(Disconnected(identity))
        self._hub.publish(Reading.disconnected())

    async def _follow(self, state: Connected) -> None:
        while self._running:
            event = await self._next_event(self._liveness_interval)
            if event is None:
                if not self._link.is_connected:
                    await self._drop(state.identity, "liveness check failed")
                    return
            elif isinstance(event, Notification):
                self._handle_notification(event)
            elif isinstance(event, LinkLost):
                await self._drop(state.identity, event.reason)
                return
            elif isinstance(event, ReconnectRequested):
                await self._drop(state.identity, "reconnect requested")
                self._set_state(Scanning())
                return
            elif isinstance(event, StopRequested):
                return

    def _auto_rescan(self) -> bool:
        return not self._has_connected or self._policy.noninteractive_rescan

    async def _rest(self) -> None:
        """Idle or Disconnected: rescan per policy or wait for a reconnect request."""
        if self._auto_rescan():
            logger.info("Rescanning in %.1fs...", self._reconnect_delay)
            await self._backoff_wait()
            if self._running:
                self._set_state(Scanning())
            return

        logger.info("Waiting for a reconnect request")
        event = await self._wait_control(None)
        if isinstance(event, ReconnectRequested):
            self._set_state(Idle())
            self._set_state(Scanning())
