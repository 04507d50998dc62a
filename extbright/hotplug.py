"""Hotplug handling: device add/remove events with a removal grace period.

Events from any source go onto one queue and are handled by a single consumer,
so state changes and manager calls never re-enter each other. A removal only
reaches the manager after the device stayed gone for the whole grace period;
port or driver renegotiation that drops and re-adds a device is absorbed.
"""

import asyncio
import enum
import glob
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Awaitable, Callable, Optional, Union

import hid

from extbright.backends.base import DisplayId, MonitorInfo
from extbright.backends.devices import is_brightness_interface
from extbright.backends.hid import hid_path
from extbright.enumeration import Enumerator
from extbright.manager import DisplayManager

logger = logging.getLogger(__name__)


class DeviceKind(enum.Enum):
    I2C = "i2c"
    HID = "hid"


@dataclass(frozen=True)
class RawDevice:
    kind: DeviceKind
    path: str  # e.g., "/dev/i2c-7" or a hidraw path


class EventKind(enum.Enum):
    ADDED = "added"
    REMOVED = "removed"


@dataclass(frozen=True)
class HotplugEvent:
    kind: EventKind
    device: RawDevice


@dataclass(frozen=True)
class _GraceExpired:
    path: str
    token: int


@dataclass(frozen=True)
class _Retry:
    device: RawDevice
    token: int


class DeviceState(enum.Enum):
    UNSEEN = "unseen"
    PRESENT = "present"
    PENDING_REMOVAL = "pending_removal"
    GONE = "gone"


@dataclass
class _Tracked:
    state: DeviceState = DeviceState.UNSEEN
    display_id: Optional[DisplayId] = None
    connector: Optional[str] = None
    timer: Optional[asyncio.TimerHandle] = None
    token: int = 0
    attempts: int = 0


Listener = Callable[[EventKind, MonitorInfo], Union[None, Awaitable[None]]]


class HotplugWatcher:
    """Per-device state machine fed by a queue of hotplug events.

    A new device that yields no display is probed again up to
    ``probe_retries`` times, ``retry_delay * attempt`` seconds apart, since
    monitors often answer DDC/CI only some time after being plugged in.
    """

    def __init__(
        self,
        manager: DisplayManager,
        enumerator: Enumerator,
        grace_period: float = 1.5,
        listener: Optional[Listener] = None,
        probe_retries: int = 3,
        retry_delay: float = 1.0,
    ):
        self.manager = manager
        self.enumerator = enumerator
        self.grace_period = grace_period
        self.listener = listener
        self.probe_retries = probe_retries
        self.retry_delay = retry_delay
        self.queue: "asyncio.Queue[Union[HotplugEvent, _GraceExpired, _Retry]]" = asyncio.Queue()
        self._devices: dict[str, _Tracked] = {}
        self._infos: dict[str, MonitorInfo] = {}

    def state(self, path: str) -> DeviceState:
        tracked = self._devices.get(path)
        return tracked.state if tracked else DeviceState.UNSEEN

    def mark_present(self, info: MonitorInfo) -> None:
        """Record a display registered outside the watcher (initial scan)."""
        tracked = self._devices.setdefault(info.device_path, _Tracked())
        tracked.state = DeviceState.PRESENT
        tracked.display_id = info.id
        tracked.connector = info.connector
        self._infos[info.device_path] = info

    def post(self, event: HotplugEvent) -> None:
        """Queue an event from any event source."""
        self.queue.put_nowait(event)

    async def run(self) -> None:
        """Consume events until cancelled."""
        logger.info(f"Hotplug watcher started (grace period {self.grace_period}s)")
        try:
            while True:
                event = await self.queue.get()
                try:
                    await self.process(event)
                finally:
                    self.queue.task_done()
        finally:
            self.close()

    async def process(self, event: Union[HotplugEvent, _GraceExpired, _Retry]) -> None:
        if isinstance(event, _GraceExpired):
            await self._expire(event)
        elif isinstance(event, _Retry):
            tracked = self._devices.get(event.device.path)
            if tracked is not None and tracked.token == event.token:
                tracked.timer = None
                await self._added(event.device, retry=True)
        elif event.kind is EventKind.ADDED:
            await self._added(event.device)
        else:
            self._removed(event.device)

    def close(self) -> None:
        """Cancel pending grace timers."""
        for tracked in self._devices.values():
            if tracked.timer is not None:
                tracked.timer.cancel()
                tracked.timer = None

    async def _added(self, device: RawDevice, retry: bool = False) -> None:
        tracked = self._devices.setdefault(device.path, _Tracked())

        if tracked.state is DeviceState.PRESENT:
            return

        if tracked.state is DeviceState.PENDING_REMOVAL:
            self._cancel_timer(tracked)
            tracked.state = DeviceState.PRESENT
            logger.info(f"{device.path} came back within the grace period")
            return

        if device.path in self.manager.device_paths():
            tracked.state = DeviceState.PRESENT
            return

        if not retry:
            self._cancel_timer(tracked)
            tracked.attempts = 0

        discovered = await self.enumerator.probe_path(device.path, claimed=self._claimed())
        if discovered is None:
            logger.debug(f"No display found on {device.path}")
            self._schedule_retry(tracked, device)
            return

        registered = await self.enumerator.register([discovered])
        if not registered:
            self._schedule_retry(tracked, device)
            return

        tracked.attempts = 0
        info = registered[0]
        self.mark_present(info)
        logger.info(f"Display connected: {info.label} ({info.id})")
        await self._notify(EventKind.ADDED, info)

    def _schedule_retry(self, tracked: _Tracked, device: RawDevice) -> None:
        if tracked.attempts >= self.probe_retries:
            if self.probe_retries:
                logger.info(f"Giving up on {device.path} after {tracked.attempts + 1} probes")
            return

        tracked.attempts += 1
        tracked.token += 1
        delay = self.retry_delay * tracked.attempts
        loop = asyncio.get_running_loop()
        tracked.timer = loop.call_later(delay, self.queue.put_nowait, _Retry(device, tracked.token))
        logger.debug(f"Probing {device.path} again in {delay}s")

    def _removed(self, device: RawDevice) -> None:
        tracked = self._devices.get(device.path)
        if tracked is None:
            return
        if tracked.state in (DeviceState.UNSEEN, DeviceState.GONE):
            # Unplugged before it ever answered
            self._cancel_timer(tracked)
            return
        if tracked.state is not DeviceState.PRESENT:
            return

        tracked.state = DeviceState.PENDING_REMOVAL
        tracked.token += 1
        expired = _GraceExpired(device.path, tracked.token)
        loop = asyncio.get_running_loop()
        tracked.timer = loop.call_later(self.grace_period, self.queue.put_nowait, expired)
        logger.debug(f"{device.path} removed, waiting {self.grace_period}s before dropping it")

    async def _expire(self, event: _GraceExpired) -> None:
        tracked = self._devices.get(event.path)
        if (
            tracked is None
            or tracked.state is not DeviceState.PENDING_REMOVAL
            or tracked.token != event.token
        ):
            return

        tracked.timer = None
        tracked.state = DeviceState.GONE
        display_id = tracked.display_id
        tracked.display_id = None
        tracked.connector = None
        info = self._infos.pop(event.path, None)

        if display_id is not None:
            await self.manager.remove(display_id)
        if info is not None:
            logger.info(f"Display disconnected: {info.label} ({info.id})")
            await self._notify(EventKind.REMOVED, info)

    def _cancel_timer(self, tracked: _Tracked) -> None:
        if tracked.timer is not None:
            tracked.timer.cancel()
            tracked.timer = None
        tracked.token += 1

    def _claimed(self) -> set[str]:
        return {
            t.connector
            for t in self._devices.values()
            if t.connector and t.state in (DeviceState.PRESENT, DeviceState.PENDING_REMOVAL)
        }

    async def _notify(self, kind: EventKind, info: MonitorInfo) -> None:
        if self.listener is None:
            return
        result = self.listener(kind, info)
        if asyncio.iscoroutine(result):
            await result


class DevicePoller:
    """Event source that polls DRM connectors and the HID device list.

    The first poll reports every present device as added.
    """

    def __init__(
        self,
        watcher: HotplugWatcher,
        drm_root: Path = Path("/sys/class/drm"),
        interval: float = 1.0,
        hid_enumerate: Callable[[], list[dict]] = hid.enumerate,
    ):
        self.watcher = watcher
        self.drm_root = Path(drm_root)
        self.interval = interval
        self._hid_enumerate = hid_enumerate
        self._known: set[RawDevice] = set()

    async def run(self) -> None:
        logger.info(f"Polling for display changes every {self.interval}s")
        while True:
            await self.poll()
            await asyncio.sleep(self.interval)

    async def poll(self) -> None:
        """Diff the current device set against the last poll and post events."""
        current = await self.watcher.manager.run_blocking(self.snapshot)

        for device in sorted(self._known - current, key=lambda d: d.path):
            self.watcher.post(HotplugEvent(EventKind.REMOVED, device))
        for device in sorted(current - self._known, key=lambda d: d.path):
            self.watcher.post(HotplugEvent(EventKind.ADDED, device))

        self._known = current

    def snapshot(self) -> set[RawDevice]:
        """Blocking: devices currently attached."""
        return self._connected_i2c() | self._hid_devices()

    def _connected_i2c(self) -> set[RawDevice]:
        devices = set()
        for status_file in glob.glob(str(self.drm_root / "card*-*" / "status")):
            connector = Path(status_file).parent
            try:
                status = Path(status_file).read_text().strip()
            except OSError:
                continue
            if status != "connected":
                continue
            bus = i2c_bus_for_connector(connector)
            if bus is not None:
                devices.add(RawDevice(DeviceKind.I2C, bus))
        return devices

    def _hid_devices(self) -> set[RawDevice]:
        try:
            infos = self._hid_enumerate()
        except (OSError, ValueError) as e:
            logger.warning(f"HID enumeration failed: {e}")
            return set()
        return {
            RawDevice(DeviceKind.HID, hid_path(info["path"]))
            for info in infos
            if is_brightness_interface(info)
        }


def i2c_bus_for_connector(connector: Path) -> Optional[str]:
    """Map a DRM connector directory to its DDC bus device node.

    Drivers expose the bus either as a ``ddc`` symlink or as an ``i2c-N``
    subdirectory of the connector.
    """
    ddc = connector / "ddc"
    if ddc.exists():
        name = os.path.basename(os.path.realpath(ddc))
        if name.startswith("i2c-"):
            return f"/dev/{name}"

    for entry in sorted(glob.glob(str(connector / "i2c-*"))):
        return f"/dev/{os.path.basename(entry)}"

    return None
