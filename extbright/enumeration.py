"""Discover displays on I2C and USB HID and give them stable identities."""

import asyncio
import fnmatch
import functools
import glob
import logging
import re
from dataclasses import dataclass, field
from typing import Callable, Iterable, Optional

import hid

from extbright.backends.base import DisplayId, MonitorInfo, ProtocolKind
from extbright.backends.ddc import DEFAULT_BACKOFF, DEFAULT_RETRIES, DdcCiDisplay
from extbright.backends.devices import DeviceSpec, get_device_spec, is_brightness_interface
from extbright.backends.hid import AppleHidDisplay, hid_path
from extbright.backends.randr import Candidate, OutputInfo, WlrRandr, correlate
from extbright.config import Settings
from extbright.errors import (
    CommunicationError,
    CorrelationUnavailable,
    EnumerationError,
    ProtocolError,
    UnsupportedError,
)
from extbright.manager import DisplayManager, Opener

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Discovered:
    """A probed display and how to open it."""

    info: MonitorInfo
    opener: Opener = field(compare=False)


@dataclass(frozen=True)
class _Probe:
    path: str
    kind: ProtocolKind
    vendor: Optional[str]
    model: Optional[str]
    serials: tuple[str, ...] = ()
    can_read_brightness: bool = True
    usb_serial: Optional[str] = None
    hid_info: Optional[dict] = field(default=None, compare=False)
    spec: Optional[DeviceSpec] = None
    max_value: Optional[int] = None


def _bus_number(path: str) -> int:
    match = re.search(r"(\d+)$", path)
    return int(match.group(1)) if match else -1


class Enumerator:
    """Probes candidate devices and correlates them with output names.

    Probing runs on the manager's worker pool with bounded concurrency. Paths
    owned by a live handle are never probed, so enumeration cannot interleave
    with that display's commands.
    """

    def __init__(
        self,
        manager: DisplayManager,
        naming: Optional[WlrRandr] = None,
        concurrency: int = 4,
        i2c_glob: str = "/dev/i2c-*",
        ddc_retries: int = DEFAULT_RETRIES,
        ddc_backoff: float = DEFAULT_BACKOFF,
        ddc_factory: Callable[..., DdcCiDisplay] = DdcCiDisplay,
        hid_factory: Callable[[dict, DeviceSpec], AppleHidDisplay] = AppleHidDisplay.from_info,
        hid_enumerate: Callable[[], list[dict]] = hid.enumerate,
        list_i2c: Optional[Callable[[], list[str]]] = None,
    ):
        self.manager = manager
        self.naming = naming
        self.concurrency = concurrency
        self.i2c_glob = i2c_glob
        self.ddc_retries = ddc_retries
        self.ddc_backoff = ddc_backoff
        self._ddc_factory = ddc_factory
        self._hid_factory = hid_factory
        self._hid_enumerate = hid_enumerate
        self._list_i2c = list_i2c or (lambda: glob.glob(self.i2c_glob))
        self._legacy_warned: set[str] = set()

    @classmethod
    def from_settings(cls, manager: DisplayManager, settings: Settings) -> "Enumerator":
        naming = None
        if settings.enumeration.correlate:
            naming = WlrRandr(
                settings.enumeration.randr_command,
                timeout=settings.enumeration.command_timeout,
            )
        return cls(
            manager,
            naming=naming,
            concurrency=settings.enumeration.concurrency,
            i2c_glob=settings.ddc.i2c_glob,
            ddc_retries=settings.ddc.retries,
            ddc_backoff=settings.ddc.backoff,
        )

    async def scan(self, skip_paths: Iterable[str] = ()) -> list[Discovered]:
        """Probe every candidate device not in ``skip_paths``.

        Devices that fail to probe are logged and left out.
        """
        skip = set(skip_paths) | self.manager.device_paths()
        i2c_paths = sorted(
            (p for p in self._list_i2c() if p not in skip), key=_bus_number
        )
        hid_infos = [
            info for info in await self.manager.run_blocking(self._hid_devices)
            if hid_path(info["path"]) not in skip
        ]

        logger.info(
            f"Probing {len(i2c_paths)} I2C bus(es) and {len(hid_infos)} HID display(s)"
        )

        semaphore = asyncio.Semaphore(self.concurrency)
        probes = await asyncio.gather(
            *[self._guarded(semaphore, self._probe_ddc, path, path) for path in i2c_paths],
            *[
                self._guarded(semaphore, self._probe_hid, info, hid_path(info["path"]))
                for info in hid_infos
            ],
        )
        found = [p for p in probes if p is not None]

        outputs = await self._outputs() if found else []
        discovered = self._finish(found, outputs)
        logger.info(f"Enumeration found {len(discovered)} display(s)")
        return discovered

    async def probe_path(self, path: str, claimed: Iterable[str] = ()) -> Optional[Discovered]:
        """Targeted enumeration of one raw device (I2C node or HID path).

        Args:
            path: Raw device path
            claimed: Connector names already owned by live displays
        """
        if path in self.manager.device_paths():
            logger.debug(f"{path} is already open, not probing")
            return None

        semaphore = asyncio.Semaphore(1)
        if fnmatch.fnmatch(path, self.i2c_glob):
            probe = await self._guarded(semaphore, self._probe_ddc, path, path)
        else:
            infos = await self.manager.run_blocking(self._hid_devices)
            info = next((i for i in infos if hid_path(i["path"]) == path), None)
            if info is None:
                logger.debug(f"{path} is not a supported HID display")
                return None
            probe = await self._guarded(semaphore, self._probe_hid, info, path)

        if probe is None:
            return None

        outputs = await self._outputs()
        discovered = self._finish([probe], outputs, claimed)
        return discovered[0] if discovered else None

    async def register(self, discovered: Iterable[Discovered]) -> list[MonitorInfo]:
        """Open each discovered display through the manager.

        Returns:
            Infos of the displays that opened; failures are logged and skipped
        """
        discovered = list(discovered)
        results = await asyncio.gather(
            *[self.manager.get_or_create(d.info.id, d.opener) for d in discovered],
            return_exceptions=True,
        )

        registered = []
        for item, result in zip(discovered, results):
            if isinstance(result, (ProtocolError, OSError)):
                logger.error(f"Failed to open {item.info.label} ({item.info.id}): {result}")
            elif isinstance(result, BaseException):
                raise result
            else:
                registered.append(item.info)
        return registered

    async def _guarded(self, semaphore: asyncio.Semaphore, probe, arg, path: str) -> Optional[_Probe]:
        async with semaphore:
            try:
                return await self.manager.run_blocking(probe, arg)
            except EnumerationError as e:
                logger.debug(f"Skipping {e.path}: {e.reason}")
            except (ProtocolError, OSError) as e:
                logger.warning(f"Skipping {path}: {e}")
        return None

    async def _outputs(self) -> list[OutputInfo]:
        if self.naming is None:
            return []
        try:
            return await self.naming.list_outputs()
        except CorrelationUnavailable as e:
            logger.info(f"Output names unavailable, continuing without them: {e}")
            return []

    def _hid_devices(self) -> list[dict]:
        try:
            return [info for info in self._hid_enumerate() if is_brightness_interface(info)]
        except (OSError, ValueError) as e:
            logger.warning(f"HID enumeration failed: {e}")
            return []

    def _probe_ddc(self, path: str) -> _Probe:
        """Blocking: check that ``path`` has a monitor answering DDC/CI."""
        try:
            display = self._ddc_factory(path, retries=self.ddc_retries, backoff=self.ddc_backoff)
        except OSError as e:
            raise EnumerationError(path, f"cannot open: {e}") from e

        try:
            edid = display.read_edid()
            if edid is None:
                raise EnumerationError(path, "no EDID, not a display")

            can_read = True
            try:
                brightness = display.get_brightness()
            except UnsupportedError:
                can_read = False
            except CommunicationError as e:
                raise EnumerationError(path, f"no DDC/CI reply: {e}") from e
            else:
                if brightness == 0:
                    logger.warning(
                        f"{path} reports 0% brightness, DDC/CI may not work on this monitor"
                    )
        finally:
            display.close()

        return _Probe(
            path=path,
            kind=ProtocolKind.DDC_CI,
            vendor=edid.manufacturer,
            model=edid.model,
            serials=edid.serials,
            can_read_brightness=can_read,
            max_value=display.max_value,
        )

    def _probe_hid(self, info: dict) -> _Probe:
        """Blocking: open a supported HID display and read its brightness."""
        path = hid_path(info["path"])
        spec = get_device_spec(info["vendor_id"], info["product_id"])
        if spec is None:
            raise EnumerationError(path, "unsupported HID device")

        try:
            display = self._hid_factory(info, spec)
        except CommunicationError as e:
            raise EnumerationError(path, f"cannot open {spec.name}: {e}") from e

        try:
            display.get_brightness()
        except CommunicationError as e:
            raise EnumerationError(path, f"no brightness report: {e}") from e
        finally:
            display.close()

        return _Probe(
            path=path,
            kind=spec.kind,
            vendor=info.get("manufacturer_string") or spec.name.split()[0],
            model=spec.name,
            usb_serial=info.get("serial_number") or None,
            hid_info=info,
            spec=spec,
        )

    def _finish(
        self,
        probes: list[_Probe],
        outputs: list[OutputInfo],
        claimed: Iterable[str] = (),
    ) -> list[Discovered]:
        """Correlate probes with outputs and assign identities."""
        candidates = [Candidate(p.path, p.serials, p.model) for p in probes]
        matches = correlate(candidates, outputs, claimed)

        discovered: list[Discovered] = []
        seen: set[DisplayId] = set()

        for probe in probes:
            output = matches.get(probe.path)
            connector = output.name if output else None
            edid_serial = output.serial if output else None

            if probe.kind is ProtocolKind.DDC_CI:
                display_id = self._ddc_identity(probe.path, edid_serial)
                opener = functools.partial(
                    self._ddc_factory,
                    probe.path,
                    edid_serial=edid_serial,
                    model=probe.model,
                    retries=self.ddc_retries,
                    backoff=self.ddc_backoff,
                    max_value=probe.max_value,
                )
            else:
                if not probe.usb_serial:
                    logger.warning(f"{probe.model} at {probe.path} has no USB serial, using its path")
                display_id = DisplayId.hid(probe.usb_serial or probe.path)
                opener = functools.partial(self._hid_factory, probe.hid_info, probe.spec)

            if display_id in seen:
                logger.warning(f"Duplicate display id {display_id} at {probe.path}, skipping")
                continue
            seen.add(display_id)

            info = MonitorInfo(
                id=display_id,
                kind=probe.kind,
                device_path=probe.path,
                vendor=probe.vendor,
                model=probe.model,
                connector=connector,
                edid_serial=edid_serial,
                can_read_brightness=probe.can_read_brightness,
            )
            discovered.append(Discovered(info, opener))

        return discovered

    def _ddc_identity(self, path: str, edid_serial: Optional[str]) -> DisplayId:
        if edid_serial:
            return DisplayId.ddc(edid_serial)

        if path not in self._legacy_warned:
            self._legacy_warned.add(path)
            logger.warning(
                f"No EDID serial for the display on {path}; using the bus path as its id. "
                "Its settings will not persist reliably across reboots or port changes."
            )
        return DisplayId.ddc_legacy(path)
