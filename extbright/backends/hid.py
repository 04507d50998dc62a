"""Brightness control for Apple and LG UltraFine displays over USB HID."""

import logging
from typing import Any, Optional, Union

import hid

from extbright.backends.base import DisplayId, DisplayProtocol
from extbright.backends.devices import REPORT_ID, REPORT_SIZE, DeviceSpec
from extbright.errors import CommunicationError

logger = logging.getLogger(__name__)


def hid_path(path: Union[bytes, str]) -> str:
    """hidapi reports paths as bytes; keep them as text everywhere else."""
    if isinstance(path, bytes):
        return path.decode("utf-8", "replace")
    return path


class AppleHidDisplay(DisplayProtocol):
    """A display driven through Apple's brightness feature report.

    The transport imposes no spacing between commands
    (``min_command_interval`` is 0); reads and writes are still serialized by
    the display manager so reports never interleave.
    """

    min_command_interval = 0.0

    def __init__(
        self,
        path: Union[bytes, str],
        serial: str,
        spec: DeviceSpec,
        manufacturer: Optional[str] = None,
        product: Optional[str] = None,
        device: Optional[Any] = None,
    ):
        self.device_path = hid_path(path)
        self.serial = serial
        self.spec = spec
        self.kind = spec.kind
        self.manufacturer = manufacturer or spec.name.split()[0]
        self.product = product or spec.name

        if device is None:
            device = hid.device()
            try:
                device.open_path(path if isinstance(path, bytes) else path.encode())
            except (OSError, ValueError) as e:
                raise CommunicationError(f"cannot open {spec.name}: {e}", self.device_path) from e
        self._device = device

    @classmethod
    def from_info(cls, info: dict, spec: DeviceSpec) -> "AppleHidDisplay":
        """Open the device described by a hid.enumerate() entry."""
        return cls(
            info["path"],
            serial=info.get("serial_number") or "",
            spec=spec,
            manufacturer=info.get("manufacturer_string") or None,
            product=info.get("product_string") or None,
        )

    def identity(self) -> DisplayId:
        return DisplayId.hid(self.serial)

    def get_brightness(self) -> int:
        try:
            report = self._device.get_feature_report(REPORT_ID, REPORT_SIZE)
        except (OSError, ValueError) as e:
            raise CommunicationError(f"feature report read failed: {e}", str(self.identity())) from e

        if len(report) < 5:
            raise CommunicationError(f"short feature report {report!r}", str(self.identity()))

        raw = int.from_bytes(bytes(report[1:5]), "little")
        percentage = self.spec.to_percentage(raw)
        logger.debug(f"{self.spec.name} {self.serial} brightness: {percentage}% (raw {raw})")
        return percentage

    def set_brightness(self, value: int) -> None:
        raw = self.spec.to_raw(value)
        report = bytes([REPORT_ID]) + raw.to_bytes(4, "little") + bytes(REPORT_SIZE - 5)

        try:
            written = self._device.send_feature_report(report)
        except (OSError, ValueError) as e:
            raise CommunicationError(f"feature report write failed: {e}", str(self.identity())) from e
        if written is not None and written < 0:
            raise CommunicationError("feature report write failed", str(self.identity()))

        logger.debug(f"Set {self.spec.name} {self.serial} brightness to {value}% (raw {raw})")

    def close(self) -> None:
        self._device.close()
