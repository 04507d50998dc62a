"""Display identities, monitor descriptions and the protocol contract."""

import enum
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional


class ProtocolKind(enum.Enum):
    """Transport used to reach a display."""

    DDC_CI = "ddc-ci"
    APPLE_HID = "apple-hid"
    LG_HID = "lg-hid"

    @property
    def is_hid(self) -> bool:
        return self is not ProtocolKind.DDC_CI


class IdentityKind(enum.Enum):
    DDC_STABLE = "ddc-stable"
    DDC_LEGACY = "ddc-legacy"
    HID_SERIAL = "hid-serial"


DDC_PREFIX = "ddc-"
HID_PREFIX = "hid-"


@dataclass(frozen=True)
class DisplayId:
    """Stable, opaque identity of a physical display.

    The string form is what gets persisted:

    - ``ddc-{edid_serial}`` for DDC/CI displays correlated with an EDID serial
    - ``{bus_path}`` for DDC/CI displays without one (unstable across reboots)
    - ``hid-{usb_serial}`` for Apple/LG HID displays
    """

    kind: IdentityKind
    value: str

    @classmethod
    def ddc(cls, edid_serial: str) -> "DisplayId":
        return cls(IdentityKind.DDC_STABLE, edid_serial)

    @classmethod
    def ddc_legacy(cls, bus_path: str) -> "DisplayId":
        return cls(IdentityKind.DDC_LEGACY, bus_path)

    @classmethod
    def hid(cls, usb_serial: str) -> "DisplayId":
        return cls(IdentityKind.HID_SERIAL, usb_serial)

    @classmethod
    def parse(cls, text: str) -> "DisplayId":
        """Inverse of ``str()``. Anything unprefixed is a legacy DDC id."""
        if text.startswith(DDC_PREFIX):
            return cls.ddc(text[len(DDC_PREFIX):])
        if text.startswith(HID_PREFIX):
            return cls.hid(text[len(HID_PREFIX):])
        return cls.ddc_legacy(text)

    @property
    def is_stable(self) -> bool:
        return self.kind is not IdentityKind.DDC_LEGACY

    @property
    def is_hid(self) -> bool:
        return self.kind is IdentityKind.HID_SERIAL

    def __str__(self) -> str:
        if self.kind is IdentityKind.DDC_STABLE:
            return f"{DDC_PREFIX}{self.value}"
        if self.kind is IdentityKind.HID_SERIAL:
            return f"{HID_PREFIX}{self.value}"
        return self.value


@dataclass(frozen=True)
class MonitorInfo:
    """Snapshot of one display as seen by a single enumeration pass."""

    id: DisplayId
    kind: ProtocolKind
    device_path: str  # e.g., "/dev/i2c-7" or a hidraw path
    vendor: Optional[str] = None  # e.g., "DEL" or "Apple Inc."
    model: Optional[str] = None  # e.g., "DELL U2720Q"
    connector: Optional[str] = None  # e.g., "DP-2", from the output-naming service
    edid_serial: Optional[str] = None
    can_read_brightness: bool = True

    @property
    def label(self) -> str:
        """Human-readable display name."""
        name = self.model or self.vendor or str(self.id)
        if self.connector:
            return f"{name} ({self.connector})"
        return name


class DisplayProtocol(ABC):
    """Brightness control contract shared by every backend.

    All methods block on hardware I/O and must only be called from the
    manager's worker pool. ``min_command_interval`` is the minimum spacing in
    seconds between two consecutive commands to the same device; the manager
    enforces it.
    """

    kind: ProtocolKind
    device_path: str
    min_command_interval: float = 0.0

    @abstractmethod
    def identity(self) -> DisplayId:
        """Return the display id without any extra hardware round trip."""

    @abstractmethod
    def get_brightness(self) -> int:
        """Return the current brightness as a percentage (0-100)."""

    @abstractmethod
    def set_brightness(self, value: int) -> None:
        """Set the brightness percentage (0-100)."""

    def close(self) -> None:
        """Release the underlying device node."""

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.identity()}, {self.device_path})"
