"""USB HID displays that accept Apple's brightness feature report."""

from dataclasses import dataclass
from typing import Optional

from extbright.backends.base import ProtocolKind

APPLE_VENDOR_ID = 0x05AC
LG_VENDOR_ID = 0x043E

# USB interface carrying the brightness report
BRIGHTNESS_INTERFACE = 7
# Feature report: id, little-endian u32 value, two padding bytes
REPORT_ID = 1
REPORT_SIZE = 7


@dataclass(frozen=True)
class DeviceSpec:
    """Brightness report range for one display model."""

    vendor_id: int
    product_id: int
    name: str
    min_value: int  # raw protocol value, not nits
    max_value: int
    nits: int  # documentation only

    @property
    def kind(self) -> ProtocolKind:
        if self.vendor_id == LG_VENDOR_ID:
            return ProtocolKind.LG_HID
        return ProtocolKind.APPLE_HID

    @property
    def value_range(self) -> int:
        return self.max_value - self.min_value

    def to_raw(self, percentage: int) -> int:
        percentage = max(0, min(100, percentage))
        return self.min_value + self.value_range * percentage // 100

    def to_percentage(self, raw: int) -> int:
        if raw <= self.min_value:
            return 0
        if raw >= self.max_value:
            return 100
        return max(0, min(100, round((raw - self.min_value) * 100 / self.value_range)))


STUDIO_DISPLAY = DeviceSpec(APPLE_VENDOR_ID, 0x1114, "Apple Studio Display", 400, 60000, 600)
PRO_DISPLAY_XDR = DeviceSpec(APPLE_VENDOR_ID, 0x9243, "Apple Pro Display XDR", 400, 50000, 1600)
ULTRAFINE_4K = DeviceSpec(LG_VENDOR_ID, 0x9A63, "LG UltraFine 4K Display", 400, 50000, 500)
ULTRAFINE_5K = DeviceSpec(LG_VENDOR_ID, 0x9A70, "LG UltraFine 5K Display", 400, 50000, 500)

DEVICE_SPECS: dict[tuple[int, int], DeviceSpec] = {
    (spec.vendor_id, spec.product_id): spec
    for spec in (STUDIO_DISPLAY, PRO_DISPLAY_XDR, ULTRAFINE_4K, ULTRAFINE_5K)
}


def get_device_spec(vendor_id: int, product_id: int) -> Optional[DeviceSpec]:
    return DEVICE_SPECS.get((vendor_id, product_id))


def supported_ids() -> list[tuple[int, int]]:
    """(vendor id, product id) pairs of every supported display."""
    return list(DEVICE_SPECS)


def is_brightness_interface(info: dict) -> bool:
    """Whether a hid.enumerate() entry is the brightness interface of a supported display."""
    return (
        get_device_spec(info.get("vendor_id", 0), info.get("product_id", 0)) is not None
        and info.get("interface_number") == BRIGHTNESS_INTERFACE
    )
