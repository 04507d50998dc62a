"""Backend modules for display brightness control."""

from extbright.backends.base import DisplayId, DisplayProtocol, MonitorInfo, ProtocolKind
from extbright.backends.ddc import DdcCiDisplay
from extbright.backends.hid import AppleHidDisplay
from extbright.backends.randr import OutputInfo, WlrRandr

__all__ = [
    "DisplayId",
    "DisplayProtocol",
    "MonitorInfo",
    "ProtocolKind",
    "DdcCiDisplay",
    "AppleHidDisplay",
    "OutputInfo",
    "WlrRandr",
]
