"""Gamma-curve brightness mapping shared by the sync daemon and the CLI."""

import logging
from typing import TYPE_CHECKING

from extbright.backends.base import DisplayId

if TYPE_CHECKING:
    from extbright.store import ConfigStore

logger = logging.getLogger(__name__)

GAMMA_MIN = 0.3
GAMMA_MAX = 3.0


def map_brightness(x: float, gamma: float, minimum: int = 0, scale: int = 100) -> int:
    """Map a normalized slider/key value onto a device brightness value.

    Args:
        x: Normalized input, clamped to [0, 1]
        gamma: Curve exponent in [0.3, 3.0]; 1.0 is linear
        minimum: Minimum brightness percentage (0-100) the result never drops below
        scale: Top of the device's reporting range

    Returns:
        ``max(minimum, round(scale * x ** gamma))`` with ``minimum`` scaled
        to the same range
    """
    if not GAMMA_MIN <= gamma <= GAMMA_MAX:
        raise ValueError(f"gamma {gamma} outside [{GAMMA_MIN}, {GAMMA_MAX}]")

    x = min(max(x, 0.0), 1.0)
    value = round(scale * x**gamma)
    floor = round(scale * min(max(minimum, 0), 100) / 100)
    return max(floor, value)


class BrightnessCalculator:
    """Apply per-display gamma and minimum brightness from the config store."""

    def __init__(self, store: "ConfigStore"):
        self.store = store

    def calculate_for_display(self, percentage: int, display_id: DisplayId) -> int:
        """Convert a 0-100 key/slider percentage to the value sent to a display."""
        config = self.store.monitor(display_id)
        x = min(max(percentage, 0), 100) / 100.0
        value = map_brightness(x, config.gamma, config.min_brightness)

        if value == config.min_brightness and value > round(100 * x**config.gamma):
            logger.debug(f"Clamped {display_id} to minimum brightness {value}")

        return value

    def is_sync_enabled(self, display_id: DisplayId) -> bool:
        return self.store.monitor(display_id).sync_enabled
