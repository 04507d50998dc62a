"""Sources of brightness-key notifications for the sync daemon."""

import asyncio
import logging
from typing import Any, AsyncIterator, Optional

from sdbus import DbusInterfaceCommonAsync, dbus_property_async, sd_bus_open_user

logger = logging.getLogger(__name__)

BRIGHTNESS_PROPERTY = "DisplayBrightness"
MAX_BRIGHTNESS_PROPERTY = "MaxDisplayBrightness"


def to_percentage(value: int, maximum: int) -> int:
    """Scale a desktop brightness value to 0-100."""
    if maximum <= 0:
        return min(max(int(value), 0), 100)
    return min(max(round(value * 100 / maximum), 0), 100)


def changed_brightness(changes: dict[str, Any]) -> Optional[int]:
    """Brightness value from a PropertiesChanged payload, if it changed.

    sdbus delivers each changed property as a ``(signature, value)`` pair.
    """
    entry = changes.get(BRIGHTNESS_PROPERTY)
    if entry is None:
        return None
    if isinstance(entry, tuple):
        entry = entry[1]
    return int(entry)


def settings_daemon_interface(interface: str) -> type:
    """Build the proxy class for a settings daemon exposing brightness properties."""

    class SettingsDaemon(DbusInterfaceCommonAsync, interface_name=interface):
        @dbus_property_async("i", property_name=BRIGHTNESS_PROPERTY)
        def display_brightness(self) -> int:
            raise NotImplementedError

        @dbus_property_async("i", property_name=MAX_BRIGHTNESS_PROPERTY)
        def max_display_brightness(self) -> int:
            raise NotImplementedError

    return SettingsDaemon


class DbusBrightnessKeys:
    """Follows the desktop's built-in display brightness over the session bus.

    Iterating yields a 0-100 percentage each time the user presses a
    brightness key.
    """

    def __init__(
        self,
        bus_name: str,
        object_path: str,
        interface: str,
        bus: Optional[Any] = None,
    ):
        self.bus_name = bus_name
        self.object_path = object_path
        self.interface = interface
        self.bus = bus

    async def __aiter__(self) -> AsyncIterator[int]:
        bus = self.bus or sd_bus_open_user()
        proxy = settings_daemon_interface(self.interface).new_proxy(
            self.bus_name, self.object_path, bus=bus
        )

        maximum = await proxy.max_display_brightness.get_async()
        logger.info(f"Listening for brightness keys on {self.bus_name} (max {maximum})")

        async for interface, changes, _invalidated in proxy.properties_changed:
            if interface != self.interface:
                continue
            value = changed_brightness(changes)
            if value is not None:
                yield to_percentage(value, maximum)


class QueueKeys:
    """In-process notification source fed with ``put()``."""

    def __init__(self):
        self._queue: "asyncio.Queue[Optional[int]]" = asyncio.Queue()

    def put(self, value: int) -> None:
        self._queue.put_nowait(value)

    def close(self) -> None:
        """End iteration once queued values are consumed."""
        self._queue.put_nowait(None)

    async def __aiter__(self) -> AsyncIterator[int]:
        while True:
            value = await self._queue.get()
            if value is None:
                return
            yield value
