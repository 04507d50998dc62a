"""Long-running agent: discovery, hotplug and brightness-key sync."""

import asyncio
import logging
import signal
from typing import AsyncIterable, Optional

from extbright.backends.base import DisplayId, MonitorInfo
from extbright.config import KeySource, Settings
from extbright.daemon import BrightnessSyncDaemon
from extbright.enumeration import Enumerator
from extbright.hotplug import DevicePoller, EventKind, HotplugWatcher
from extbright.keys import DbusBrightnessKeys
from extbright.manager import DisplayManager
from extbright.store import ConfigStore

logger = logging.getLogger(__name__)


class Agent:
    """Keeps external displays in sync with the desktop brightness."""

    def __init__(self, settings: Settings, keys: Optional[AsyncIterable[int]] = None):
        """Initialize the agent with settings.

        Args:
            settings: Loaded settings
            keys: Brightness notification source; built from ``settings.keys`` if omitted
        """
        self.settings = settings
        self.store = ConfigStore.open(settings.agent.store_path)
        self.manager = DisplayManager(workers=settings.agent.io_workers)
        self.enumerator = Enumerator.from_settings(self.manager, settings)
        self.watcher = HotplugWatcher(
            self.manager,
            self.enumerator,
            grace_period=settings.hotplug.grace_period,
            probe_retries=settings.hotplug.probe_retries,
            retry_delay=settings.hotplug.retry_delay,
            listener=self._on_hotplug,
        )
        self.poller = DevicePoller(
            self.watcher,
            drm_root=settings.hotplug.drm_root,
            interval=settings.hotplug.poll_interval,
        )

        sync = settings.sync
        self.daemon = BrightnessSyncDaemon(
            self.manager,
            self.store,
            debounce=sync.debounce,
            mode=sync.mode,
            primary=DisplayId.parse(sync.primary_display) if sync.primary_display else None,
            max_parallel=sync.max_parallel,
            verify_writes=sync.verify_writes,
        )
        self.keys = keys if keys is not None else self._key_source()

        self.displays: dict[DisplayId, MonitorInfo] = {}

        # Shutdown coordination
        self._shutdown_event = asyncio.Event()

    async def run(self) -> None:
        """Main entry point - run the agent."""
        self._setup_signal_handlers()
        tasks: list[asyncio.Task] = []

        try:
            await self._discover_displays()

            if self.settings.hotplug.enabled:
                tasks.append(asyncio.create_task(self.watcher.run(), name="hotplug"))
                tasks.append(asyncio.create_task(self.poller.run(), name="poller"))
            elif not self.displays:
                logger.error("No displays found and hotplug is disabled. Exiting.")
                return

            if self.settings.sync.enabled and self.keys is not None:
                tasks.append(asyncio.create_task(self.daemon.run(self.keys), name="sync"))

            await self._wait(tasks)
        except asyncio.CancelledError:
            logger.info("Agent cancelled")
        finally:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            await self.manager.shutdown()
            logger.info("Agent shutdown complete")

    def _setup_signal_handlers(self) -> None:
        """Register signal handlers for graceful shutdown."""
        loop = asyncio.get_running_loop()

        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, lambda s=sig: self._handle_shutdown(s))

    def _handle_shutdown(self, sig: signal.Signals) -> None:
        """Handle shutdown signal."""
        logger.info(f"Received {sig.name}, initiating graceful shutdown...")
        self._shutdown_event.set()

    def _key_source(self) -> Optional[AsyncIterable[int]]:
        keys = self.settings.keys
        if keys.source is KeySource.NONE:
            return None
        return DbusBrightnessKeys(keys.bus_name, keys.object_path, keys.interface)

    async def _discover_displays(self) -> None:
        """Initial scan; displays found here are handed to the hotplug watcher."""
        logger.info("Discovering displays...")
        discovered = await self.enumerator.scan()
        registered = await self.enumerator.register(discovered)

        for info in registered:
            self.displays[info.id] = info
            self.watcher.mark_present(info)
            logger.info(
                f"  {info.label}: id={info.id}, "
                f"brightness={'read/write' if info.can_read_brightness else 'write only'}"
            )

        logger.info(f"Discovered {len(self.displays)} display(s)")

    async def _on_hotplug(self, kind: EventKind, info: MonitorInfo) -> None:
        if kind is EventKind.ADDED:
            self.displays[info.id] = info
        else:
            self.displays.pop(info.id, None)

    async def _wait(self, tasks: list[asyncio.Task]) -> None:
        """Wait for shutdown; a background task dying with an error is logged."""
        shutdown = asyncio.create_task(self._shutdown_event.wait())
        pending = set(tasks) | {shutdown}

        try:
            while not self._shutdown_event.is_set():
                done, pending = await asyncio.wait(pending, return_when=asyncio.FIRST_COMPLETED)
                for task in done:
                    if task is shutdown or task.cancelled():
                        continue
                    if task.exception() is not None:
                        logger.error(
                            f"{task.get_name()} stopped: {task.exception()}",
                            exc_info=task.exception(),
                        )
                    else:
                        logger.info(f"{task.get_name()} finished")
                if pending == {shutdown}:
                    logger.info("Nothing left to run")
                    break
        finally:
            shutdown.cancel()
