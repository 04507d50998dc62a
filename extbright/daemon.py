"""Brightness-key sync: mirror the desktop brightness onto external displays."""

import asyncio
import logging
from typing import AsyncIterable, Optional

from extbright.backends.base import DisplayId
from extbright.backends.ddc import READ_AFTER_WRITE_DELAY
from extbright.brightness import BrightnessCalculator
from extbright.config import SyncMode
from extbright.errors import ExtBrightError, UnsupportedError
from extbright.manager import DisplayManager
from extbright.store import BrightnessProfile, ConfigStore

logger = logging.getLogger(__name__)

__all__ = ["BrightnessSyncDaemon", "SyncMode", "apply_profile"]


class BrightnessSyncDaemon:
    """Applies brightness-key changes to the tracked displays.

    Each notification restarts a short debounce window; only the last value of
    a burst reaches the hardware. Device errors are logged per display and
    never stop the daemon.
    """

    def __init__(
        self,
        manager: DisplayManager,
        store: ConfigStore,
        debounce: float = 0.05,
        mode: SyncMode = SyncMode.ALL,
        primary: Optional[DisplayId] = None,
        max_parallel: int = 4,
        verify_writes: bool = False,
    ):
        self.manager = manager
        self.store = store
        self.calculator = BrightnessCalculator(store)
        self.debounce = debounce
        self.mode = mode
        self.primary = primary
        self.max_parallel = max_parallel
        self.verify_writes = verify_writes

        self._pending: Optional[asyncio.Task] = None
        self._applying: set[asyncio.Task] = set()

    def notify(self, value: int) -> None:
        """Schedule ``value`` to be applied once the debounce window elapses."""
        value = min(max(int(value), 0), 100)
        if self._pending is not None and not self._pending.done():
            self._pending.cancel()
        self._pending = asyncio.create_task(self._debounced(value))

    async def run(self, source: AsyncIterable[int]) -> None:
        """Serve notifications from ``source`` until it ends or the task is cancelled."""
        logger.info(f"Brightness sync started (mode: {self.mode.value})")
        try:
            async for value in source:
                logger.debug(f"Brightness key: {value}%")
                self.notify(value)
        finally:
            await self.close()

    async def close(self) -> None:
        """Drop the pending notification and wait out applies in progress."""
        waiting = list(self._applying)
        if self._pending is not None:
            self._pending.cancel()
            waiting.append(self._pending)
            self._pending = None
        if waiting:
            await asyncio.gather(*waiting, return_exceptions=True)

    def targets(self) -> list[DisplayId]:
        """Displays the next apply will touch."""
        tracked = self.manager.ids()
        if self.mode is SyncMode.PRIMARY:
            if self.primary is not None and self.primary in tracked:
                return [self.primary]
            return tracked[:1]
        return [d for d in tracked if self.calculator.is_sync_enabled(d)]

    async def apply(self, value: int) -> dict[DisplayId, int]:
        """Apply a 0-100 key value to every target display concurrently.

        Returns:
            The device value set on each display that accepted it
        """
        targets = self.targets()
        if not targets:
            logger.debug("No displays to sync")
            return {}

        semaphore = asyncio.Semaphore(self.max_parallel)

        async def apply_one(display_id: DisplayId) -> Optional[int]:
            target = self.calculator.calculate_for_display(value, display_id)
            async with semaphore:
                try:
                    await self.manager.set_brightness(display_id, target)
                except (ExtBrightError, OSError) as e:
                    logger.error(f"Failed to set {display_id} to {target}%: {e}")
                    return None

            if self.verify_writes:
                await self._verify(display_id, target)
            return target

        results = await asyncio.gather(*[apply_one(d) for d in targets])
        applied = {d: r for d, r in zip(targets, results) if r is not None}
        logger.info(f"Synced {value}% to {len(applied)}/{len(targets)} display(s)")
        return applied

    async def _debounced(self, value: int) -> None:
        await asyncio.sleep(self.debounce)
        # A later notification must not cancel a hardware write already under way
        task = asyncio.create_task(self.apply(value))
        self._applying.add(task)
        task.add_done_callback(self._applying.discard)

    async def _verify(self, display_id: DisplayId, expected: int) -> None:
        await asyncio.sleep(READ_AFTER_WRITE_DELAY)
        try:
            actual = await self.manager.get_brightness(display_id)
        except UnsupportedError:
            return
        except (ExtBrightError, OSError) as e:
            logger.warning(f"Could not verify brightness of {display_id}: {e}")
            return

        if abs(actual - expected) > 1:
            logger.warning(f"{display_id} reports {actual}% after setting {expected}%")


async def apply_profile(manager: DisplayManager, profile: BrightnessProfile) -> dict[DisplayId, int]:
    """Apply a saved profile to the tracked displays it names.

    Values are applied as stored, without the gamma curve. Displays in the
    profile that are not connected are skipped.
    """
    wanted = {DisplayId.parse(key): value for key, value in profile.values.items()}
    present = [d for d in wanted if d in manager]

    for missing in set(wanted) - set(present):
        logger.info(f"Profile '{profile.name}': {missing} is not connected, skipping")

    async def apply_one(display_id: DisplayId) -> bool:
        try:
            await manager.set_brightness(display_id, wanted[display_id])
            return True
        except (ExtBrightError, OSError) as e:
            logger.error(f"Profile '{profile.name}': failed to set {display_id}: {e}")
            return False

    results = await asyncio.gather(*[apply_one(d) for d in present])
    return {d: wanted[d] for d, ok in zip(present, results) if ok}
