"""Process-wide registry of open displays.

Every component that talks to hardware (CLI, hotplug watcher, sync daemon)
goes through one DisplayManager so that each physical display has exactly one
open connection and at most one command in flight.
"""

import asyncio
import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Optional, TypeVar

from extbright.backends.base import DisplayId, DisplayProtocol
from extbright.errors import DisplayNotFound

logger = logging.getLogger(__name__)

T = TypeVar("T")

Opener = Callable[[], DisplayProtocol]


class DisplayHandle:
    """The single live connection to one display.

    Commands run one at a time under ``lock``, spaced by the protocol's
    ``min_command_interval``.
    """

    def __init__(self, display_id: DisplayId, protocol: DisplayProtocol):
        self.id = display_id
        self.protocol = protocol
        self.lock = asyncio.Lock()
        self.closed = False
        self._last_command: Optional[float] = None

    @property
    def device_path(self) -> str:
        return self.protocol.device_path

    async def run(self, op: Callable[[DisplayProtocol], T], executor: ThreadPoolExecutor) -> T:
        """Run a blocking protocol operation with exclusive access."""
        loop = asyncio.get_running_loop()

        async with self.lock:
            if self.closed:
                raise DisplayNotFound(f"{self.id} was removed")

            if self._last_command is not None:
                wait = self._last_command + self.protocol.min_command_interval - loop.time()
                if wait > 0:
                    await asyncio.sleep(wait)

            future = loop.run_in_executor(executor, op, self.protocol)
            try:
                return await asyncio.shield(future)
            except asyncio.CancelledError:
                # The worker thread still owns the device; keep the lock until it is done
                await asyncio.wait([future])
                raise
            finally:
                self._last_command = loop.time()

    def __repr__(self) -> str:
        return f"DisplayHandle({self.id}, {self.device_path})"


class DisplayManager:
    """Owns one DisplayHandle per DisplayId.

    Create one per process and pass it to every component; use as an async
    context manager or call ``shutdown()`` to close all handles.
    """

    def __init__(self, executor: Optional[ThreadPoolExecutor] = None, workers: int = 4):
        """Initialize the registry.

        Args:
            executor: Worker pool for blocking hardware calls; created if omitted
            workers: Pool size when the pool is created here
        """
        self._own_executor = executor is None
        self.executor = executor or ThreadPoolExecutor(
            max_workers=workers, thread_name_prefix="extbright-io"
        )
        self._handles: dict[DisplayId, DisplayHandle] = {}
        self._opening: dict[DisplayId, asyncio.Task] = {}

    async def __aenter__(self) -> "DisplayManager":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.shutdown()

    def __contains__(self, display_id: DisplayId) -> bool:
        return display_id in self._handles

    def __len__(self) -> int:
        return len(self._handles)

    def get(self, display_id: DisplayId) -> Optional[DisplayHandle]:
        return self._handles.get(display_id)

    def ids(self) -> list[DisplayId]:
        return list(self._handles)

    def device_paths(self) -> set[str]:
        """Raw device paths owned by live handles."""
        return {handle.device_path for handle in self._handles.values()}

    async def run_blocking(self, fn: Callable[..., T], *args) -> T:
        """Run a blocking call that is not tied to a handle on the worker pool."""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self.executor, fn, *args)

    async def get_or_create(self, display_id: DisplayId, opener: Opener) -> DisplayHandle:
        """Return the handle for ``display_id``, opening it on first use.

        Concurrent first callers share a single call to ``opener``. If the open
        fails nothing is registered and every waiter receives the error.
        """
        handle = self._handles.get(display_id)
        if handle is not None:
            return handle

        task = self._opening.get(display_id)
        if task is None:
            task = asyncio.create_task(self._open(display_id, opener))
            # Mark the exception retrieved even if every waiter was cancelled
            task.add_done_callback(lambda t: t.cancelled() or t.exception())
            self._opening[display_id] = task

        return await asyncio.shield(task)

    async def _open(self, display_id: DisplayId, opener: Opener) -> DisplayHandle:
        loop = asyncio.get_running_loop()
        future = loop.run_in_executor(self.executor, opener)

        try:
            protocol = await asyncio.shield(future)
        except asyncio.CancelledError:
            future.add_done_callback(_close_abandoned)
            raise
        finally:
            self._opening.pop(display_id, None)

        handle = DisplayHandle(display_id, protocol)
        self._handles[display_id] = handle
        logger.info(f"Display {display_id} added to manager ({handle.device_path})")
        return handle

    async def remove(self, display_id: DisplayId) -> None:
        """Close and forget a display. No-op if it is not registered."""
        handle = self._handles.pop(display_id, None)
        if handle is None:
            return

        async with handle.lock:
            handle.closed = True
            try:
                await self.run_blocking(handle.protocol.close)
            except OSError as e:
                logger.warning(f"Error closing {display_id}: {e}")

        logger.info(f"Display {display_id} removed from manager")

    async def with_handle(self, display_id: DisplayId, op: Callable[[DisplayProtocol], T]) -> T:
        """Run ``op(protocol)`` on the worker pool with exclusive access to the display.

        Raises:
            DisplayNotFound: if no handle is registered for the id
        """
        handle = self._handles.get(display_id)
        if handle is None:
            raise DisplayNotFound(f"{display_id} is not open")
        return await handle.run(op, self.executor)

    async def get_brightness(self, display_id: DisplayId) -> int:
        return await self.with_handle(display_id, lambda p: p.get_brightness())

    async def set_brightness(self, display_id: DisplayId, value: int) -> None:
        await self.with_handle(display_id, lambda p: p.set_brightness(value))

    async def shutdown(self) -> None:
        """Abandon pending opens and close every handle."""
        pending = list(self._opening.values())
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

        for display_id in list(self._handles):
            await self.remove(display_id)

        if self._own_executor:
            self.executor.shutdown(wait=False)


def _close_abandoned(future: "asyncio.Future[DisplayProtocol]") -> None:
    """Close a device whose open finished after its caller gave up."""
    if future.cancelled() or future.exception() is not None:
        return
    try:
        future.result().close()
    except OSError as e:
        logger.debug(f"Error closing abandoned device: {e}")
