"""Tests for the display registry."""

import asyncio
import threading
import time

import pytest
from fakes import FakeProtocol, Overlap

from extbright.backends.base import DisplayId
from extbright.errors import CommunicationError, DisplayNotFound
from extbright.manager import DisplayManager

DISPLAY = DisplayId.ddc("HNMNB00590")
OTHER = DisplayId.hid("ABC123")


def test_concurrent_get_or_create_opens_once():
    opened = []
    lock = threading.Lock()

    def opener():
        with lock:
            opened.append(1)
        time.sleep(0.05)
        return FakeProtocol()

    async def main():
        async with DisplayManager() as manager:
            handles = await asyncio.gather(
                *[manager.get_or_create(DISPLAY, opener) for _ in range(5)]
            )
            return handles, len(manager)

    handles, count = asyncio.run(main())

    assert len(opened) == 1
    assert all(h is handles[0] for h in handles)
    assert count == 1


def test_existing_handle_is_reused():
    async def main():
        async with DisplayManager() as manager:
            first = await manager.get_or_create(DISPLAY, FakeProtocol)
            second = await manager.get_or_create(DISPLAY, lambda: pytest.fail("opened twice"))
            return first is second

    assert asyncio.run(main())


def test_failed_open_is_not_registered():
    def broken():
        time.sleep(0.02)
        raise OSError(13, "Permission denied")

    async def main():
        async with DisplayManager() as manager:
            results = await asyncio.gather(
                manager.get_or_create(DISPLAY, broken),
                manager.get_or_create(DISPLAY, broken),
                return_exceptions=True,
            )
            registered_after_failure = DISPLAY in manager

            # A later attempt may succeed
            handle = await manager.get_or_create(DISPLAY, FakeProtocol)
            return results, registered_after_failure, handle

    results, registered_after_failure, handle = asyncio.run(main())

    assert all(isinstance(r, OSError) for r in results)
    assert not registered_after_failure
    assert handle.id == DISPLAY


def test_commands_to_same_display_never_overlap():
    protocol = FakeProtocol(delay=0.05)

    async def main():
        async with DisplayManager(workers=4) as manager:
            await manager.get_or_create(DISPLAY, lambda: protocol)
            await asyncio.gather(
                manager.set_brightness(DISPLAY, 10),
                manager.set_brightness(DISPLAY, 20),
                manager.get_brightness(DISPLAY),
                manager.set_brightness(DISPLAY, 30),
            )

    asyncio.run(main())

    assert protocol.overlap.max_active == 1
    assert protocol.set_calls == [10, 20, 30]


def test_commands_to_distinct_displays_run_in_parallel():
    overlap = Overlap()
    first = FakeProtocol("/dev/i2c-1", delay=0.2, overlap=overlap)
    second = FakeProtocol("/dev/i2c-2", delay=0.2, overlap=overlap)

    async def main():
        async with DisplayManager(workers=4) as manager:
            await manager.get_or_create(DISPLAY, lambda: first)
            await manager.get_or_create(OTHER, lambda: second)
            await asyncio.gather(
                manager.set_brightness(DISPLAY, 10),
                manager.set_brightness(OTHER, 20),
            )

    asyncio.run(main())

    assert overlap.max_active == 2


def test_min_command_interval_is_enforced():
    protocol = FakeProtocol(min_command_interval=0.1)

    async def main():
        async with DisplayManager() as manager:
            await manager.get_or_create(DISPLAY, lambda: protocol)
            await manager.get_brightness(DISPLAY)
            await manager.get_brightness(DISPLAY)

    asyncio.run(main())

    first, second = protocol.command_times
    assert second - first >= 0.09


def test_errors_propagate_to_caller():
    protocol = FakeProtocol(fail=CommunicationError("no ack"))

    async def main():
        async with DisplayManager() as manager:
            await manager.get_or_create(DISPLAY, lambda: protocol)
            await manager.set_brightness(DISPLAY, 10)

    with pytest.raises(CommunicationError):
        asyncio.run(main())


def test_remove_closes_and_forgets():
    protocol = FakeProtocol()

    async def main():
        async with DisplayManager() as manager:
            await manager.get_or_create(DISPLAY, lambda: protocol)
            await manager.remove(DISPLAY)
            assert DISPLAY not in manager
            with pytest.raises(DisplayNotFound):
                await manager.get_brightness(DISPLAY)

    asyncio.run(main())
    assert protocol.closed


def test_remove_unknown_is_noop():
    async def main():
        async with DisplayManager() as manager:
            await manager.remove(DISPLAY)
            return len(manager)

    assert asyncio.run(main()) == 0


def test_device_paths_and_ids():
    async def main():
        async with DisplayManager() as manager:
            await manager.get_or_create(DISPLAY, lambda: FakeProtocol("/dev/i2c-7"))
            await manager.get_or_create(OTHER, lambda: FakeProtocol("1-2:1.7"))
            return manager.device_paths(), set(manager.ids())

    paths, ids = asyncio.run(main())

    assert paths == {"/dev/i2c-7", "1-2:1.7"}
    assert ids == {DISPLAY, OTHER}


def test_shutdown_closes_every_handle():
    protocols = [FakeProtocol("/dev/i2c-1"), FakeProtocol("/dev/i2c-2")]

    async def main():
        manager = DisplayManager()
        await manager.get_or_create(DISPLAY, lambda: protocols[0])
        await manager.get_or_create(OTHER, lambda: protocols[1])
        await manager.shutdown()
        return len(manager)

    assert asyncio.run(main()) == 0
    assert all(p.closed for p in protocols)


def test_cancelled_open_closes_late_device():
    protocol = FakeProtocol()
    released = threading.Event()

    def slow_opener():
        released.wait(1.0)
        return protocol

    async def main():
        async with DisplayManager() as manager:
            task = asyncio.create_task(manager.get_or_create(DISPLAY, slow_opener))
            await asyncio.sleep(0.05)
            await manager.shutdown()
            released.set()
            with pytest.raises(asyncio.CancelledError):
                await task
            # Let the worker thread finish and the done callback run
            await asyncio.sleep(0.1)
            return DISPLAY in manager

    assert asyncio.run(main()) is False
    assert protocol.closed
