"""Tests for brightness-key notification sources."""

import asyncio

import pytest

from extbright.keys import QueueKeys, changed_brightness, to_percentage


@pytest.mark.parametrize(
    "value, maximum, expected",
    [(0, 100, 0), (50, 100, 50), (7500, 10000, 75), (1, 3, 33), (200, 100, 100), (40, 0, 40)],
)
def test_to_percentage(value, maximum, expected):
    assert to_percentage(value, maximum) == expected


def test_changed_brightness_unwraps_variant():
    assert changed_brightness({"DisplayBrightness": ("i", 42)}) == 42
    assert changed_brightness({"DisplayBrightness": 17}) == 17


def test_changed_brightness_ignores_other_properties():
    assert changed_brightness({"KeyboardBrightness": ("i", 42)}) is None
    assert changed_brightness({}) is None


def test_queue_keys():
    async def main():
        keys = QueueKeys()
        for value in (10, 20, 30):
            keys.put(value)
        keys.close()
        return [value async for value in keys]

    assert asyncio.run(main()) == [10, 20, 30]
