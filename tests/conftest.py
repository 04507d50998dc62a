"""Shared test fixtures."""

import pytest

from extbright.store import ConfigStore


@pytest.fixture
def store_path(tmp_path):
    """Location of a display store that does not exist yet."""
    return tmp_path / "displays.yaml"


@pytest.fixture
def store(store_path):
    """Empty display store in a temp directory."""
    return ConfigStore.open(store_path)


@pytest.fixture
def no_sleep():
    """Blocking sleep replacement that records requested delays."""
    def sleep(seconds):
        sleep.delays.append(seconds)

    sleep.delays = []
    return sleep
