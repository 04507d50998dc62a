"""Tests for settings loading."""

import os
from pathlib import Path

import pytest
import yaml
from pydantic import ValidationError

from extbright.config import KeySource, Settings, SyncMode


@pytest.fixture(autouse=True)
def isolated(monkeypatch, tmp_path):
    """Keep real config files and EXTBRIGHT_* variables out of the tests."""
    monkeypatch.chdir(tmp_path)
    monkeypatch.setattr("extbright.config.CONFIG_DIR", tmp_path / "no-config")
    for name in list(os.environ):
        if name.startswith("EXTBRIGHT_"):
            monkeypatch.delenv(name)


def test_defaults():
    settings = Settings.load()

    assert settings.ddc.retries == 5
    assert settings.ddc.backoff == 0.05
    assert settings.sync.debounce == 0.05
    assert settings.sync.mode is SyncMode.ALL
    assert settings.hotplug.grace_period == 1.5
    assert settings.keys.source is KeySource.DBUS
    assert settings.enumeration.randr_command == "wlr-randr"


def test_load_yaml(tmp_path):
    config = tmp_path / "config.yaml"
    config.write_text(
        yaml.safe_dump(
            {
                "sync": {"mode": "primary", "primary_display": "ddc-ABC"},
                "hotplug": {"grace_period": 3},
                "agent": {"store_path": str(tmp_path / "store.yaml")},
            }
        )
    )

    settings = Settings.load(config)

    assert settings.sync.mode is SyncMode.PRIMARY
    assert settings.sync.primary_display == "ddc-ABC"
    assert settings.hotplug.grace_period == 3.0
    assert settings.agent.store_path == tmp_path / "store.yaml"


def test_default_search_path(tmp_path):
    Path("config.yml").write_text(yaml.safe_dump({"ddc": {"retries": 3}}))

    assert Settings.load().ddc.retries == 3


def test_env_overrides_yaml(tmp_path, monkeypatch):
    config = tmp_path / "config.yaml"
    config.write_text(yaml.safe_dump({"sync": {"mode": "all", "debounce": 0.2}}))
    monkeypatch.setenv("EXTBRIGHT_SYNC__MODE", "primary")

    settings = Settings.load(config)

    assert settings.sync.mode is SyncMode.PRIMARY
    assert settings.sync.debounce == 0.2


def test_out_of_range_values_rejected(tmp_path):
    config = tmp_path / "config.yaml"
    config.write_text(yaml.safe_dump({"ddc": {"retries": 0}}))

    with pytest.raises(ValidationError):
        Settings.load(config)
