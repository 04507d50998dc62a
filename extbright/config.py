"""Configuration management using pydantic-settings."""

import enum
import os
from pathlib import Path
from typing import Optional

import yaml
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

CONFIG_DIR = Path.home() / ".config" / "extbright"


class AgentSettings(BaseModel):
    """Process-wide settings."""

    log_level: str = Field(default="INFO")
    store_path: Path = Field(default=CONFIG_DIR / "displays.yaml")
    io_workers: int = Field(default=4, ge=1, le=32)


class DdcSettings(BaseModel):
    """DDC/CI transport settings."""

    retries: int = Field(default=5, ge=1, le=10)
    backoff: float = Field(default=0.05, ge=0.0, le=2.0)
    i2c_glob: str = Field(default="/dev/i2c-*")


class EnumerationSettings(BaseModel):
    """Device discovery and output correlation settings."""

    concurrency: int = Field(default=4, ge=1, le=32)
    correlate: bool = True
    randr_command: str = Field(default="wlr-randr")
    command_timeout: float = Field(default=5.0, ge=0.5, le=60.0)


class HotplugSettings(BaseModel):
    """Hotplug watcher settings."""

    enabled: bool = True
    grace_period: float = Field(default=1.5, ge=0.1, le=10.0)
    poll_interval: float = Field(default=1.0, ge=0.1, le=60.0)
    probe_retries: int = Field(default=3, ge=0, le=10)
    retry_delay: float = Field(default=1.0, ge=0.1, le=30.0)
    drm_root: Path = Field(default=Path("/sys/class/drm"))


class SyncMode(str, enum.Enum):
    ALL = "all"
    PRIMARY = "primary"


class SyncSettings(BaseModel):
    """Brightness-key sync daemon settings."""

    enabled: bool = True
    debounce: float = Field(default=0.05, ge=0.0, le=2.0)
    mode: SyncMode = SyncMode.ALL
    primary_display: Optional[str] = None  # e.g., "ddc-0x112E647C"
    max_parallel: int = Field(default=4, ge=1, le=16)
    verify_writes: bool = False


class KeySource(str, enum.Enum):
    DBUS = "dbus"
    NONE = "none"


class KeySettings(BaseModel):
    """Where brightness-key notifications come from."""

    source: KeySource = KeySource.DBUS
    bus_name: str = Field(default="com.system76.CosmicSettingsDaemon")
    object_path: str = Field(default="/com/system76/CosmicSettingsDaemon")
    interface: str = Field(default="com.system76.CosmicSettingsDaemon")


class Settings(BaseSettings):
    """Root configuration combining all settings."""

    model_config = SettingsConfigDict(
        env_prefix="EXTBRIGHT_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    agent: AgentSettings = Field(default_factory=AgentSettings)
    ddc: DdcSettings = Field(default_factory=DdcSettings)
    enumeration: EnumerationSettings = Field(default_factory=EnumerationSettings)
    hotplug: HotplugSettings = Field(default_factory=HotplugSettings)
    sync: SyncSettings = Field(default_factory=SyncSettings)
    keys: KeySettings = Field(default_factory=KeySettings)

    @classmethod
    def load(cls, config_path: Optional[Path] = None) -> "Settings":
        """Load settings from env vars and optional YAML file.

        Priority: Environment variables override YAML file values.
        """
        yaml_data: dict = {}

        if config_path and config_path.exists():
            with open(config_path) as f:
                yaml_data = yaml.safe_load(f) or {}
        else:
            default_paths = [
                CONFIG_DIR / "config.yaml",
                CONFIG_DIR / "config.yml",
                Path("config.yaml"),
                Path("config.yml"),
            ]
            for path in default_paths:
                if path.exists():
                    with open(path) as f:
                        yaml_data = yaml.safe_load(f) or {}
                    break

        # pydantic-settings gives init kwargs priority over env vars, so only
        # pass the YAML sections the environment does not override
        return cls(**_without_env_overrides(yaml_data))


def _without_env_overrides(yaml_data: dict) -> dict:
    sections = {}
    for name, section in yaml_data.items():
        if name not in Settings.model_fields or not isinstance(section, dict):
            continue
        prefix = f"EXTBRIGHT_{name.upper()}__"
        overridden = {
            key[len(prefix):].lower() for key in os.environ if key.upper().startswith(prefix)
        }
        sections[name] = {k: v for k, v in section.items() if k.lower() not in overridden}
    return sections
