"""Persistent per-display settings and named brightness profiles."""

import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Optional, Union

import yaml
from pydantic import BaseModel, Field, ValidationError

from extbright.backends.base import DDC_PREFIX, HID_PREFIX, DisplayId
from extbright.brightness import GAMMA_MAX, GAMMA_MIN
from extbright.errors import ConfigMigrationWarning

logger = logging.getLogger(__name__)

# Version 1 keyed DDC/CI displays by an I2C-derived number; version 2 keys
# them by EDID serial ("ddc-...") and HID displays by USB serial ("hid-...").
STORE_VERSION = 2

DEFAULT_HID_GAMMA = 1.8
DEFAULT_DDC_GAMMA = 1.0

# Prefixes of ids written by earlier releases that are still stable
_STABLE_PREFIXES = (DDC_PREFIX, HID_PREFIX, "apple-hid-")

IdLike = Union[DisplayId, str]


class PerMonitorConfig(BaseModel):
    """User settings for one display."""

    gamma: float = Field(default=DEFAULT_DDC_GAMMA, ge=GAMMA_MIN, le=GAMMA_MAX)
    min_brightness: int = Field(default=0, ge=0, le=100)
    sync_enabled: bool = True

    @classmethod
    def default_for(cls, display_id: IdLike) -> "PerMonitorConfig":
        display_id = _as_id(display_id)
        gamma = DEFAULT_HID_GAMMA if display_id.is_hid else DEFAULT_DDC_GAMMA
        return cls(gamma=gamma)


class BrightnessProfile(BaseModel):
    """A named brightness snapshot across displays."""

    name: str
    values: dict[str, int] = Field(default_factory=dict)

    def value_for(self, display_id: IdLike) -> Optional[int]:
        return self.values.get(str(display_id))


class StoreData(BaseModel):
    """On-disk document."""

    version: int = STORE_VERSION
    monitors: dict[str, PerMonitorConfig] = Field(default_factory=dict)
    profiles: dict[str, dict[str, int]] = Field(default_factory=dict)


def _as_id(display_id: IdLike) -> DisplayId:
    if isinstance(display_id, DisplayId):
        return display_id
    return DisplayId.parse(display_id)


def is_legacy_id(key: str) -> bool:
    """True for ids from the I2C-numbered scheme (e.g. "22789", "/dev/i2c-7")."""
    return not key.startswith(_STABLE_PREFIXES)


def migrate(data: StoreData) -> Optional[ConfigMigrationWarning]:
    """Bring a document up to STORE_VERSION.

    Legacy identities are never remapped onto new ones: the old settings stay
    in the file but no longer match any display. Returns a warning describing
    the affected ids, or None when nothing needs the user's attention.
    """
    if data.version >= STORE_VERSION:
        return None

    legacy = sorted(
        {key for key in data.monitors if is_legacy_id(key)}
        | {
            key
            for values in data.profiles.values()
            for key in values
            if is_legacy_id(key)
        }
    )
    data.version = STORE_VERSION

    if not legacy:
        return None

    return ConfigMigrationWarning(
        "DDC/CI display ids now use EDID serial numbers (ddc-<serial>). "
        f"Settings and profiles for {', '.join(legacy)} use the old, unstable "
        "format and will not be applied; reconfigure those monitors and "
        "recreate their profiles."
    )


class ConfigStore:
    """YAML-backed store of PerMonitorConfig records and BrightnessProfiles.

    Reads are served from memory. Only explicit user actions write: looking up
    a display that has no record returns defaults without persisting them.
    """

    def __init__(self, path: Path):
        self.path = Path(path).expanduser()
        self.data = StoreData()

    @classmethod
    def open(cls, path: Path) -> "ConfigStore":
        store = cls(path)
        store.load()
        return store

    def load(self) -> None:
        """Load the document, running the version migration once if needed."""
        if not self.path.exists():
            self.data = StoreData()
            return

        with open(self.path) as f:
            raw: Any = yaml.safe_load(f) or {}

        try:
            # Documents without a version predate versioning
            raw.setdefault("version", 1)
            self.data = StoreData(**raw)
        except (AttributeError, TypeError, ValidationError) as e:
            logger.error(f"Ignoring invalid display store {self.path}: {e}")
            self.data = StoreData()
            return

        if self.data.version < STORE_VERSION:
            warning = migrate(self.data)
            if warning is not None:
                logger.warning(str(warning))
            self.save()

    def save(self) -> None:
        """Atomically write the document."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        document = self.data.model_dump()

        fd, tmp = tempfile.mkstemp(dir=self.path.parent, prefix=f".{self.path.name}.")
        try:
            with os.fdopen(fd, "w") as f:
                yaml.safe_dump(document, f, sort_keys=True)
            os.replace(tmp, self.path)
        except BaseException:
            os.unlink(tmp)
            raise

    # Per-monitor settings

    def monitor(self, display_id: IdLike) -> PerMonitorConfig:
        """Settings for a display, or its defaults when none were saved."""
        config = self.data.monitors.get(str(display_id))
        if config is None:
            return PerMonitorConfig.default_for(display_id)
        return config

    def update_monitor(self, display_id: IdLike, **changes: Any) -> PerMonitorConfig:
        """Change settings for a display and persist them.

        Raises:
            pydantic.ValidationError: if a value is out of range
        """
        current = self.monitor(display_id)
        updated = PerMonitorConfig(**{**current.model_dump(), **changes})
        self.data.monitors[str(display_id)] = updated
        self.save()
        logger.info(f"Updated settings for {display_id}: {updated.model_dump()}")
        return updated

    # Profiles

    def profiles(self) -> list[BrightnessProfile]:
        return [
            BrightnessProfile(name=name, values=dict(values))
            for name, values in sorted(self.data.profiles.items())
        ]

    def profile(self, name: str) -> Optional[BrightnessProfile]:
        values = self.data.profiles.get(name)
        if values is None:
            return None
        return BrightnessProfile(name=name, values=dict(values))

    def save_profile(self, name: str, values: dict[IdLike, int]) -> BrightnessProfile:
        """Create or overwrite a profile."""
        profile = BrightnessProfile(
            name=name,
            values={str(k): max(0, min(100, int(v))) for k, v in values.items()},
        )
        self.data.profiles[name] = profile.values
        self.save()
        logger.info(f"Saved profile '{name}' for {len(profile.values)} display(s)")
        return profile

    def delete_profile(self, name: str) -> bool:
        if self.data.profiles.pop(name, None) is None:
            return False
        self.save()
        return True
