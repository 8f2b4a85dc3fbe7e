"""Settings storage for operational paths and timings."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any


SETTINGS_PATH = Path(
    os.environ.get(
        "MOUNT_MIGRATOR_SETTINGS_PATH",
        "/etc/mount-migrator/settings.json",
    )
)

# Default values - use these constants instead of hardcoding values elsewhere
DEFAULT_LOCK_PATH = "/run/mount-migrator.lock"
DEFAULT_FSTAB_PATH = "/etc/fstab"
DEFAULT_SETTLE_SECONDS = 2.0
DEFAULT_CONTAINER_GRACE_SECONDS = 5.0

DEFAULT_SETTINGS: dict[str, Any] = {
    "lock_path": DEFAULT_LOCK_PATH,
    "fstab_path": DEFAULT_FSTAB_PATH,
    "settle_seconds": DEFAULT_SETTLE_SECONDS,
    "container_grace_seconds": DEFAULT_CONTAINER_GRACE_SECONDS,
}


@dataclass
class SettingsStore:
    values: dict[str, Any] = field(default_factory=dict)


settings_store = SettingsStore()


def load_settings(path: Path | None = None) -> None:
    settings_store.values = dict(DEFAULT_SETTINGS)
    path = path or SETTINGS_PATH
    if not path.exists():
        return
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError):
        return
    if isinstance(data, dict):
        settings_store.values.update(
            {key: value for key, value in data.items() if key in DEFAULT_SETTINGS}
        )


def get_setting(key: str, default: Any | None = None) -> Any:
    return settings_store.values.get(key, default)


def get_path(key: str) -> Path:
    return Path(get_setting(key, DEFAULT_SETTINGS[key]))


def get_float(key: str) -> float:
    value = get_setting(key, DEFAULT_SETTINGS[key])
    try:
        return float(value)
    except (TypeError, ValueError):
        return float(DEFAULT_SETTINGS[key])


load_settings()
