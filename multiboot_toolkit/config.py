"""Immutable configuration threaded through every engine call."""

from __future__ import annotations

import os
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any

ENV_BOOT_DIR = "MULTIBOOT_BOOT_DIR"
ENV_MOUNT_ROOT = "MULTIBOOT_MOUNT_ROOT"
ENV_ENV_MARKER = "MULTIBOOT_ENV_MARKER"

DEFAULT_BOOT_DIR = Path("/boot")
DEFAULT_MOUNT_ROOT = Path("/mnt/multiboot")
# Armbian hosts boot through armbianEnv.txt instead of cmdline.txt.
DEFAULT_ENV_MARKER = Path("/etc/armbian-release")

MIRROR_DIRNAME = "_boot"
DESCRIPTION_STORE_NAME = "multiboot.desc"
SELF_DESCRIPTION_NAME = "multiboot.self"
ROOT_FSTYPE = "ext4"
REBOOT_DELAY_SECS = 10


@dataclass(frozen=True, slots=True)
class Settings:
    """Addressing mode and host layout for one invocation."""

    use_uuid: bool = False
    sd_card: bool = False
    format: bool = False
    verbose: bool = False
    dry_run: bool = False
    root_dir: Path = Path("/")
    boot_dir: Path = DEFAULT_BOOT_DIR
    mount_root: Path = DEFAULT_MOUNT_ROOT
    env_marker: Path = DEFAULT_ENV_MARKER

    @property
    def description_store(self) -> Path:
        return self.boot_dir / DESCRIPTION_STORE_NAME

    @property
    def current_mirror(self) -> Path:
        return self.root_dir / MIRROR_DIRNAME


def load_settings(**overrides: Any) -> Settings:
    """Build :class:`Settings` from the environment, then explicit overrides.

    ``None`` overrides are ignored so argparse defaults can be passed through.
    """

    settings = Settings()
    env_values: dict[str, Any] = {}
    boot_dir = os.environ.get(ENV_BOOT_DIR)
    if boot_dir:
        env_values["boot_dir"] = Path(boot_dir)
    mount_root = os.environ.get(ENV_MOUNT_ROOT)
    if mount_root:
        env_values["mount_root"] = Path(mount_root)
    env_marker = os.environ.get(ENV_ENV_MARKER)
    if env_marker:
        env_values["env_marker"] = Path(env_marker)
    settings = replace(settings, **env_values)
    explicit = {key: value for key, value in overrides.items() if value is not None}
    for key in ("root_dir", "boot_dir", "mount_root", "env_marker"):
        if key in explicit:
            explicit[key] = Path(explicit[key])
    return replace(settings, **explicit)
