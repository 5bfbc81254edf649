"""Partition-private copies of the boot medium (the ``_boot`` mirror)."""

from __future__ import annotations

from pathlib import Path

from . import bootenv, storage
from .config import DESCRIPTION_STORE_NAME, MIRROR_DIRNAME
from .context import OperationContext

# Anchored so only the top-level store file is protected on the destination.
STORE_EXCLUDE = f"/{DESCRIPTION_STORE_NAME}"


def mirror_dir(root: Path) -> Path:
    return root / MIRROR_DIRNAME


def _replace(ctx: OperationContext, source: Path, destination: Path) -> None:
    if not ctx.dry_run:
        destination.mkdir(parents=True, exist_ok=True)
    storage.sync_tree(ctx, source, destination, excludes=[STORE_EXCLUDE], delete=True)


def backup(ctx: OperationContext, active_boot_dir: Path, mirror: Path) -> None:
    """Replace ``mirror`` with the active boot medium's contents."""

    ctx.log(f"Backing up {active_boot_dir} into {mirror}")
    _replace(ctx, active_boot_dir, mirror)


def restore(ctx: OperationContext, mirror: Path, active_boot_dir: Path) -> None:
    """Make ``mirror`` the active boot environment read at next boot."""

    ctx.log(f"Restoring {mirror} onto {active_boot_dir}")
    _replace(ctx, mirror, active_boot_dir)


def is_valid(mirror: Path, fmt: bootenv.BootConfigFormat) -> bool:
    """A mirror is usable only when it holds a boot config naming a root device."""

    if not mirror.is_dir():
        return False
    return bool(bootenv.read_boot_root(mirror / fmt.filename, fmt))
