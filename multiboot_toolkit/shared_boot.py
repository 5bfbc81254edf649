"""Promote one partition to a boot medium shared by every multiboot root."""

from __future__ import annotations

from typing import List, Optional

from . import bootenv, console, devices, storage
from .config import MIRROR_DIRNAME
from .context import OperationContext
from .errors import PreconditionError, ToolFailureError

BOOT_FSTYPE = "vfat"
DEFAULT_BOOT_LABEL = "BOOT"


def promote_shared_boot(
    ctx: OperationContext, target_device: str, *, label: Optional[str] = None
) -> List[str]:
    """Copy the active boot files onto ``target_device`` and repoint every root at it.

    Returns the devices whose mount table was rewritten.
    """

    settings = ctx.settings
    if not devices.is_block_device(target_device):
        raise PreconditionError(f"{target_device} is not a block device")
    if devices.mountpoints(target_device):
        raise PreconditionError(f"{target_device} is mounted; unmount it first")
    current_root = devices.resolve_current(settings.root_dir)
    current_boot = devices.resolve_current(settings.boot_dir)
    if devices.same_device(target_device, current_root.path):
        raise PreconditionError(f"{target_device} is the running root")
    if devices.same_device(target_device, current_boot.path):
        raise PreconditionError(f"{target_device} already serves {settings.boot_dir}")

    if settings.format:
        ctx.log(f"Formatting {target_device} as {BOOT_FSTYPE}")
        storage.format_partition(ctx, target_device, BOOT_FSTYPE)
    new_boot_mount = settings.mount_root / "newboot"
    with storage.mounted(ctx, target_device, new_boot_mount):
        ctx.log(f"Copying {settings.boot_dir} onto {target_device}")
        storage.sync_tree(ctx, settings.boot_dir, new_boot_mount, delete=False)
    storage.set_label(
        ctx,
        target_device,
        storage.sanitize_fat_label(label or DEFAULT_BOOT_LABEL),
        fstype=BOOT_FSTYPE if settings.format else None,
    )

    boot_ref = bootenv.settings_reference(target_device, settings)
    rewritten: List[str] = []
    if ctx.dry_run:
        ctx.log(f"Would point {settings.root_dir / 'etc' / 'fstab'} /boot at {boot_ref}")
    else:
        fstab = settings.root_dir / "etc" / "fstab"
        if fstab.exists() and "/boot" in bootenv.rewrite_mount_table(fstab, None, boot_ref):
            rewritten.append(current_root.path)

    member_mount = settings.mount_root / "member"
    for partition in devices.list_partitions():
        if not partition.label or partition.fstype in {"", "swap"}:
            continue
        if any(
            devices.same_device(partition.path, other)
            for other in (current_root.path, current_boot.path, target_device)
        ):
            continue
        if devices.mountpoints(partition.path):
            console.warn(f"Skipping {partition.path}: it is mounted")
            continue
        try:
            storage.mount_partition(ctx, partition.path, member_mount)
        except ToolFailureError as exc:
            console.warn(f"Skipping {partition.path}: {exc}")
            continue
        try:
            if ctx.dry_run:
                ctx.log(f"Would point {partition.path} /boot at {boot_ref}")
                continue
            fstab = member_mount / "etc" / "fstab"
            if not (member_mount / MIRROR_DIRNAME).is_dir() or not fstab.exists():
                continue
            if "/boot" in bootenv.rewrite_mount_table(fstab, None, boot_ref):
                ctx.log(f"{partition.path} now mounts /boot from {boot_ref}")
                rewritten.append(partition.path)
            else:
                console.warn(f"{partition.path} has no /boot entry in its fstab")
        finally:
            storage.unmount_partition(ctx, member_mount)
    return rewritten
