"""Storage-mutating collaborators: mounts, formatting, labels, bulk copy, loop devices."""

from __future__ import annotations

import contextlib
import re
import shutil
from pathlib import Path
from typing import Iterator, List, Optional, Sequence

from . import console, devices
from .context import OperationContext
from .errors import ToolFailureError

FAT_LABEL_MAX = 11
EXT_LABEL_MAX = 16

RSYNC_BASE = ["rsync", "-aHAX", "--numeric-ids"]


def ensure_mount_point(path: Path) -> None:
    path.mkdir(parents=True, exist_ok=True)


def mount_partition(
    ctx: OperationContext, device: str, mountpoint: Path, *, read_only: bool = False
) -> None:
    ensure_mount_point(mountpoint)
    command = ["mount"]
    if read_only:
        command.extend(["-o", "ro"])
    command.extend([device, str(mountpoint)])
    ctx.run(command)
    ctx.register_mount(mountpoint)


def unmount_partition(ctx: OperationContext, mountpoint: Path) -> None:
    try:
        ctx.run(["umount", str(mountpoint)])
    finally:
        ctx.unregister_mount(mountpoint)


@contextlib.contextmanager
def mounted(
    ctx: OperationContext, device: str, mountpoint: Path, *, read_only: bool = False
) -> Iterator[Path]:
    """Mount ``device`` for the duration of the block, unmounting on every exit path."""

    mount_partition(ctx, device, mountpoint, read_only=read_only)
    try:
        yield mountpoint
    finally:
        unmount_partition(ctx, mountpoint)


def format_partition(ctx: OperationContext, device: str, fstype: str) -> None:
    if fstype == "vfat":
        ctx.run(["mkfs.vfat", "-F", "32", device])
    else:
        ctx.run([f"mkfs.{fstype}", "-F", "-q", device])


def sanitize_fat_label(label: str) -> str:
    cleaned = re.sub(r"[^A-Za-z0-9 _-]", "_", label or "")
    cleaned = cleaned.upper().strip()
    if len(cleaned) > FAT_LABEL_MAX:
        cleaned = cleaned[:FAT_LABEL_MAX]
    return cleaned or "BOOT"


def clamp_ext_label(label: str) -> str:
    if len(label) > EXT_LABEL_MAX:
        return label[:EXT_LABEL_MAX]
    return label


def _label_command(device: str, fstype: str, label: str) -> Optional[List[str]]:
    if fstype in {"ext2", "ext3", "ext4"}:
        return ["e2label", device, clamp_ext_label(label)]
    if fstype in {"vfat", "fat", "fat32"}:
        return ["fatlabel", device, sanitize_fat_label(label)]
    if fstype == "btrfs":
        return ["btrfs", "filesystem", "label", device, label]
    if fstype == "xfs":
        return ["xfs_admin", "-L", label[:12], device]
    if fstype == "ntfs":
        return ["ntfslabel", device, label]
    return None


def set_label(
    ctx: OperationContext, device: str, label: str, *, fstype: Optional[str] = None
) -> bool:
    """Apply a filesystem label; unsupported filesystems only warn.

    Returns ``True`` when a labelling command was issued.
    """

    fstype = fstype or devices.filesystem_type(device) or ""
    command = _label_command(device, fstype, label)
    if command is None:
        console.warn(f"Labelling {fstype or 'unknown'} filesystems is not supported ({device}).")
        return False
    if shutil.which(command[0]) is None:
        console.warn(f"{command[0]} is not installed; cannot label {fstype} on {device}.")
        return False
    ctx.run(command)
    return True


def _as_source(path: Path) -> str:
    text = str(path)
    return text if text.endswith("/") else f"{text}/"


def sync_tree(
    ctx: OperationContext,
    source: Path,
    destination: Path,
    *,
    excludes: Sequence[str] = (),
    delete: bool = True,
    one_file_system: bool = False,
) -> None:
    """Copy ``source`` onto ``destination`` with the bulk-copy engine."""

    command = list(RSYNC_BASE)
    if one_file_system:
        command.append("-x")
    if delete:
        command.append("--delete")
    for pattern in excludes:
        command.append(f"--exclude={pattern}")
    command.extend([_as_source(source), _as_source(destination)])
    ctx.run(command)


def copy_sparse_file(ctx: OperationContext, source: Path, destination: Path) -> None:
    """Copy a swap file fully allocated so the kernel can still swap to it."""

    ctx.run(["cp", "--sparse=never", "--preserve=mode,ownership", str(source), str(destination)])


def attach_loop(ctx: OperationContext, image: Path) -> str:
    result = ctx.run(["losetup", "--find", "--show", "--partscan", "--read-only", str(image)])
    device = (result.stdout or "").strip()
    if ctx.dry_run:
        device = device or "/dev/loop-dry-run"
    if not device:
        raise ToolFailureError(f"losetup did not report a loop device for {image}")
    ctx.register_loop(device)
    return device


def detach_loop(ctx: OperationContext, device: str) -> None:
    try:
        ctx.run(["losetup", "-d", device])
    finally:
        ctx.unregister_loop(device)


@contextlib.contextmanager
def attached_loop(ctx: OperationContext, image: Path) -> Iterator[str]:
    device = attach_loop(ctx, image)
    try:
        yield device
    finally:
        detach_loop(ctx, device)


def loop_partition(device: str, number: int) -> str:
    return f"{device}p{number}"
