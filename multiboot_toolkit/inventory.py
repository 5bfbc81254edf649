"""Partition listing, labels, and descriptions for the multiboot set."""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Sequence

from . import console, devices, storage
from .context import OperationContext
from .descriptions import DescriptionStore
from .errors import MultibootError, PreconditionError


@dataclass(frozen=True, slots=True)
class InfoRow:
    partition: devices.Partition
    role: devices.Role
    description: str = ""


def gather_info(ctx: OperationContext) -> List[InfoRow]:
    settings = ctx.settings
    partitions = devices.list_partitions()
    current_root = devices.resolve_current(settings.root_dir)
    boot_source: Optional[str] = None
    next_root: Optional[str] = None
    try:
        boot_source = devices.resolve_current(settings.boot_dir).path
        next_root = devices.resolve_next(settings).path
    except MultibootError as exc:
        console.warn(f"Cannot determine the next root: {exc}")
    roles = devices.classify(partitions, current_root.path, next_root, boot_source)
    records = DescriptionStore(settings.description_store).load() if boot_source else {}
    return [
        InfoRow(partition, roles[partition.path], records.get(partition.path, ""))
        for partition in partitions
    ]


def format_info(rows: Sequence[InfoRow]) -> str:
    header = ("DEVICE", "FSTYPE", "LABEL", "ROLE", "DESCRIPTION")
    table = [header] + [
        (
            row.partition.path,
            row.partition.fstype or "-",
            row.partition.label or "-",
            row.role.value,
            row.description,
        )
        for row in rows
    ]
    widths = [max(len(line[column]) for line in table) for column in range(len(header) - 1)]
    lines = []
    for line in table:
        cells = [cell.ljust(width) for cell, width in zip(line, widths)]
        lines.append("  ".join([*cells, line[-1]]).rstrip())
    return "\n".join(lines)


def label_partition(ctx: OperationContext, device: str, label: str) -> bool:
    if not devices.is_block_device(device):
        raise PreconditionError(f"{device} is not a block device")
    ctx.log(f"Labelling {device} as {label!r}")
    return storage.set_label(ctx, device, label)


def describe_partition(ctx: OperationContext, device: str, text: str) -> None:
    """Record a description in the shared store and on the partition itself."""

    settings = ctx.settings
    devices.resolve_current(settings.boot_dir)
    store = DescriptionStore(settings.description_store)
    current_root = devices.resolve_current(settings.root_dir)
    if devices.same_device(device, current_root.path):
        if ctx.dry_run:
            ctx.log(f"Would describe {current_root.path} as {text!r}")
            return
        store.set_description(
            current_root.path, text, partition_root=settings.root_dir, boot_dir=settings.boot_dir
        )
        return
    if not devices.is_block_device(device):
        raise PreconditionError(f"{device} is not a block device")
    if devices.mountpoints(device):
        raise PreconditionError(f"{device} is mounted; unmount it before describing it")
    with storage.mounted(ctx, device, settings.mount_root / "target") as mountpoint:
        if ctx.dry_run:
            ctx.log(f"Would describe {device} as {text!r}")
            return
        store.set_description(device, text, partition_root=mountpoint)
