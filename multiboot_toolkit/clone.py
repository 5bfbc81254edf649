"""Clone a root filesystem, and its boot mirror, onto another partition.

Every step commits on its own. A failure part-way leaves the target partially
written and the operator re-runs the copy; only the scratch mounts created by
this invocation are released.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

from . import bootenv, console, devices, mirror, storage
from .config import MIRROR_DIRNAME, ROOT_FSTYPE
from .context import OperationContext
from .descriptions import DescriptionStore, read_self_description
from .errors import PreconditionError

TRANSIENT_EXCLUDES = [
    "/dev/*",
    "/proc/*",
    "/sys/*",
    "/run/*",
    "/tmp/*",
    "/var/tmp/*",
    "/mnt/*",
    "/media/*",
    "/lost+found",
]


@dataclass(frozen=True, slots=True)
class CopyOptions:
    """Per-copy choices; ``None`` label/description means inherit from the source."""

    label: Optional[str] = None
    description: Optional[str] = None
    keep_home: bool = False


@dataclass(frozen=True, slots=True)
class CopySource:
    """Where the bytes come from.

    ``boot`` is the directory copied into the target's private mirror; it is
    ``None`` when the source already carries its own mirror (copy-from-other).
    """

    root: Path
    boot: Optional[Path]
    device: Optional[str] = None

    @property
    def from_other(self) -> bool:
        return self.boot is None


def swap_files(root: Path) -> List[str]:
    """Return swap files (not partitions) declared in the source fstab."""

    fstab = root / "etc" / "fstab"
    try:
        content = fstab.read_text(encoding="utf-8")
    except FileNotFoundError:
        return []
    found: List[str] = []
    for line in content.splitlines():
        stripped = line.strip()
        if not stripped or stripped.startswith("#"):
            continue
        parts = stripped.split()
        if len(parts) < 3 or parts[2] != "swap":
            continue
        source = parts[0]
        if source.startswith("/") and not source.startswith("/dev/"):
            found.append(source)
    return found


def build_excludes(source: CopySource, *, keep_home: bool) -> List[str]:
    excludes = list(TRANSIENT_EXCLUDES)
    excludes.append("/boot/*")
    if not source.from_other:
        excludes.append(f"/{MIRROR_DIRNAME}/")
    if keep_home:
        excludes.append("/home/")
    excludes.extend(swap_files(source.root))
    return excludes


def check_target(
    ctx: OperationContext, target_device: str, *, source_device: Optional[str]
) -> None:
    """Refuse targets that are unusable or overlap the running system."""

    if not devices.is_block_device(target_device):
        raise PreconditionError(f"{target_device} is not a block device")
    if devices.mountpoints(target_device):
        raise PreconditionError(f"{target_device} is mounted; unmount it before copying")
    current_root = devices.resolve_current(ctx.settings.root_dir)
    current_boot = devices.resolve_current(ctx.settings.boot_dir)
    for busy, role in (
        (current_root.path, "the running root"),
        (current_boot.path, "the active boot medium"),
        (source_device, "the copy source"),
    ):
        if devices.same_device(target_device, busy):
            raise PreconditionError(f"{target_device} is {role}; choose another target")


def _inherit_label(source: CopySource) -> str:
    if source.device:
        label = devices.filesystem_label(source.device)
        if label:
            return label
    return devices.read_os_identity(source.root) or ""


def _inherit_description(ctx: OperationContext, source: CopySource) -> str:
    if source.device:
        recorded = DescriptionStore(ctx.settings.description_store).get(source.device)
        if recorded is not None:
            return recorded
    return read_self_description(source.root) or ""


def copy(
    ctx: OperationContext,
    source: CopySource,
    target_device: str,
    options: CopyOptions = CopyOptions(),
) -> devices.DeviceRef:
    """Clone ``source`` onto ``target_device``; see the module docstring for failure handling."""

    settings = ctx.settings
    check_target(ctx, target_device, source_device=source.device)
    current_boot = devices.resolve_current(settings.boot_dir)
    fmt = bootenv.detect_boot_format(settings)

    if settings.format:
        ctx.log(f"Formatting {target_device} as {ROOT_FSTYPE}")
        storage.format_partition(ctx, target_device, ROOT_FSTYPE)
    else:
        existing = devices.filesystem_type(target_device)
        if existing != ROOT_FSTYPE:
            console.warn(
                f"{target_device} carries {existing or 'no filesystem'}; "
                "not formatting as requested."
            )

    label = options.label
    if label is None:
        label = _inherit_label(source)
    description = options.description
    if description is None:
        description = _inherit_description(ctx, source)

    target_mount = settings.mount_root / "target"
    with storage.mounted(ctx, target_device, target_mount):
        ctx.log(f"Copying {source.root} to {target_device}")
        storage.sync_tree(
            ctx,
            source.root,
            target_mount,
            excludes=build_excludes(source, keep_home=options.keep_home),
            one_file_system=not source.from_other,
        )
        for swap in swap_files(source.root):
            relative = swap.lstrip("/")
            ctx.log(f"Copying swap file {swap}")
            storage.copy_sparse_file(ctx, source.root / relative, target_mount / relative)

        root_ref = bootenv.settings_reference(target_device, settings)
        # SD-card mapping describes the target only; the boot medium keeps its name.
        boot_ref = bootenv.device_reference(
            current_boot.path, use_uuid=settings.use_uuid, sd_card=False
        )
        target_mirror = mirror.mirror_dir(target_mount)
        if not source.from_other:
            mirror.backup(ctx, source.boot, target_mirror)

        if ctx.dry_run:
            ctx.log(f"Would point {target_device} fstab and {fmt.filename} at {root_ref}")
        else:
            fstab = target_mount / "etc" / "fstab"
            if fstab.exists():
                matched = bootenv.rewrite_mount_table(fstab, root_ref, boot_ref)
                for mount_point in {"/", "/boot"} - matched:
                    console.warn(f"{fstab} has no entry for {mount_point}")
            else:
                console.warn(f"{fstab} is missing; the copy will not mount its root by itself")
            config = target_mirror / fmt.filename
            if config.exists():
                bootenv.rewrite_boot_config(config, root_ref, fmt)
            else:
                console.warn(f"{config} is missing; {target_device} cannot be switched to")

            DescriptionStore(settings.description_store).set_description(
                target_device, description, partition_root=target_mount
            )
    if label:
        storage.set_label(
            ctx, target_device, label, fstype=ROOT_FSTYPE if settings.format else None
        )
    ctx.log(f"Copied to {target_device} ({root_ref})")
    return devices.DeviceRef(target_device)


def copy_running_system(
    ctx: OperationContext, target_device: str, options: CopyOptions = CopyOptions()
) -> devices.DeviceRef:
    settings = ctx.settings
    current_root = devices.resolve_current(settings.root_dir)
    source = CopySource(root=settings.root_dir, boot=settings.boot_dir, device=current_root.path)
    return copy(ctx, source, target_device, options)


def copy_from_partition(
    ctx: OperationContext,
    source_device: str,
    target_device: str,
    options: CopyOptions = CopyOptions(),
) -> devices.DeviceRef:
    """Clone another, already-cloned partition, carrying its own mirror along."""

    settings = ctx.settings
    current_root = devices.resolve_current(settings.root_dir)
    if devices.same_device(source_device, current_root.path):
        raise PreconditionError(f"{source_device} is the running root; use --copy instead")
    if not devices.is_block_device(source_device):
        raise PreconditionError(f"{source_device} is not a block device")
    source_mount = settings.mount_root / "source"
    with storage.mounted(ctx, source_device, source_mount, read_only=True):
        source = CopySource(root=source_mount, boot=None, device=source_device)
        return copy(ctx, source, target_device, options)
