"""Hand the boot environment over to another root filesystem."""

from __future__ import annotations

import enum
import time

from . import bootenv, devices, mirror, storage
from .config import REBOOT_DELAY_SECS
from .context import OperationContext
from .errors import PreconditionError


class SwitchState(str, enum.Enum):
    NO_CHANGE = "no-change"
    SWITCHING = "switching"
    ABORTED = "aborted"


def plan_switch(current_root: str, target_device: str, *, is_block: bool) -> SwitchState:
    """Decide the transition before anything is touched."""

    if devices.same_device(current_root, target_device):
        return SwitchState.NO_CHANGE
    if not is_block:
        return SwitchState.ABORTED
    return SwitchState.SWITCHING


def repair(ctx: OperationContext) -> None:
    """Re-sync the active boot files from the running root's own mirror."""

    settings = ctx.settings
    fmt = bootenv.detect_boot_format(settings)
    current_mirror = settings.current_mirror
    if not mirror.is_valid(current_mirror, fmt):
        raise PreconditionError(f"{current_mirror} is missing or has no {fmt.filename}")
    mirror.restore(ctx, current_mirror, settings.boot_dir)


def switch_to(
    ctx: OperationContext, target_device: str, *, sync_home: bool = False
) -> SwitchState:
    """Make ``target_device`` the root filesystem used at next boot.

    Switching to the running root is the repair path. The active boot
    environment is only replaced once the target mirror has been validated.
    """

    settings = ctx.settings
    devices.resolve_current(settings.boot_dir)
    current_root = devices.resolve_current(settings.root_dir)
    state = plan_switch(
        current_root.path, target_device, is_block=devices.is_block_device(target_device)
    )
    if state is SwitchState.ABORTED:
        raise PreconditionError(f"{target_device} is not a block device")
    if state is SwitchState.NO_CHANGE:
        ctx.log(f"{target_device} is already the running root; repairing {settings.boot_dir}")
        repair(ctx)
        return state

    fmt = bootenv.detect_boot_format(settings)
    mirror.backup(ctx, settings.boot_dir, settings.current_mirror)
    if devices.mountpoints(target_device):
        raise PreconditionError(f"{target_device} is mounted; unmount it before switching")
    target_mount = settings.mount_root / "target"
    with storage.mounted(ctx, target_device, target_mount):
        target_mirror = mirror.mirror_dir(target_mount)
        if not ctx.dry_run and not mirror.is_valid(target_mirror, fmt):
            raise PreconditionError(
                f"{target_device} has no usable {target_mirror.name} mirror; "
                "it cannot become the active root"
            )
        mirror.restore(ctx, target_mirror, settings.boot_dir)
        if sync_home:
            ctx.log(f"Synchronizing /home onto {target_device}")
            storage.sync_tree(ctx, settings.root_dir / "home", target_mount / "home")
    ctx.log(f"{target_device} will be used as root at next boot")
    return state


def schedule_reboot(ctx: OperationContext, delay: int = REBOOT_DELAY_SECS) -> None:
    ctx.log(f"Rebooting in {delay} seconds")
    if not ctx.dry_run:
        time.sleep(delay)
    ctx.run(["reboot"])
