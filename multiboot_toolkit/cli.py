"""Entry points for the multiboot CLI."""

from __future__ import annotations

import argparse
import os
import sys
from typing import Sequence

from . import clone, config, console, devices, image, inventory, shared_boot, switch
from .context import OperationContext
from .errors import MultibootError, PreconditionError

EXIT_OK = 0
EXIT_FAILURE = 3


class _Parser(argparse.ArgumentParser):
    def error(self, message: str) -> None:  # type: ignore[override]
        self.print_usage(sys.stderr)
        console.err(message)
        raise SystemExit(EXIT_FAILURE)


def build_parser() -> argparse.ArgumentParser:
    parser = _Parser(
        prog="multiboot",
        description=(
            "Manage several bootable root filesystems on one host: clone the running "
            "system, install images, and switch which clone boots next."
        ),
    )

    primary = parser.add_mutually_exclusive_group()
    primary.add_argument(
        "--info",
        action="store_true",
        help="List partitions with their role, label and description (default).",
    )
    primary.add_argument(
        "--copy",
        action="store_true",
        help="Clone the running system onto --target.",
    )
    primary.add_argument(
        "--copy-from",
        metavar="DEVICE",
        help="Clone another multiboot partition (with its boot mirror) onto --target.",
    )
    primary.add_argument(
        "--install",
        metavar="IMAGE",
        help="Install a disk image (.img, .xz, .gz, .bz2, .zip or http(s) URL) onto --target.",
    )

    parser.add_argument(
        "--switch",
        action="store_true",
        help="Boot --target next; without --target, repair /boot from the running root's mirror.",
    )
    parser.add_argument(
        "--new-boot",
        action="store_true",
        help="Promote --target to a boot partition shared by every multiboot root.",
    )
    parser.add_argument("--label", help="Filesystem label for --target.")
    parser.add_argument("--describe", metavar="TEXT", help="Free-text description for --target.")
    parser.add_argument(
        "--reboot",
        action="store_true",
        help=f"Reboot {config.REBOOT_DELAY_SECS} seconds after the other operations finish.",
    )

    parser.add_argument("-t", "--target", help="Target partition (e.g., /dev/sdb1).")
    parser.add_argument(
        "--uuid",
        action="store_true",
        help="Reference devices as UUID=... in fstab and the boot configuration.",
    )
    parser.add_argument(
        "--sd",
        action="store_true",
        help="Address the target as an SD card (/dev/sdXN becomes /dev/mmcblk0pN).",
    )
    parser.add_argument("--format", action="store_true", help="Format the target first.")
    parser.add_argument(
        "--keep-home",
        action="store_true",
        help="Leave the target's existing /home untouched while copying.",
    )
    parser.add_argument(
        "--sync-home",
        action="store_true",
        help="When switching, copy the running /home onto the target.",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Show stdout/stderr from helper commands.",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Print storage commands without executing them.",
    )
    parser.add_argument(
        "--boot-dir",
        help=f"Active boot medium mount point (default: {config.DEFAULT_BOOT_DIR}).",
    )
    parser.add_argument(
        "--mount-root",
        help=f"Directory for scratch mounts (default: {config.DEFAULT_MOUNT_ROOT}).",
    )
    return parser


def ensure_root() -> None:
    if os.geteuid() != 0:
        raise PreconditionError("multiboot must be run as root to modify partitions.")


def _copy_options(args: argparse.Namespace) -> clone.CopyOptions:
    return clone.CopyOptions(
        label=args.label,
        description=args.describe,
        keep_home=args.keep_home,
    )


def _validate(args: argparse.Namespace) -> None:
    copying = bool(args.copy or args.copy_from or args.install)
    if (copying or args.new_boot) and not args.target:
        raise PreconditionError("--target is required for this operation")
    if args.new_boot and (copying or args.switch):
        raise PreconditionError("--new-boot cannot be combined with copy, install or switch")
    if args.new_boot and args.describe is not None:
        raise PreconditionError("--describe does not apply to a shared boot partition")
    if args.sync_home and not args.switch:
        raise PreconditionError("--sync-home only applies to --switch")


def run(args: argparse.Namespace, ctx: OperationContext) -> int:
    _validate(args)
    copying = bool(args.copy or args.copy_from or args.install)
    mutating = (
        copying
        or args.new_boot
        or args.switch
        or args.reboot
        or args.label is not None
        or args.describe is not None
    )
    if mutating and not ctx.dry_run:
        ensure_root()

    if args.copy:
        clone.copy_running_system(ctx, args.target, _copy_options(args))
    elif args.copy_from:
        clone.copy_from_partition(ctx, args.copy_from, args.target, _copy_options(args))
    elif args.install:
        image.install_image(ctx, args.install, args.target, _copy_options(args))

    if args.new_boot:
        shared_boot.promote_shared_boot(ctx, args.target, label=args.label)
    elif not copying and (args.label is not None or args.describe is not None):
        device = args.target or devices.resolve_current(ctx.settings.root_dir).path
        if args.label is not None:
            inventory.label_partition(ctx, device, args.label)
        if args.describe is not None:
            inventory.describe_partition(ctx, device, args.describe)

    if args.switch:
        target = args.target or devices.resolve_current(ctx.settings.root_dir).path
        switch.switch_to(ctx, target, sync_home=args.sync_home)

    if args.info or not mutating:
        print(inventory.format_info(inventory.gather_info(ctx)))

    if args.reboot:
        switch.schedule_reboot(ctx)
    return EXIT_OK


def main(argv: Sequence[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)
    settings = config.load_settings(
        use_uuid=args.uuid,
        sd_card=args.sd,
        format=args.format,
        verbose=args.verbose,
        dry_run=args.dry_run,
        boot_dir=args.boot_dir,
        mount_root=args.mount_root,
    )
    ctx = OperationContext(settings)
    try:
        return run(args, ctx)
    except (MultibootError, OSError) as exc:
        ctx.cleanup()
        console.err(str(exc))
        return EXIT_FAILURE
