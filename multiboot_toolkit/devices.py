"""Resolve partitions, their filesystems, and their live roles."""

from __future__ import annotations

import enum
import os
import shlex
import stat
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, List, Optional

from . import runner
from .config import Settings
from .errors import NotMountedError, PreconditionError


@dataclass(frozen=True, slots=True)
class DeviceRef:
    """A partition identified by device path, with its UUID when requested."""

    path: str
    uuid: Optional[str] = None


@dataclass(frozen=True, slots=True)
class Partition:
    """One row of the block-device snapshot."""

    path: str
    fstype: str = ""
    label: str = ""
    uuid: str = ""


class Role(str, enum.Enum):
    CURRENT_ROOT = "current-root"
    NEXT_ROOT = "next-root"
    BOOT_SOURCE = "boot-source"
    UNASSIGNED = "unassigned"


def resolve_source(source: str) -> str:
    """Turn a ``UUID=``/``PARTUUID=`` reference into a device path."""

    if source.startswith("UUID="):
        value = source.split("=", 1)[1]
        device = runner.capture(["blkid", "-U", value])
        if not device:
            raise PreconditionError(f"Unable to resolve UUID {value} to a device")
        return device
    if source.startswith("PARTUUID="):
        value = source.split("=", 1)[1]
        device = runner.capture(["blkid", "-t", f"PARTUUID={value}", "-o", "device"])
        if not device:
            raise PreconditionError(f"Unable to resolve PARTUUID {value} to a device")
        return device.splitlines()[0]
    return source


def _ref(path: str, with_uuid: bool) -> DeviceRef:
    if with_uuid:
        return DeviceRef(path, filesystem_uuid(path))
    return DeviceRef(path)


def resolve_current(mount_point: os.PathLike[str] | str, *, with_uuid: bool = False) -> DeviceRef:
    """Return the device currently mounted at ``mount_point``."""

    source = runner.capture(["findmnt", "-no", "SOURCE", str(mount_point)])
    if not source:
        raise NotMountedError(str(mount_point))
    return _ref(resolve_source(source.splitlines()[0]), with_uuid)


def resolve_next(settings: Settings, *, with_uuid: bool = False) -> DeviceRef:
    """Return the root device named by the active boot configuration.

    The boot directory must already be mounted; this is never done here.
    """

    from .bootenv import detect_boot_format

    resolve_current(settings.boot_dir)
    fmt = detect_boot_format(settings)
    config_path = settings.boot_dir / fmt.filename
    try:
        text = config_path.read_text(encoding="utf-8")
    except FileNotFoundError as exc:
        raise PreconditionError(f"Boot configuration {config_path} is missing") from exc
    value = fmt.read_root(text)
    if not value:
        raise PreconditionError(f"{config_path} does not define {fmt.root_key}=")
    return _ref(resolve_source(value), with_uuid)


def _blkid_tag(device: str, tag: str) -> Optional[str]:
    return runner.capture(["blkid", "-s", tag, "-o", "value", device])


def filesystem_uuid(device: str) -> str:
    value = _blkid_tag(device, "UUID")
    if not value:
        raise PreconditionError(f"Unable to resolve UUID for {device}")
    return value


def filesystem_type(device: str) -> Optional[str]:
    return _blkid_tag(device, "TYPE")


def filesystem_label(device: str) -> Optional[str]:
    return _blkid_tag(device, "LABEL")


def mountpoints(device: str) -> List[str]:
    """Return every place ``device`` is mounted; empty when it is not mounted."""

    output = runner.capture(["findmnt", "-rno", "TARGET", "-S", device])
    if not output:
        return []
    return output.splitlines()


def is_block_device(path: str) -> bool:
    try:
        mode = os.stat(path).st_mode
    except FileNotFoundError:
        return False
    return stat.S_ISBLK(mode)


def same_device(first: Optional[str], second: Optional[str]) -> bool:
    if not first or not second:
        return False
    return os.path.realpath(first) == os.path.realpath(second)


def _parse_lsblk_pairs(line: str) -> Dict[str, str]:
    info: Dict[str, str] = {}
    for token in shlex.split(line):
        if "=" not in token:
            continue
        key, value = token.split("=", 1)
        info[key] = value.strip('"')
    return info


def list_partitions() -> List[Partition]:
    """Snapshot every partition the kernel currently knows about."""

    output = runner.capture(["lsblk", "-npPo", "NAME,TYPE,FSTYPE,LABEL,UUID"])
    if output is None:
        return []
    partitions: List[Partition] = []
    for line in output.splitlines():
        info = _parse_lsblk_pairs(line)
        if info.get("TYPE") != "part":
            continue
        partitions.append(
            Partition(
                path=info.get("NAME", ""),
                fstype=info.get("FSTYPE", ""),
                label=info.get("LABEL", ""),
                uuid=info.get("UUID", ""),
            )
        )
    return partitions


def classify(
    partitions: Iterable[Partition],
    current_root: Optional[str],
    next_root: Optional[str],
    boot_source: Optional[str] = None,
) -> Dict[str, Role]:
    """Assign each partition its role from a snapshot of the live state."""

    roles: Dict[str, Role] = {}
    for partition in partitions:
        if same_device(partition.path, current_root):
            roles[partition.path] = Role.CURRENT_ROOT
        elif same_device(partition.path, next_root):
            roles[partition.path] = Role.NEXT_ROOT
        elif same_device(partition.path, boot_source):
            roles[partition.path] = Role.BOOT_SOURCE
        else:
            roles[partition.path] = Role.UNASSIGNED
    return roles


def read_os_identity(root: Path) -> Optional[str]:
    """Derive ``<ID> <VERSION_ID>`` from a root tree's os-release."""

    for candidate in (root / "etc" / "os-release", root / "usr" / "lib" / "os-release"):
        try:
            content = candidate.read_text(encoding="utf-8")
        except (FileNotFoundError, NotADirectoryError):
            continue
        fields: Dict[str, str] = {}
        for line in content.splitlines():
            if "=" not in line or line.lstrip().startswith("#"):
                continue
            key, value = line.split("=", 1)
            fields[key.strip()] = value.strip().strip('"').strip("'")
        identity = " ".join(part for part in (fields.get("ID"), fields.get("VERSION_ID")) if part)
        return identity or None
    return None
