"""Rewrite the boot-critical text files: the mount table and the boot configuration.

Both rewrites touch exactly one field and leave every other byte alone, so a
partially rewritten host still boots with whatever it had before.
"""

from __future__ import annotations

import re
from pathlib import Path
from typing import Optional

from . import devices
from .config import Settings

_FSTAB_LINE = re.compile(r"^(\s*)(\S+)(\s+)(\S+)(.*)$", re.DOTALL)
_USB_PARTITION = re.compile(r"^/dev/sd[a-z]+(\d+)$")


class BootConfigFormat:
    """A boot-loader family's configuration file and its root key."""

    filename = ""
    root_key = ""

    def read_root(self, text: str) -> Optional[str]:
        raise NotImplementedError

    def replace_root(self, text: str, reference: str) -> str:
        raise NotImplementedError

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.filename})"


class CmdlineFormat(BootConfigFormat):
    """``cmdline.txt``: one line of space-separated kernel arguments."""

    filename = "cmdline.txt"
    root_key = "root"

    def read_root(self, text: str) -> Optional[str]:
        prefix = f"{self.root_key}="
        for token in text.split():
            if token.startswith(prefix):
                return token[len(prefix):]
        return None

    def replace_root(self, text: str, reference: str) -> str:
        body = text.rstrip("\r\n")
        ending = text[len(body):]
        prefix = f"{self.root_key}="
        tokens = body.split(" ")
        for index, token in enumerate(tokens):
            if token.startswith(prefix):
                tokens[index] = prefix + reference
                break
        else:
            tokens.insert(0, prefix + reference)
        return " ".join(tokens) + ending


class EnvFileFormat(BootConfigFormat):
    """``armbianEnv.txt``: one ``key=value`` pair per line."""

    filename = "armbianEnv.txt"
    root_key = "rootdev"

    def read_root(self, text: str) -> Optional[str]:
        prefix = f"{self.root_key}="
        for line in text.splitlines():
            stripped = line.strip()
            if stripped.startswith(prefix):
                return stripped[len(prefix):]
        return None

    def replace_root(self, text: str, reference: str) -> str:
        prefix = f"{self.root_key}="
        lines = text.splitlines(keepends=True)
        for index, line in enumerate(lines):
            if line.strip().startswith(prefix):
                ending = line[len(line.rstrip("\r\n")):]
                lines[index] = prefix + reference + (ending or "\n")
                return "".join(lines)
        if lines and not lines[-1].endswith("\n"):
            lines[-1] += "\n"
        lines.append(prefix + reference + "\n")
        return "".join(lines)


def detect_boot_format(settings: Settings) -> BootConfigFormat:
    if settings.env_marker.exists():
        return EnvFileFormat()
    return CmdlineFormat()


def device_reference(device: str, *, use_uuid: bool, sd_card: bool) -> str:
    """Render ``device`` in the addressing mode chosen for the target."""

    if use_uuid:
        return f"UUID={devices.filesystem_uuid(device)}"
    if sd_card:
        match = _USB_PARTITION.match(device)
        if match:
            return f"/dev/mmcblk0p{match.group(1)}"
    return device


def settings_reference(device: str, settings: Settings) -> str:
    return device_reference(device, use_uuid=settings.use_uuid, sd_card=settings.sd_card)


def rewrite_mount_table_text(
    text: str, root_ref: Optional[str], boot_ref: Optional[str]
) -> tuple[str, set[str]]:
    """Return the rewritten table and the mount points that were matched."""

    replacements = {}
    if root_ref is not None:
        replacements["/"] = root_ref
    if boot_ref is not None:
        replacements["/boot"] = boot_ref
    matched: set[str] = set()
    output = []
    for line in text.splitlines(keepends=True):
        if line.lstrip().startswith("#"):
            output.append(line)
            continue
        match = _FSTAB_LINE.match(line)
        if not match or match.group(4) not in replacements:
            output.append(line)
            continue
        lead, _, gap, mount_point, rest = match.groups()
        matched.add(mount_point)
        output.append(f"{lead}{replacements[mount_point]}{gap}{mount_point}{rest}")
    return "".join(output), matched


def _read_exact(path: Path) -> str:
    with path.open(encoding="utf-8", newline="") as handle:
        return handle.read()


def _write_exact(path: Path, text: str) -> None:
    with path.open("w", encoding="utf-8", newline="") as handle:
        handle.write(text)


def rewrite_mount_table(
    path: Path, root_ref: Optional[str], boot_ref: Optional[str]
) -> set[str]:
    """Point the ``/`` and ``/boot`` entries of ``path`` at new devices.

    Either reference may be ``None`` to leave that entry untouched. Returns the
    mount points that were found so callers can warn about missing entries.
    """

    text = _read_exact(path)
    updated, matched = rewrite_mount_table_text(text, root_ref, boot_ref)
    if updated != text:
        _write_exact(path, updated)
    return matched


def read_boot_root(path: Path, fmt: BootConfigFormat) -> Optional[str]:
    try:
        return fmt.read_root(path.read_text(encoding="utf-8"))
    except FileNotFoundError:
        return None


def rewrite_boot_config(path: Path, root_ref: str, fmt: BootConfigFormat) -> None:
    text = _read_exact(path)
    _write_exact(path, fmt.replace_root(text, root_ref))
