"""Free-text partition descriptions kept on the shared boot medium."""

from __future__ import annotations

from pathlib import Path
from typing import Dict, Optional

from .config import MIRROR_DIRNAME, SELF_DESCRIPTION_NAME


class DescriptionStore:
    """Device-to-description records persisted together in one flat file.

    The file is always read in full and written in full. Records for devices
    that have disappeared are kept until something overwrites them.
    """

    def __init__(self, path: Path) -> None:
        self.path = path

    def load(self) -> Dict[str, str]:
        records: Dict[str, str] = {}
        try:
            content = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return records
        for line in content.splitlines():
            stripped = line.strip()
            if not stripped:
                continue
            parts = stripped.split(None, 1)
            device = parts[0].rstrip(":")
            records[device] = parts[1].strip() if len(parts) > 1 else ""
        return records

    def save(self, records: Dict[str, str]) -> None:
        lines = [f"{device}: {text}" for device, text in records.items()]
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text("".join(f"{line}\n" for line in lines), encoding="utf-8")

    def get(self, device: str) -> Optional[str]:
        return self.load().get(device)

    def set_description(
        self,
        device: str,
        text: str,
        *,
        partition_root: Optional[Path] = None,
        boot_dir: Optional[Path] = None,
    ) -> None:
        """Record ``text`` for ``device`` and drop a marker copy on the partition.

        ``partition_root`` is where the partition is (or will be) mounted;
        ``boot_dir`` is passed only for the currently booted partition so its
        description also lands on the active boot medium.
        """

        text = " ".join(text.splitlines()).strip()
        records = self.load()
        records[device] = text
        self.save(records)
        if partition_root is not None:
            write_self_description(partition_root / MIRROR_DIRNAME, text)
        if boot_dir is not None:
            write_self_description(boot_dir, text)


def write_self_description(directory: Path, text: str) -> None:
    directory.mkdir(parents=True, exist_ok=True)
    (directory / SELF_DESCRIPTION_NAME).write_text(f"{text}\n", encoding="utf-8")


def read_self_description(partition_root: Path) -> Optional[str]:
    marker = partition_root / MIRROR_DIRNAME / SELF_DESCRIPTION_NAME
    try:
        lines = marker.read_text(encoding="utf-8").splitlines()
    except (FileNotFoundError, NotADirectoryError):
        return None
    return lines[0].strip() if lines else ""
