"""Per-invocation state shared across engine steps."""

from __future__ import annotations

import subprocess
from dataclasses import dataclass, field
from pathlib import Path
from typing import Sequence

from . import console, runner
from .config import Settings


@dataclass
class OperationContext:
    """Settings plus the scratch resources acquired by the running operation."""

    settings: Settings
    mounted_paths: list[Path] = field(default_factory=list)
    loop_devices: list[str] = field(default_factory=list)

    @property
    def dry_run(self) -> bool:
        return self.settings.dry_run

    def log(self, message: str) -> None:
        console.info(message, dry_run=self.dry_run)

    def run(
        self, command: Sequence[str], *, input_text: str | None = None
    ) -> subprocess.CompletedProcess[str]:
        return runner.run_command(
            command,
            dry_run=self.settings.dry_run,
            verbose=self.settings.verbose,
            input_text=input_text,
        )

    def register_mount(self, mountpoint: Path) -> None:
        if mountpoint not in self.mounted_paths:
            self.mounted_paths.append(mountpoint)

    def unregister_mount(self, mountpoint: Path) -> None:
        try:
            self.mounted_paths.remove(mountpoint)
        except ValueError:
            pass

    def register_loop(self, device: str) -> None:
        if device not in self.loop_devices:
            self.loop_devices.append(device)

    def unregister_loop(self, device: str) -> None:
        try:
            self.loop_devices.remove(device)
        except ValueError:
            pass

    def cleanup(self) -> None:
        """Release leftover mounts and loop devices, newest first."""

        for mountpoint in reversed(list(self.mounted_paths)):
            if not self.dry_run:
                subprocess.run(["umount", str(mountpoint)], check=False, capture_output=True)
            self.unregister_mount(mountpoint)
        for device in reversed(list(self.loop_devices)):
            if not self.dry_run:
                subprocess.run(["losetup", "-d", device], check=False, capture_output=True)
            self.unregister_loop(device)
