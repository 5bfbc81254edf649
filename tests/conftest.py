"""Test fixtures: a booted fake host plus settings pointing into ``tmp_path``."""

from __future__ import annotations

import shutil
import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]

# Ensure the project root is importable without an editable install.
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from multiboot_toolkit import devices, runner, storage  # noqa: E402
from multiboot_toolkit.config import Settings  # noqa: E402
from multiboot_toolkit.context import OperationContext  # noqa: E402
from tests.helpers.fake_host import HOST_CMDLINE, HOST_FSTAB, FakeHost  # noqa: E402


@pytest.fixture
def host(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> FakeHost:
    """A booted host: /dev/sda2 is the root, /dev/sda1 serves /boot."""

    fake = FakeHost(tmp_path)
    root_dir = tmp_path / "system"
    boot_dir = root_dir / "boot"
    fake.add_device("/dev/sda2", label="rootfs", directory=root_dir)
    fake.add_device("/dev/sda1", fstype="vfat", label="bootfs", directory=boot_dir)
    fake.mount_static("/dev/sda2", root_dir)
    fake.mount_static("/dev/sda1", boot_dir)

    (root_dir / "etc").mkdir()
    (root_dir / "etc" / "fstab").write_text(HOST_FSTAB, encoding="utf-8")
    (root_dir / "etc" / "os-release").write_text(
        'PRETTY_NAME="Debian GNU/Linux 12"\nID=debian\nVERSION_ID="12"\n', encoding="utf-8"
    )
    (root_dir / "home" / "pi").mkdir(parents=True)
    (root_dir / "home" / "pi" / "notes.txt").write_text("hello\n", encoding="utf-8")
    (root_dir / "tmp").mkdir()
    (root_dir / "tmp" / "scratch").write_text("transient\n", encoding="utf-8")
    (boot_dir / "cmdline.txt").write_text(HOST_CMDLINE, encoding="utf-8")
    (boot_dir / "config.txt").write_text("arm_64bit=1\n", encoding="utf-8")
    (boot_dir / "multiboot.desc").write_text("/dev/sda2: workstation\n", encoding="utf-8")
    mirror = root_dir / "_boot"
    mirror.mkdir()
    for name in ("cmdline.txt", "config.txt"):
        shutil.copy2(boot_dir / name, mirror / name)

    fake.add_device("/dev/sdb1")

    monkeypatch.setattr(runner.subprocess, "run", fake.run)
    monkeypatch.setattr(devices, "is_block_device", lambda path: path in fake.devices)
    monkeypatch.setattr(storage.shutil, "which", lambda name: f"/usr/sbin/{name}")
    return fake


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(
        root_dir=tmp_path / "system",
        boot_dir=tmp_path / "system" / "boot",
        mount_root=tmp_path / "mnt",
        env_marker=tmp_path / "armbian-release",
    )


@pytest.fixture
def ctx(settings: Settings) -> OperationContext:
    return OperationContext(settings)
