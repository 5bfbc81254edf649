"""Scenario tests for cloning a root filesystem onto another partition."""

from __future__ import annotations

from dataclasses import replace

import pytest

from multiboot_toolkit import clone, devices
from multiboot_toolkit.context import OperationContext
from multiboot_toolkit.descriptions import DescriptionStore
from multiboot_toolkit.errors import PreconditionError


def _device_dir(host, device):
    return host.devices[device].directory


def test_copy_running_system_produces_a_bootable_clone(host, ctx, settings):
    ref = clone.copy_running_system(ctx, "/dev/sdb1", clone.CopyOptions(description="clone"))

    assert ref == devices.DeviceRef("/dev/sdb1")
    target = _device_dir(host, "/dev/sdb1")
    fstab = (target / "etc" / "fstab").read_text().splitlines()
    assert "/dev/sdb1  /               ext4    defaults,noatime  0       1" in fstab
    assert "/dev/sda1  /boot           vfat    defaults          0       2" in fstab
    assert fstab[0].startswith("proc ")
    assert (target / "_boot" / "cmdline.txt").read_text() == (
        "console=serial0,115200 root=/dev/sdb1 rootfstype=ext4 fsck.repair=yes rootwait\n"
    )
    assert (target / "_boot" / "config.txt").read_text() == "arm_64bit=1\n"
    assert (target / "_boot" / "multiboot.self").read_text() == "clone\n"
    assert not (target / "_boot" / "multiboot.desc").exists()
    assert (target / "home" / "pi" / "notes.txt").read_text() == "hello\n"

    # Transient and boot-medium contents stay behind.
    assert (target / "boot").is_dir()
    assert list((target / "boot").iterdir()) == []
    assert list((target / "tmp").iterdir()) == []

    assert host.devices["/dev/sdb1"].label == "rootfs"
    assert DescriptionStore(settings.description_store).load() == {
        "/dev/sda2": "workstation",
        "/dev/sdb1": "clone",
    }
    # The running system is never repointed by a copy.
    assert "root=/dev/sda2" in (settings.boot_dir / "cmdline.txt").read_text()
    assert ctx.mounted_paths == []
    assert host.mounts.get(str(settings.mount_root / "target")) is None


def test_copy_inherits_description_from_source(host, ctx, settings):
    clone.copy_running_system(ctx, "/dev/sdb1")

    assert DescriptionStore(settings.description_store).get("/dev/sdb1") == "workstation"


def test_copy_uses_explicit_label(host, ctx):
    clone.copy_running_system(ctx, "/dev/sdb1", clone.CopyOptions(label="experiment"))

    assert host.ran("e2label") == [["e2label", "/dev/sdb1", "experiment"]]


def test_copy_with_uuid_addressing(host, settings):
    ctx = OperationContext(replace(settings, use_uuid=True))

    clone.copy_running_system(ctx, "/dev/sdb1")

    target = _device_dir(host, "/dev/sdb1")
    sdb1_uuid = host.devices["/dev/sdb1"].uuid
    sda1_uuid = host.devices["/dev/sda1"].uuid
    fstab = (target / "etc" / "fstab").read_text()
    assert f"UUID={sdb1_uuid}  /               ext4" in fstab
    assert f"UUID={sda1_uuid}  /boot" in fstab
    assert f"root=UUID={sdb1_uuid} " in (target / "_boot" / "cmdline.txt").read_text()


def test_copy_with_sd_card_addressing(host, settings):
    ctx = OperationContext(replace(settings, sd_card=True))

    clone.copy_running_system(ctx, "/dev/sdb1")

    target = _device_dir(host, "/dev/sdb1")
    assert "root=/dev/mmcblk0p1 " in (target / "_boot" / "cmdline.txt").read_text()
    assert "/dev/mmcblk0p1  /               ext4" in (target / "etc" / "fstab").read_text()
    assert "/dev/sda1  /boot" in (target / "etc" / "fstab").read_text()


def test_copy_formats_when_requested(host, settings):
    ctx = OperationContext(replace(settings, format=True))
    stray = _device_dir(host, "/dev/sdb1") / "stray.txt"
    stray.write_text("old data\n")

    clone.copy_running_system(ctx, "/dev/sdb1")

    assert host.ran("mkfs.ext4") == [["mkfs.ext4", "-F", "-q", "/dev/sdb1"]]
    assert not (_device_dir(host, "/dev/sdb1") / "stray.txt").exists()


def test_copy_warns_when_target_is_not_ext4(host, ctx, capsys):
    host.devices["/dev/sdb1"].fstype = "vfat"

    clone.copy_running_system(ctx, "/dev/sdb1")

    assert "not formatting as requested" in capsys.readouterr().err
    assert host.ran("mkfs.ext4") == []


def test_copy_labels_unformatted_target_with_its_own_tool(host, ctx):
    host.devices["/dev/sdb1"].fstype = "btrfs"

    clone.copy_running_system(ctx, "/dev/sdb1", clone.CopyOptions(label="experiment"))

    assert host.ran("e2label") == []
    assert host.ran("btrfs") == [["btrfs", "filesystem", "label", "/dev/sdb1", "experiment"]]


def test_copy_warns_when_target_filesystem_cannot_be_labelled(host, ctx, capsys):
    host.devices["/dev/sdb1"].fstype = "squashfs"

    clone.copy_running_system(ctx, "/dev/sdb1", clone.CopyOptions(label="experiment"))

    assert "Labelling squashfs filesystems is not supported" in capsys.readouterr().err
    assert host.ran("e2label") == []
    assert DescriptionStore(ctx.settings.description_store).get("/dev/sdb1") == "workstation"


def test_copy_keeps_target_home(host, ctx):
    existing = _device_dir(host, "/dev/sdb1") / "home" / "guest" / "data.txt"
    existing.parent.mkdir(parents=True)
    existing.write_text("keep me\n")

    clone.copy_running_system(ctx, "/dev/sdb1", clone.CopyOptions(keep_home=True))

    home = _device_dir(host, "/dev/sdb1") / "home"
    assert (home / "guest" / "data.txt").read_text() == "keep me\n"
    assert not (home / "pi").exists()


def test_copy_replaces_target_home_by_default(host, ctx):
    existing = _device_dir(host, "/dev/sdb1") / "home" / "guest" / "data.txt"
    existing.parent.mkdir(parents=True)
    existing.write_text("stale\n")

    clone.copy_running_system(ctx, "/dev/sdb1")

    home = _device_dir(host, "/dev/sdb1") / "home"
    assert not (home / "guest").exists()
    assert (home / "pi" / "notes.txt").exists()


def test_copy_carries_swap_files(host, ctx, settings):
    fstab = settings.root_dir / "etc" / "fstab"
    fstab.write_text(fstab.read_text() + "/var/swap none swap sw 0 0\n")
    (settings.root_dir / "var").mkdir()
    (settings.root_dir / "var" / "swap").write_text("swap")

    clone.copy_running_system(ctx, "/dev/sdb1")

    (rsync, *_) = host.ran("rsync")
    assert "--exclude=/var/swap" in rsync
    (cp,) = host.ran("cp")
    assert cp[:3] == ["cp", "--sparse=never", "--preserve=mode,ownership"]
    assert (_device_dir(host, "/dev/sdb1") / "var" / "swap").read_text() == "swap"


@pytest.mark.parametrize(
    "target", ["/dev/sda2", "/dev/sda1"], ids=["running-root", "active-boot"]
)
def test_copy_refuses_busy_targets(host, ctx, target):
    with pytest.raises(PreconditionError):
        clone.copy_running_system(ctx, target)

    assert host.ran("rsync") == []


def test_copy_refuses_mounted_target(host, ctx, tmp_path):
    host.mounts[str(tmp_path / "elsewhere")] = "/dev/sdb1"

    with pytest.raises(PreconditionError, match="mounted"):
        clone.copy_running_system(ctx, "/dev/sdb1")

    assert host.ran("mount") == []


def test_copy_refuses_non_block_target(host, ctx):
    with pytest.raises(PreconditionError, match="not a block device"):
        clone.copy_running_system(ctx, "/dev/sdz1")


def test_copy_from_other_partition_carries_its_mirror(host, ctx, settings):
    clone.copy_running_system(ctx, "/dev/sdb1", clone.CopyOptions(description="clone"))
    host.add_device("/dev/sdc1")

    clone.copy_from_partition(ctx, "/dev/sdb1", "/dev/sdc1")

    target = _device_dir(host, "/dev/sdc1")
    assert "root=/dev/sdc1 " in (target / "_boot" / "cmdline.txt").read_text()
    assert "/dev/sdc1  /               ext4" in (target / "etc" / "fstab").read_text()
    assert (target / "_boot" / "multiboot.self").read_text() == "clone\n"
    assert host.devices["/dev/sdc1"].label == "rootfs"
    assert DescriptionStore(settings.description_store).get("/dev/sdc1") == "clone"
    # The source was only read.
    source_config = _device_dir(host, "/dev/sdb1") / "_boot" / "cmdline.txt"
    assert "root=/dev/sdb1 " in source_config.read_text()
    assert ["mount", "-o", "ro", "/dev/sdb1", str(settings.mount_root / "source")] in host.ran(
        "mount"
    )
    assert ctx.mounted_paths == []


def test_copy_from_running_root_is_refused(host, ctx):
    with pytest.raises(PreconditionError, match="--copy"):
        clone.copy_from_partition(ctx, "/dev/sda2", "/dev/sdb1")


def test_copy_dry_run_mutates_nothing(host, settings):
    ctx = OperationContext(replace(settings, dry_run=True))

    clone.copy_running_system(ctx, "/dev/sdb1")

    for program in ("mount", "rsync", "e2label", "umount"):
        assert host.ran(program) == []
    assert list(_device_dir(host, "/dev/sdb1").iterdir()) == []
    assert DescriptionStore(settings.description_store).get("/dev/sdb1") is None


def test_build_excludes(tmp_path):
    source = clone.CopySource(root=tmp_path, boot=tmp_path / "boot")
    other = clone.CopySource(root=tmp_path, boot=None)

    assert "/_boot/" in clone.build_excludes(source, keep_home=False)
    assert "/_boot/" not in clone.build_excludes(other, keep_home=False)
    assert "/home/" in clone.build_excludes(other, keep_home=True)
    assert "/boot/*" in clone.build_excludes(other, keep_home=False)
