"""Install a disk image onto a partition by cloning from its loop-mounted partitions.

Images may be raw, ``.xz``, ``.gz``, ``.bz2``, a ``.zip`` holding exactly one
``.img``, or an ``http(s)://`` URL pointing at any of those. The loop device,
its mounts, and any scratch files are released whether or not the copy works.
"""

from __future__ import annotations

import bz2
import gzip
import lzma
import shutil
import tempfile
import zipfile
from pathlib import Path
from typing import Optional
from urllib.parse import urlparse

import requests

from . import clone, devices, storage
from .context import OperationContext
from .errors import PreconditionError, ToolFailureError

CHUNK_SIZE = 4 * 1024 * 1024
DOWNLOAD_TIMEOUT = 60
BOOT_PARTITION = 1
ROOT_PARTITION = 2

_DECOMPRESSORS = {
    ".xz": lzma.open,
    ".gz": gzip.open,
    ".bz2": bz2.open,
}


def is_url(value: str) -> bool:
    return urlparse(value).scheme in {"http", "https"}


def download_image(url: str, scratch: Path, *, session: Optional[requests.Session] = None) -> Path:
    """Stream ``url`` into ``scratch`` and return the local file."""

    name = Path(urlparse(url).path).name or "image.img"
    destination = scratch / name
    owned = session is None
    session = session or requests.Session()
    try:
        with session.get(url, stream=True, timeout=DOWNLOAD_TIMEOUT) as response:
            response.raise_for_status()
            with destination.open("wb") as handle:
                for chunk in response.iter_content(chunk_size=CHUNK_SIZE):
                    if chunk:
                        handle.write(chunk)
    except requests.RequestException as exc:
        raise ToolFailureError(f"Failed to download {url}: {exc}") from exc
    finally:
        if owned:
            session.close()
    return destination


def extract_image(image: Path, scratch: Path) -> Path:
    """Return a raw image path, decompressing into ``scratch`` when needed."""

    suffix = image.suffix.lower()
    if suffix == ".zip":
        try:
            with zipfile.ZipFile(image) as archive:
                members = [name for name in archive.namelist() if name.lower().endswith(".img")]
                if len(members) != 1:
                    raise PreconditionError(
                        f"{image} must contain exactly one .img file (found {len(members)})"
                    )
                destination = scratch / Path(members[0]).name
                with archive.open(members[0]) as src, destination.open("wb") as dest:
                    shutil.copyfileobj(src, dest, CHUNK_SIZE)
        except (OSError, zipfile.BadZipFile) as exc:
            raise ToolFailureError(f"Failed to unpack {image}: {exc}") from exc
        return destination
    opener = _DECOMPRESSORS.get(suffix)
    if opener is None:
        return image
    destination = scratch / image.stem
    try:
        with opener(image, "rb") as src, destination.open("wb") as dest:
            shutil.copyfileobj(src, dest, CHUNK_SIZE)
    except (OSError, EOFError, lzma.LZMAError) as exc:
        raise ToolFailureError(f"Failed to decompress {image}: {exc}") from exc
    return destination


def install_image(
    ctx: OperationContext,
    image: str,
    target_device: str,
    options: clone.CopyOptions = clone.CopyOptions(),
) -> devices.DeviceRef:
    """Clone the root+boot partitions of ``image`` onto ``target_device``."""

    settings = ctx.settings
    if not is_url(image) and not Path(image).is_file():
        raise PreconditionError(f"Image {image} does not exist")
    clone.check_target(ctx, target_device, source_device=None)
    if ctx.dry_run:
        ctx.log(f"Would fetch and unpack {image} under {settings.mount_root}")
        return _copy_from_image(ctx, image, Path(image), target_device, options)
    settings.mount_root.mkdir(parents=True, exist_ok=True)
    scratch = Path(tempfile.mkdtemp(prefix="image-", dir=settings.mount_root))
    try:
        if is_url(image):
            ctx.log(f"Downloading {image}")
            local = download_image(image, scratch)
        else:
            local = Path(image)
        raw = extract_image(local, scratch)
        if raw != local:
            ctx.log(f"Extracted {local.name} to {raw}")
        return _copy_from_image(ctx, image, raw, target_device, options)
    finally:
        shutil.rmtree(scratch, ignore_errors=True)


def _copy_from_image(
    ctx: OperationContext,
    image: str,
    raw: Path,
    target_device: str,
    options: clone.CopyOptions,
) -> devices.DeviceRef:
    image_root = ctx.settings.mount_root / "image"
    with storage.attached_loop(ctx, raw) as loop:
        with storage.mounted(
            ctx, storage.loop_partition(loop, ROOT_PARTITION), image_root, read_only=True
        ):
            image_boot = image_root / "boot"
            if not ctx.dry_run and not image_boot.is_dir():
                raise PreconditionError(f"{image} has no /boot directory on its root partition")
            with storage.mounted(
                ctx, storage.loop_partition(loop, BOOT_PARTITION), image_boot, read_only=True
            ):
                source = clone.CopySource(root=image_root, boot=image_boot)
                return clone.copy(ctx, source, target_device, options)
