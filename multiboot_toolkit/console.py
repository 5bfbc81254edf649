"""Operator-facing diagnostics written to the error stream."""

from __future__ import annotations

import io
import platform
import sys


def _supports_color(stream: io.TextIOBase) -> bool:
    return bool(stream.isatty()) and platform.system() != "Windows"


def _color(text: str, color_code: str) -> str:
    if not _supports_color(sys.stderr):
        return text
    return f"\033[{color_code}m{text}\033[0m"


def info(message: str, *, dry_run: bool = False) -> None:
    prefix = "[DRY-RUN] " if dry_run else ""
    sys.stderr.write(f"info: {prefix}{message}\n")


def warn(message: str) -> None:
    sys.stderr.write(_color(f"warning: {message}\n", "33"))


def err(message: str) -> None:
    sys.stderr.write(_color(f"error: {message}\n", "31"))
