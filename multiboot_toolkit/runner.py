"""Utility helpers for running subprocesses consistently."""

from __future__ import annotations

import shlex
import subprocess
import sys
from collections.abc import Sequence
from dataclasses import dataclass

from . import console
from .errors import ToolFailureError


@dataclass(slots=True)
class CommandError(ToolFailureError):
    """Raised when a subprocess exits with a non-zero status."""

    command: Sequence[str]
    returncode: int
    stderr: str | None = None

    def __str__(self) -> str:
        message = f"{format_command(self.command)} exited with status {self.returncode}"
        if self.stderr:
            stderr = self.stderr.strip()
            if stderr:
                message = f"{message}\n{stderr}"
        return message


def format_command(command: Sequence[str]) -> str:
    """Render a subprocess command for display or logging."""

    return " ".join(shlex.quote(part) for part in command)


def run_command(
    command: Sequence[str],
    *,
    dry_run: bool = False,
    verbose: bool = False,
    input_text: str | None = None,
) -> subprocess.CompletedProcess[str]:
    """Run a storage-mutating command unless dry-run is active.

    Raises :class:`CommandError` on a non-zero exit status; there is no retry.
    """

    console.info("Executing: " + format_command(command), dry_run=dry_run)
    if dry_run:
        return subprocess.CompletedProcess(list(command), 0, "", "")
    try:
        result = subprocess.run(
            list(command),
            check=False,
            text=True,
            capture_output=True,
            input=input_text,
        )
    except OSError as exc:
        raise CommandError(command, 127, stderr=str(exc)) from exc
    if result.returncode != 0:
        raise CommandError(command, result.returncode, stderr=result.stderr)
    if verbose and result.stdout:
        sys.stderr.write(result.stdout)
    if verbose and result.stderr:
        sys.stderr.write(result.stderr)
    return result


def capture(command: Sequence[str]) -> str | None:
    """Run a read-only query and return its stripped stdout.

    Queries always run, even in dry-run mode. ``None`` signals a failed or
    empty query so callers can decide whether the absence is fatal.
    """

    try:
        result = subprocess.run(
            list(command),
            check=False,
            capture_output=True,
            text=True,
        )
    except OSError:
        return None
    if result.returncode != 0:
        return None
    output = (result.stdout or "").strip()
    return output or None
