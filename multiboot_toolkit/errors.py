"""Error taxonomy shared by the multiboot engines."""

from __future__ import annotations


class MultibootError(RuntimeError):
    """Base class for every fatal multiboot failure."""


class PreconditionError(MultibootError):
    """Raised before any destructive action when an operation cannot start."""


class NotMountedError(PreconditionError):
    """Raised when a queried mount point is not currently mounted."""

    def __init__(self, mount_point: str) -> None:
        super().__init__(f"{mount_point} is not mounted")
        self.mount_point = mount_point


class ToolFailureError(MultibootError):
    """Raised when an external storage tool fails (format, mount, copy, loop setup)."""
