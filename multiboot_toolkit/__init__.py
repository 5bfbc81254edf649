"""Multiboot partition lifecycle tooling for storage-rich embedded hosts."""

__version__ = "0.1.0"
