"""Allow ``python -m multiboot_toolkit``."""

from __future__ import annotations

import sys

from multiboot_toolkit import cli

if __name__ == "__main__":
    sys.exit(cli.main())
