"""Compatibility wrapper around the ghas_enablement package (install with `pip install -e .`)."""

from __future__ import annotations
import sys
from typing import List, Optional
from ghas_enablement.runner import main as run_enablement


def main(argv: Optional[List[str]] = None) -> int:
    """Delegate to the package CLI runner."""
    return run_enablement(argv)


if __name__ == "__main__":
    sys.exit(main())
