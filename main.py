"""Command-line entry point for the SDNext benchmark worker."""

from __future__ import annotations

import sys

from sdnext_benchmark.cli import main


if __name__ == "__main__":
    sys.exit(main())
