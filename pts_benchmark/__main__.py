#!/usr/bin/env python3
"""Entry point for running pts-benchmark as a module: python -m pts_benchmark"""

from .cli import main


if __name__ == "__main__":
    raise SystemExit(main())
