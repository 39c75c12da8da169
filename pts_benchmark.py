#!/usr/bin/env python3
"""Script wrapper for running pts-benchmark from a source checkout.

The actual implementation is in the pts_benchmark package.
"""
from pts_benchmark.cli import main

if __name__ == "__main__":
    raise SystemExit(main())
