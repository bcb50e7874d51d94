#!/usr/bin/env python3
"""
Root-level launcher kept for quick running from a checkout.

    python run_recursive_generation.py beavers
    python run_recursive_generation.py beavers --dry-run

Equivalent to ``chapter-illustrator run <chapter-id>``; the implementation
lives in the ``chapter_illustrator`` package.
"""

import sys

from chapter_illustrator.cli import main

if __name__ == "__main__":  # pragma: no cover
    sys.exit(main(["run", *sys.argv[1:]]))
