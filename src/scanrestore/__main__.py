#!/usr/bin/env python3
"""
ScanRestore - Entry point for python -m scanrestore

This module allows the package to be run as a module:
    python -m scanrestore
"""

import sys

from scanrestore import main

if __name__ == "__main__":
    sys.exit(main())
