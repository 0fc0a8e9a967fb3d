#!/usr/bin/env python3
"""
Main entry point for SheetScan.
"""

import sys

from sheet_scan.cli import main

if __name__ == "__main__":
    sys.exit(main())
