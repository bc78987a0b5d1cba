"""
xetpl CLI Entry Point
=====================

Allows running xetpl as a module: python -m xetpl
"""

import sys

from xetpl.cli.main import cli

if __name__ == "__main__":
    sys.exit(cli())
