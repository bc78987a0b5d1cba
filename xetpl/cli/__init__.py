"""xetpl command line interface."""

from xetpl.cli.main import cli, main

__all__ = ["cli", "main"]
