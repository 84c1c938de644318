"""Command-line interface for bounded-retry."""

from bounded_retry.cli.main import main

__all__ = ["main"]
