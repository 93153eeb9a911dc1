"""Command-line interface for shellcov."""

from .app import console_main, main

__all__ = ["console_main", "main"]
