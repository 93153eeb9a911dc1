"""Module entry-point for `python -m shellcov`."""

from __future__ import annotations

from shellcov.cli.app import console_main

if __name__ == "__main__":  # pragma: no cover - CLI entry point
    console_main()
