"""Command-line entry point for aft-tracker."""

from __future__ import annotations

from aft_tracker.cli.commands.requests import app

__all__ = ["app", "main"]


def main() -> None:
    app()
