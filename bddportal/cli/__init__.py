"""CLI argument parsing and handling."""

from __future__ import annotations

from bddportal.cli.parsing import apply_cli_overrides, parse_attributes, parse_flag

__all__ = [
    "apply_cli_overrides",
    "parse_attributes",
    "parse_flag",
]
