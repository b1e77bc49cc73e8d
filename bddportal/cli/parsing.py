"""CLI argument parsing and parameter conversion utilities."""

from __future__ import annotations

from typing import Any

from bddportal.core.config import parse_bool


def parse_attributes(attributes: str | list[str] | tuple[str, ...]) -> list[str]:
    """Parse launch attributes into a list of ``key:value`` / ``value`` strings.

    Parameters
    ----------
    attributes : str | list[str] | tuple[str, ...]
        Attributes - a semicolon or comma separated string, or a sequence
        (fire turns ``--attributes=a,b`` into a tuple)

    Returns
    -------
    list[str]
        Non-empty attribute strings

    Raises
    ------
    ValueError
        If an attribute has an empty key or value around its colon
    """
    if isinstance(attributes, (list, tuple)):
        items = [str(item) for item in attributes]
    else:
        items = str(attributes).replace(",", ";").split(";")

    parsed = []
    for item in items:
        item = item.strip()
        if not item:
            continue
        if ":" in item:
            key, _, value = item.partition(":")
            if not key.strip() or not value.strip():
                raise ValueError(f"Invalid attribute: '{item}'. Use 'key:value' or 'value'")
        parsed.append(item)
    return parsed


def parse_flag(name: str, value: str | bool) -> bool:
    """Parse a boolean CLI flag, naming it in the error message."""
    try:
        return parse_bool(value)
    except ValueError:
        raise ValueError(f"{name} must be 'true' or 'false', got: {value}") from None


def apply_cli_overrides(
    launch: str | None = None,
    attributes: str | list[str] | tuple[str, ...] | None = None,
    description: str | None = None,
    mode: str | None = None,
    rerun_of: str | None = None,
) -> dict[str, Any]:
    """Collect the configuration keys overridden on the command line.

    Returns
    -------
    dict[str, Any]
        Overrides for `load_parameters`; unset options are omitted
    """
    overrides: dict[str, Any] = {}
    if launch is not None:
        overrides["launch"] = str(launch)
    if attributes is not None:
        overrides["attributes"] = parse_attributes(attributes)
    if description is not None:
        overrides["launch_description"] = str(description)
    if mode is not None:
        overrides["mode"] = str(mode).upper()
    if rerun_of is not None:
        overrides["rerun"] = True
        overrides["rerun_of"] = str(rerun_of)
    return overrides
