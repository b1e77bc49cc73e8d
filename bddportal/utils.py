"""Utility functions for bddportal."""

from __future__ import annotations

import logging
import os
import sys
import traceback
from collections.abc import Iterable, Sequence
from datetime import datetime, timezone
from pathlib import Path
from typing import Any
from urllib.parse import unquote, urlparse

from bddportal.constants import DESCRIPTION_SEPARATOR, ERROR_FORMAT


def now() -> datetime:
    """Return the current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def to_epoch_millis(moment: datetime) -> int:
    """Convert a datetime to milliseconds since the epoch.

    Parameters
    ----------
    moment : datetime
        Time to convert; naive values are treated as UTC

    Returns
    -------
    int
        Milliseconds since 1970-01-01T00:00:00Z
    """
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return int(moment.timestamp() * 1000)


def build_name(prefix: str | None, infix: str, argument: str | None) -> str:
    """Concatenate the parts of an item name, skipping missing ones.

    Parameters
    ----------
    prefix : str | None
        Leading part, usually a keyword
    infix : str
        Separator placed between prefix and argument
    argument : str | None
        Trailing part, usually a name

    Returns
    -------
    str
        Composed name
    """
    if not argument:
        return prefix or ""
    if not prefix:
        return argument
    return f"{prefix}{infix}{argument}"


def uri_to_path(uri: str) -> str:
    """Turn a ``file:`` URI into a filesystem path; other values pass through."""
    parsed = urlparse(uri)
    if parsed.scheme == "file":
        return unquote(parsed.path)
    if parsed.scheme == "classpath":
        return uri[len("classpath:") :]
    return uri


def relative_path(uri: str, base: str | None = None) -> str:
    """Express a feature URI relative to the working directory.

    Parameters
    ----------
    uri : str
        Feature URI or path
    base : str | None
        Directory to relativize against (default: current working directory)

    Returns
    -------
    str
        POSIX-style relative path, or the path itself when it lies outside
        the base directory
    """
    path = uri_to_path(uri)
    if not os.path.isabs(path):
        return Path(path).as_posix()

    base_dir = Path(base or os.getcwd()).resolve()
    try:
        return Path(path).resolve().relative_to(base_dir).as_posix()
    except ValueError:
        return Path(path).as_posix()


def format_data_table(rows: Sequence[Sequence[str]]) -> str:
    """Render table rows as a markdown table with aligned columns.

    Parameters
    ----------
    rows : Sequence[Sequence[str]]
        Table rows, header first

    Returns
    -------
    str
        Markdown table, empty when there are no rows
    """
    if not rows:
        return ""

    width = max(len(row) for row in rows)
    cells = [[str(cell) for cell in row] + [""] * (width - len(row)) for row in rows]
    widths = [max(len(row[i]) for row in cells) for i in range(width)]

    lines = []
    for index, row in enumerate(cells):
        padded = [cell.ljust(widths[i]) for i, cell in enumerate(row)]
        lines.append("|" + "|".join(padded) + "|")
        if index == 0:
            lines.append("|" + "|".join("-" * max(w, 1) for w in widths) + "|")
    return "\n".join(lines)


def as_two_parts(first: str, second: str) -> str:
    """Join two markdown blocks with a horizontal rule."""
    return f"{first}{DESCRIPTION_SEPARATOR}{second}"


def format_stack_trace(error: BaseException | str | None, truncate: bool = True) -> str:
    """Format a runner error as a printable stack trace.

    Parameters
    ----------
    error : BaseException | str | None
        Exception raised by step code, or a pre-formatted message
    truncate : bool
        When True, chained exceptions are omitted and only the innermost
        frames recorded on the exception are kept

    Returns
    -------
    str
        Formatted stack trace, empty when there is no error
    """
    if error is None:
        return ""
    if isinstance(error, str):
        return error
    lines = traceback.format_exception(
        type(error), error, error.__traceback__, chain=not truncate
    )
    return "".join(lines).rstrip()


def format_error_description(
    description: str | None, error: BaseException | str | None, truncate: bool = True
) -> str | None:
    """Compose the finish description of a failed item.

    Parameters
    ----------
    description : str | None
        Description the item was started with
    error : BaseException | str | None
        Error attributed to the item
    truncate : bool
        Stack-trace truncation flag

    Returns
    -------
    str | None
        ``<description>\\n---\\n<error>``, the error alone, or None
    """
    if error is None:
        return None
    error_block = ERROR_FORMAT % format_stack_trace(error, truncate)
    if description and description.strip():
        return as_two_parts(description, error_block)
    return error_block


def split_tokens(lines: Iterable[str]) -> list[str]:
    """Split each line on whitespace and flatten the tokens."""
    tokens: list[str] = []
    for line in lines:
        tokens.extend(line.split())
    return tokens


def mask_secret(value: str | None) -> str | None:
    """Hide all but the last four characters of a secret."""
    if not value:
        return value
    if len(value) <= 4:
        return "*" * len(value)
    return "*" * (len(value) - 4) + value[-4:]


def log_and_print_error(message: str, *args: Any) -> None:
    """Log error message and print to stderr.

    Parameters
    ----------
    message : str
        Error message with optional format placeholders
    *args : Any
        Format arguments for message
    """
    logging.error(message, *args)
    formatted_msg = message % args if args else message
    print(f"Error: {formatted_msg}", file=sys.stderr)
