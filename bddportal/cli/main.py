"""CLI entry point for bddportal."""

from __future__ import annotations

import logging
import os
import sys

import fire
from omegaconf.errors import InterpolationResolutionError

from bddportal.client.service import ReportingServiceError
from bddportal.constants import (
    DEBUG_ENV_VAR,
    EXIT_CONFIG_ERROR,
    EXIT_ERROR,
    EXIT_INTERRUPTED,
)
from bddportal.events.codec import EventDecodeError
from bddportal.logging import ItemLogFormatter


def get_bddportal_class() -> type:
    """Get BddPortal class on-demand to avoid circular imports.

    Returns
    -------
    type
        BddPortal command class
    """
    from bddportal.__main__ import BddPortal

    return BddPortal


def handle_decode_error(error: EventDecodeError, debug_mode: bool) -> None:
    """Handle an unreadable event recording.

    Raises
    ------
    EventDecodeError
        Re-raised if debug mode is enabled
    """
    if debug_mode:
        raise

    print(f"Invalid event recording: {error}\n", file=sys.stderr)
    print("This usually means:", file=sys.stderr)
    print("  - The file was not written by record_events", file=sys.stderr)
    print("  - The run was interrupted while writing a line", file=sys.stderr)
    sys.exit(EXIT_ERROR)


def handle_value_error(error: Exception, debug_mode: bool) -> None:
    """Handle configuration errors.

    Parameters
    ----------
    error : Exception
        The ValueError or interpolation error that was raised
    debug_mode : bool
        Whether debug mode is enabled

    Raises
    ------
    ValueError
        Re-raised if debug mode is enabled
    """
    if debug_mode:
        raise

    error_msg = str(error)

    if "api_key" in error_msg and "endpoint" in error_msg:
        print("Reporting service is not configured\n", file=sys.stderr)
        print("Fix it:", file=sys.stderr)
        print("  bddportal init", file=sys.stderr)
        print("  export BDDPORTAL_API_KEY=...", file=sys.stderr)
        print("Or preview the launch:", file=sys.stderr)
        print("  bddportal replay events.jsonl --dry_run", file=sys.stderr)
    else:
        print(f"Configuration error: {error_msg}", file=sys.stderr)
    sys.exit(EXIT_CONFIG_ERROR)


def handle_service_error(error: ReportingServiceError, debug_mode: bool) -> None:
    """Handle a failed request to the reporting service.

    Raises
    ------
    ReportingServiceError
        Re-raised if debug mode is enabled
    """
    if debug_mode:
        raise

    print(f"Reporting service error: {error}\n", file=sys.stderr)
    print("Debugging steps:", file=sys.stderr)
    print("  1. Check the endpoint is reachable", file=sys.stderr)
    print("  2. Check the API key has access to the project", file=sys.stderr)
    print("  3. Validate the configuration: bddportal check", file=sys.stderr)
    sys.exit(EXIT_ERROR)


def handle_file_error(error: OSError, debug_mode: bool) -> None:
    """Handle a missing or unreadable file.

    Raises
    ------
    OSError
        Re-raised if debug mode is enabled
    """
    if debug_mode:
        raise

    print(f"File error: {error}", file=sys.stderr)
    sys.exit(EXIT_ERROR)


def main() -> None:
    """Entry point for Fire CLI with graceful error handling.

    Notes
    -----
    Fire maps the methods of `BddPortal` to commands (``replay``, ``check``,
    ``init``). Set ``BDDPORTAL_DEBUG=1`` to get tracebacks instead of
    summarized errors.
    """
    stderr_handler = logging.StreamHandler(sys.stderr)
    stderr_handler.setFormatter(ItemLogFormatter("%(levelname)s %(name)s: %(message)s"))

    logging.basicConfig(
        level=logging.INFO,
        handlers=[stderr_handler],
    )

    debug_mode = os.environ.get(DEBUG_ENV_VAR) == "1"

    try:
        fire.Fire(get_bddportal_class()())
    except EventDecodeError as e:
        handle_decode_error(e, debug_mode)
    except (ValueError, InterpolationResolutionError) as e:
        handle_value_error(e, debug_mode)
    except ReportingServiceError as e:
        handle_service_error(e, debug_mode)
    except OSError as e:
        handle_file_error(e, debug_mode)
    except KeyboardInterrupt:
        if debug_mode:
            raise
        print("Interrupted", file=sys.stderr)
        sys.exit(EXIT_INTERRUPTED)
