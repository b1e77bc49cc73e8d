"""behave integration: formatter and environment helpers."""

from __future__ import annotations

from bddportal.runner.formatter import PortalFormatter, get_active_formatter
from bddportal.runner.hooks import attach, report_hook, send_step, write

__all__ = [
    "PortalFormatter",
    "attach",
    "get_active_formatter",
    "report_hook",
    "send_step",
    "write",
]
