"""Logging integration: forward log records to reported items."""

from __future__ import annotations

from bddportal.logging.formatters import ItemLogFormatter
from bddportal.logging.handlers import PortalLogHandler, to_log_level, to_logging_level

__all__ = ["ItemLogFormatter", "PortalLogHandler", "to_log_level", "to_logging_level"]
