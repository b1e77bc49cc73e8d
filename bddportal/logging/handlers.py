"""Logging handler forwarding records to the running test item."""

from __future__ import annotations

import logging
import threading
from datetime import datetime, timezone

from bddportal.constants import LogLevel
from bddportal.core.reporter import ScenarioReporter
from bddportal.logging.formatters import ItemLogFormatter

IGNORED_LOGGERS = ("bddportal", "urllib3", "requests")
"""Loggers whose records are never forwarded, to avoid reporting the reporter."""


def to_log_level(levelno: int) -> LogLevel:
    """Map a stdlib logging level onto a reporting log level."""
    if levelno >= logging.CRITICAL:
        return LogLevel.FATAL
    if levelno >= logging.ERROR:
        return LogLevel.ERROR
    if levelno >= logging.WARNING:
        return LogLevel.WARN
    if levelno >= logging.INFO:
        return LogLevel.INFO
    if levelno >= logging.DEBUG:
        return LogLevel.DEBUG
    return LogLevel.TRACE


def to_logging_level(level: LogLevel) -> int:
    return {
        LogLevel.TRACE: logging.NOTSET,
        LogLevel.DEBUG: logging.DEBUG,
        LogLevel.INFO: logging.INFO,
        LogLevel.WARN: logging.WARNING,
        LogLevel.ERROR: logging.ERROR,
        LogLevel.FATAL: logging.CRITICAL,
    }[level]


class PortalLogHandler(logging.Handler):
    """Logging handler that sends records to the current reporter.

    Records land on the innermost running item (hook, nested step, step or
    scenario); outside of a scenario they are attached to the launch.

    Parameters
    ----------
    reporter : ScenarioReporter | None
        Reporter to send to; None resolves the current reporter per record
    level : int
        Minimum level of forwarded records
    """

    def __init__(self, reporter: ScenarioReporter | None = None, level: int = logging.INFO) -> None:
        super().__init__(level)
        self.reporter = reporter
        self._local = threading.local()
        truncate = reporter.parameters.exception_truncate if reporter is not None else False
        self.setFormatter(ItemLogFormatter("%(name)s - %(message)s", truncate=truncate))

    def emit(self, record: logging.LogRecord) -> None:
        """Emit log record to the reporting service.

        Parameters
        ----------
        record : logging.LogRecord
            Log record to emit
        """
        if record.name.split(".", 1)[0] in IGNORED_LOGGERS:
            return
        if getattr(self._local, "emitting", False):
            return

        reporter = self.reporter or ScenarioReporter.get_current()
        if reporter is None:
            return

        self._local.emitting = True
        try:
            reporter.send_log(
                self.format(record),
                to_log_level(record.levelno),
                time=datetime.fromtimestamp(record.created, tz=timezone.utc),
            )
        except Exception:
            self.handleError(record)
        finally:
            self._local.emitting = False
