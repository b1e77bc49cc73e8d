"""Logging formatters for records forwarded to the reporting service."""

import logging

from bddportal.utils import format_stack_trace

STREAM_TAGS = ("stdout", "stderr")


class ItemLogFormatter(logging.Formatter):
    """Render a record as an item log message.

    Records logged with ``extra={"stream": "stdout"}`` (or ``stderr``) are
    tagged with their stream. Tracebacks drop chained causes when
    `truncate` is set.

    Parameters
    ----------
    fmt : str | None
        Record format
    truncate : bool
        Render exceptions without their cause chain
    """

    def __init__(self, fmt: str | None = None, truncate: bool = False) -> None:
        super().__init__(fmt)
        self.truncate = truncate

    def formatException(self, ei) -> str:  # noqa: N802
        if self.truncate:
            return format_stack_trace(ei[1], truncate=True)
        return super().formatException(ei).rstrip()

    def format(self, record: logging.LogRecord) -> str:
        msg = super().format(record)
        stream = getattr(record, "stream", None)
        if stream in STREAM_TAGS:
            return f"[{stream}] {msg}"
        return msg
