"""Transport-level contract of the reporting service."""

from __future__ import annotations

from typing import Any, Protocol

from bddportal.client.messages import Attachment


class ReportingServiceError(Exception):
    """Raised when the reporting service rejects or cannot receive a request."""


class ReportingService(Protocol):
    """Synchronous operations of a reporting backend.

    Implementations return remote identifiers from the start operations and
    raise `ReportingServiceError` on failure.
    """

    def start_launch(self, payload: dict[str, Any]) -> str: ...

    def finish_launch(self, launch_id: str, payload: dict[str, Any]) -> None: ...

    def start_item(self, parent_id: str | None, payload: dict[str, Any]) -> str: ...

    def finish_item(self, item_id: str, payload: dict[str, Any]) -> None: ...

    def log(self, payload: dict[str, Any], attachment: Attachment | None = None) -> None: ...

    def close(self) -> None: ...
