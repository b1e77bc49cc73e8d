"""In-memory reporting backend used for dry runs and tests."""

from __future__ import annotations

import itertools
import threading
from dataclasses import dataclass, field
from typing import Any

from bddportal.client.messages import Attachment
from bddportal.client.service import ReportingServiceError


@dataclass
class RecordedItem:
    """A test item as received by the in-memory backend."""

    id: str
    parent_id: str | None
    start: dict[str, Any]
    finish: dict[str, Any] | None = None
    finish_count: int = 0
    logs: list[dict[str, Any]] = field(default_factory=list)

    @property
    def name(self) -> str:
        return self.start["name"]

    @property
    def status(self) -> str | None:
        return None if self.finish is None else self.finish.get("status")


@dataclass
class RecordedLog:
    payload: dict[str, Any]
    attachment: Attachment | None = None

    @property
    def message(self) -> str:
        return self.payload["message"]

    @property
    def item_id(self) -> str | None:
        return self.payload.get("itemUuid")


class InMemoryReportingService:
    """Reporting backend that keeps every request in memory.

    Items are stored in start order; `render_tree` prints the resulting
    hierarchy for dry runs.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._ids = itertools.count(1)
        self.launches: dict[str, dict[str, Any]] = {}
        self.finished_launches: dict[str, dict[str, Any]] = {}
        self.items: dict[str, RecordedItem] = {}
        self.logs: list[RecordedLog] = []
        self.closed = False

    def _next_id(self, prefix: str) -> str:
        return f"{prefix}-{next(self._ids)}"

    def start_launch(self, payload: dict[str, Any]) -> str:
        with self._lock:
            launch_id = self._next_id("launch")
            self.launches[launch_id] = payload
            return launch_id

    def finish_launch(self, launch_id: str, payload: dict[str, Any]) -> None:
        with self._lock:
            if launch_id not in self.launches:
                raise ReportingServiceError(f"Unknown launch: {launch_id}")
            self.finished_launches[launch_id] = payload

    def start_item(self, parent_id: str | None, payload: dict[str, Any]) -> str:
        with self._lock:
            if parent_id is not None and parent_id not in self.items:
                raise ReportingServiceError(f"Unknown parent item: {parent_id}")
            item_id = self._next_id("item")
            self.items[item_id] = RecordedItem(item_id, parent_id, payload)
            return item_id

    def finish_item(self, item_id: str, payload: dict[str, Any]) -> None:
        with self._lock:
            item = self.items.get(item_id)
            if item is None:
                raise ReportingServiceError(f"Unknown item: {item_id}")
            item.finish = payload
            item.finish_count += 1

    def log(self, payload: dict[str, Any], attachment: Attachment | None = None) -> None:
        with self._lock:
            record = RecordedLog(payload, attachment)
            self.logs.append(record)
            item = self.items.get(payload.get("itemUuid") or "")
            if item is not None:
                item.logs.append(payload)

    def close(self) -> None:
        self.closed = True

    def find_items(self, name: str | None = None, **start_fields: Any) -> list[RecordedItem]:
        """Return recorded items matching a name and start-payload fields."""
        with self._lock:
            items = list(self.items.values())
        return [
            item
            for item in items
            if (name is None or item.name == name)
            and all(item.start.get(key) == value for key, value in start_fields.items())
        ]

    def find_item(self, name: str, **start_fields: Any) -> RecordedItem:
        """Return the single item with the given name.

        Raises
        ------
        LookupError
            If no item or more than one item matches
        """
        matches = self.find_items(name, **start_fields)
        if len(matches) != 1:
            raise LookupError(f"Expected one item named {name!r}, found {len(matches)}")
        return matches[0]

    def children_of(self, parent_id: str | None) -> list[RecordedItem]:
        with self._lock:
            return [item for item in self.items.values() if item.parent_id == parent_id]

    def render_tree(self) -> str:
        """Render the recorded hierarchy, one item per line with its status."""
        lines: list[str] = []
        for launch_id, launch in self.launches.items():
            lines.append(f"{launch['name']} [{launch_id}]")
            self._render_children(None, 1, lines)
        return "\n".join(lines)

    def _render_children(self, parent_id: str | None, depth: int, lines: list[str]) -> None:
        for item in self.children_of(parent_id):
            status = item.status or "-"
            lines.append(f"{'  ' * depth}{item.start['type']} {item.name} ({status})")
            self._render_children(item.id, depth + 1, lines)
