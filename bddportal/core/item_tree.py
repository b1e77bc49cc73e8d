"""In-memory mirror of reported items for callback reporting.

Step code can look up the item of its feature, scenario or step after the
fact and change its status or add logs, for example once an asynchronous
check completes.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING

from bddportal.client.handles import ItemHandle
from bddportal.client.messages import FinishItemRequest, SaveLogRequest
from bddportal.constants import ItemStatus, LogLevel
from bddportal.utils import now

if TYPE_CHECKING:
    from bddportal.client.launch import Launch

logger = logging.getLogger(__name__)


def create_key(value: str | int) -> str:
    """Key of a tree node: feature URI, scenario line or step text."""
    return str(value)


@dataclass
class ItemLeaf:
    handle: ItemHandle
    parent: ItemHandle | None = None
    children: dict[str, ItemLeaf] = field(default_factory=dict)


class ItemTree:
    """Launch -> feature -> scenario -> step lookup structure.

    Parameters
    ----------
    launch : ItemHandle | None
        Root handle
    """

    def __init__(self, launch: ItemHandle | None = None) -> None:
        self.launch = launch
        self._lock = threading.RLock()
        self.children: dict[str, ItemLeaf] = {}

    def add_feature(self, uri: str, handle: ItemHandle) -> ItemLeaf:
        with self._lock:
            leaf = self.children.get(create_key(uri))
            if leaf is None:
                leaf = ItemLeaf(handle, self.launch)
                self.children[create_key(uri)] = leaf
            return leaf

    def add_scenario(self, uri: str, line: int, handle: ItemHandle) -> ItemLeaf | None:
        with self._lock:
            feature = self.children.get(create_key(uri))
            if feature is None:
                logger.warning("Feature %s is not in the item tree", uri)
                return None
            leaf = ItemLeaf(handle, feature.handle)
            feature.children[create_key(line)] = leaf
            return leaf

    def add_step(self, uri: str, line: int, text: str, handle: ItemHandle) -> ItemLeaf | None:
        with self._lock:
            scenario = self.retrieve_leaf(uri, line)
            if scenario is None:
                return None
            leaf = ItemLeaf(handle, scenario.handle)
            scenario.children[create_key(text)] = leaf
            return leaf

    def remove_scenario(self, uri: str, line: int) -> None:
        with self._lock:
            feature = self.children.get(create_key(uri))
            if feature is not None:
                feature.children.pop(create_key(line), None)

    def remove_feature(self, uri: str) -> None:
        with self._lock:
            self.children.pop(create_key(uri), None)

    def retrieve_leaf(
        self, uri: str, line: int | None = None, text: str | None = None
    ) -> ItemLeaf | None:
        """Walk the tree down to a feature, scenario or step leaf.

        Parameters
        ----------
        uri : str
            Feature URI
        line : int | None
            Test-case line; None selects the feature leaf
        text : str | None
            Step text; None selects the scenario leaf

        Returns
        -------
        ItemLeaf | None
            Matching leaf, or None when any level is missing
        """
        with self._lock:
            leaf = self.children.get(create_key(uri))
            if leaf is None or line is None:
                return leaf
            leaf = leaf.children.get(create_key(line))
            if leaf is None or text is None:
                return leaf
            return leaf.children.get(create_key(text))


def finish_item(
    launch: Launch,
    leaf: ItemLeaf,
    status: ItemStatus,
    description: str | None = None,
    end_time: datetime | None = None,
) -> None:
    """Close a leaf's item with an explicit status."""
    request = FinishItemRequest(end_time=end_time or now(), status=status, description=description)
    launch.finish_item(leaf.handle, request)


def send_log(
    launch: Launch,
    leaf: ItemLeaf,
    level: LogLevel | str,
    message: str,
    time: datetime | None = None,
) -> None:
    """Attach a log entry to a leaf's item."""
    launch.log(leaf.handle, SaveLogRequest(time=time or now(), level=LogLevel(level), message=message))
