"""Eventually resolved identifiers of remote items."""

from __future__ import annotations

import itertools
import threading
from concurrent.futures import Future

_counter = itertools.count(1)


class VirtualItemNotStartedError(RuntimeError):
    """Raised through a virtual handle that was never backed by a real item."""


class ItemHandle:
    """Opaque handle of a remote launch or test item.

    The remote identifier is assigned by the service asynchronously; work that
    needs it is chained on `id_future`. `finished` completes once the item has
    been closed on the service.

    Parameters
    ----------
    name : str | None
        Item name, for diagnostics
    virtual : bool
        True for placeholders whose remote item is started later
    """

    def __init__(self, name: str | None = None, virtual: bool = False) -> None:
        self.name = name
        self.virtual = virtual
        self.key = next(_counter)
        self.id_future: Future[str] = Future()
        self.finished: Future[bool] = Future()
        self.started = not virtual
        self.finish_requested = False
        self._lock = threading.Lock()
        self._dependents: list[Future] = []

    def __repr__(self) -> str:
        state = self.id_future.result() if self.is_resolved() else "pending"
        kind = "virtual " if self.virtual else ""
        return f"<ItemHandle {kind}#{self.key} {self.name!r} {state}>"

    def is_resolved(self) -> bool:
        return self.id_future.done() and self.id_future.exception() is None

    def resolve(self, item_id: str) -> None:
        if not self.id_future.done():
            self.id_future.set_result(item_id)

    def fail(self, error: BaseException) -> None:
        if not self.id_future.done():
            self.id_future.set_exception(error)

    def get_id(self, timeout: float | None = None) -> str:
        """Block until the remote identifier is known.

        Raises
        ------
        concurrent.futures.TimeoutError
            If the identifier is not assigned within the timeout
        Exception
            The error that prevented the item from starting
        """
        return self.id_future.result(timeout)

    def add_dependent(self, future: Future) -> None:
        """Register work (child finish, log upload) that must precede this item's finish."""
        with self._lock:
            self._dependents.append(future)

    def dependents(self) -> list[Future]:
        with self._lock:
            return list(self._dependents)
