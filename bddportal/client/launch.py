"""Non-blocking facade over a reporting service."""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Sequence
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from typing import Any

from bddportal.client.handles import ItemHandle, VirtualItemNotStartedError
from bddportal.client.messages import (
    FinishItemRequest,
    FinishLaunchRequest,
    SaveLogRequest,
    StartItemRequest,
    StartLaunchRequest,
)
from bddportal.client.service import ReportingService
from bddportal.constants import SHUTDOWN_TIMEOUT_SECONDS

logger = logging.getLogger(__name__)


class DependencyFailedError(RuntimeError):
    """Raised for work skipped because an item it depends on failed to start."""


class Launch:
    """Report a launch and its items without blocking the caller.

    Every operation returns immediately. The underlying service call is
    queued on a worker pool once the handles it needs are resolved: an item
    starts after its parent, a log is sent after its item has started and an
    item finishes after its children and logs. Only `finish` blocks, draining
    outstanding work before the launch itself is closed.

    Parameters
    ----------
    service : ReportingService
        Backend receiving the requests
    request : StartLaunchRequest
        Launch to open on `start`
    max_workers : int
        Size of the worker pool
    shutdown_timeout : float
        Seconds `finish` waits for outstanding work
    """

    def __init__(
        self,
        service: ReportingService,
        request: StartLaunchRequest,
        max_workers: int = 1,
        shutdown_timeout: float = SHUTDOWN_TIMEOUT_SECONDS,
    ) -> None:
        self.service = service
        self.request = request
        self.handle = ItemHandle(name=request.name)
        self.shutdown_timeout = shutdown_timeout
        self._executor = ThreadPoolExecutor(
            max_workers=max(1, max_workers), thread_name_prefix="bddportal-client"
        )
        self._lock = threading.Lock()
        self._pending: set[Future] = set()
        self._virtual: list[ItemHandle] = []
        self._started = False
        self._finished = False

    @property
    def finished(self) -> bool:
        return self._finished

    def _schedule(
        self,
        required: Sequence[Future],
        after: Sequence[Future],
        action: Callable[[], Any],
        description: str,
    ) -> Future:
        """Run an action on the pool once its dependencies complete.

        Parameters
        ----------
        required : Sequence[Future]
            Futures that must succeed; a failure skips the action
        after : Sequence[Future]
            Futures that must complete, successfully or not
        action : Callable[[], Any]
            Service call to perform
        description : str
            Operation name used in log messages

        Returns
        -------
        Future
            Completes with the action's result or error
        """
        result: Future = Future()
        with self._lock:
            self._pending.add(result)
        result.add_done_callback(self._discard_pending)

        def run() -> None:
            if not result.set_running_or_notify_cancel():
                return
            failed = next((f for f in required if f.exception() is not None), None)
            if failed is not None:
                result.set_exception(
                    DependencyFailedError(f"{description} skipped: {failed.exception()}")
                )
                return
            try:
                result.set_result(action())
            except Exception as e:
                logger.error("Reporting operation '%s' failed: %s", description, e)
                result.set_exception(e)

        def submit() -> None:
            try:
                self._executor.submit(run)
            except RuntimeError as e:
                logger.error("Reporting operation '%s' dropped: %s", description, e)
                if not result.done():
                    result.set_exception(e)

        dependencies = list(required) + list(after)
        if not dependencies:
            submit()
            return result

        remaining = [len(dependencies)]
        counter_lock = threading.Lock()

        def on_done(_: Future) -> None:
            with counter_lock:
                remaining[0] -= 1
                ready = remaining[0] == 0
            if ready:
                submit()

        for dependency in dependencies:
            dependency.add_done_callback(on_done)
        return result

    def _discard_pending(self, future: Future) -> None:
        with self._lock:
            self._pending.discard(future)

    @staticmethod
    def _bind(handle: ItemHandle, future: Future) -> None:
        def on_done(done: Future) -> None:
            error = done.exception()
            if error is None:
                handle.resolve(done.result())
                return
            handle.fail(error)
            if not handle.finished.done():
                handle.finished.set_exception(error)

        future.add_done_callback(on_done)

    def start(self) -> ItemHandle:
        """Open the launch; repeated calls return the same handle."""
        with self._lock:
            if self._started:
                return self.handle
            self._started = True

        future = self._schedule(
            [], [], lambda: self.service.start_launch(self.request.to_payload()), "start launch"
        )
        self._bind(self.handle, future)
        return self.handle

    def _start(self, handle: ItemHandle, request: StartItemRequest, parent: ItemHandle | None) -> None:
        required = [self.handle.id_future]
        if parent is not None:
            required.append(parent.id_future)
        if request.retry_of is not None:
            required.append(request.retry_of.id_future)

        def action() -> str:
            parent_id = parent.id_future.result() if parent is not None else None
            retry_of_id = request.retry_of.id_future.result() if request.retry_of is not None else None
            payload = request.to_payload(self.handle.id_future.result(), retry_of_id)
            return self.service.start_item(parent_id, payload)

        future = self._schedule(required, [], action, f"start item '{request.name}'")
        self._bind(handle, future)
        if parent is not None:
            parent.add_dependent(handle.finished)

    def start_item(self, request: StartItemRequest, parent: ItemHandle | None = None) -> ItemHandle:
        """Open a test item under a parent item, or at the launch root.

        Returns
        -------
        ItemHandle
            Handle resolved once the service assigns the item ID
        """
        handle = ItemHandle(name=request.name)
        self._start(handle, request, parent)
        return handle

    def create_virtual_item(self) -> ItemHandle:
        """Create a placeholder that children may be attached to before it starts."""
        handle = ItemHandle(virtual=True)
        with self._lock:
            self._virtual.append(handle)
        return handle

    def start_virtual_item(
        self, parent: ItemHandle | None, virtual: ItemHandle, request: StartItemRequest
    ) -> ItemHandle:
        """Back a placeholder with a real item; the placeholder handle is reused.

        Raises
        ------
        ValueError
            If the handle is not a placeholder or was already started
        """
        if not virtual.virtual or virtual.started:
            raise ValueError(f"{virtual!r} is not an unstarted virtual item")
        virtual.name = request.name
        virtual.started = True
        self._start(virtual, request, parent)
        return virtual

    def finish_item(self, handle: ItemHandle, request: FinishItemRequest) -> Future:
        """Close an item once its children and logs are done.

        Returns
        -------
        Future
            Completes when the service has closed the item
        """
        # a repeated finish updates the item once the first one has completed
        after = [handle.finished] if handle.finish_requested else handle.dependents()
        first = not handle.finish_requested
        handle.finish_requested = True

        def action() -> bool:
            payload = request.to_payload(self.handle.id_future.result())
            self.service.finish_item(handle.id_future.result(), payload)
            return True

        future = self._schedule(
            [self.handle.id_future, handle.id_future],
            after,
            action,
            f"finish item '{handle.name}'",
        )

        def on_done(done: Future) -> None:
            if not first or handle.finished.done():
                return
            if done.exception() is not None:
                handle.finished.set_exception(done.exception())
            else:
                handle.finished.set_result(True)

        future.add_done_callback(on_done)
        return future

    def log(self, item: ItemHandle | None, request: SaveLogRequest) -> Future:
        """Send a log entry to an item, or to the launch when item is None."""
        required = [self.handle.id_future]
        if item is not None:
            required.append(item.id_future)

        def action() -> None:
            item_id = item.id_future.result() if item is not None else None
            payload = request.to_payload(self.handle.id_future.result(), item_id)
            self.service.log(payload, request.attachment)

        future = self._schedule(required, [], action, "send log")
        if item is not None:
            item.add_dependent(future)
        return future

    def wait(self, timeout: float | None = None) -> bool:
        """Wait for queued work to complete.

        Returns
        -------
        bool
            True when nothing is left pending
        """
        deadline = None if timeout is None else time.monotonic() + timeout
        while True:
            with self._lock:
                pending = set(self._pending)
            if not pending:
                return True
            remaining = None if deadline is None else deadline - time.monotonic()
            if remaining is not None and remaining <= 0:
                return False
            wait(pending, timeout=remaining, return_when=FIRST_COMPLETED)

    def finish(self, request: FinishLaunchRequest) -> None:
        """Drain outstanding work and close the launch.

        Placeholders that were never backed by a real item are failed so that
        work waiting on them is released.
        """
        with self._lock:
            if self._finished:
                logger.warning("Launch '%s' is already finished", self.request.name)
                return
            self._finished = True
            virtual = [handle for handle in self._virtual if not handle.started]

        for handle in virtual:
            error = VirtualItemNotStartedError(f"{handle!r} was never started")
            handle.fail(error)
            if not handle.finished.done():
                handle.finished.set_exception(error)

        deadline = time.monotonic() + self.shutdown_timeout
        if not self.wait(self.shutdown_timeout):
            with self._lock:
                left = len(self._pending)
            logger.warning(
                "%d reporting operations did not complete within %ss",
                left,
                self.shutdown_timeout,
            )

        try:
            if self._started:
                future = self._schedule(
                    [self.handle.id_future],
                    [],
                    lambda: self.service.finish_launch(
                        self.handle.id_future.result(), request.to_payload()
                    ),
                    "finish launch",
                )
                future.result(timeout=max(deadline - time.monotonic(), 1.0))
                self.handle.finished.set_result(True)
        except Exception as e:
            logger.error("Unable to finish launch '%s': %s", self.request.name, e)
        finally:
            self._executor.shutdown(wait=False)
            self.service.close()
