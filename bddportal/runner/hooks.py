"""Helpers for reporting hooks, attachments and nested steps from behave code.

Decorate scenario and step hooks in ``environment.py`` to report them::

    from bddportal.runner.hooks import report_hook

    @report_hook
    def before_step(context, step):
        ...
"""

from __future__ import annotations

import functools
import logging
from collections.abc import Callable
from typing import Any, TypeVar

from bddportal.client.handles import ItemHandle
from bddportal.constants import HookType, ItemStatus
from bddportal.core.reporter import ScenarioReporter
from bddportal.runner.formatter import REPORTED_HOOK_TYPES, get_active_formatter

logger = logging.getLogger(__name__)

F = TypeVar("F", bound=Callable[..., Any])

BEHAVE_HOOK_TYPES = {
    "before_scenario": HookType.BEFORE,
    "after_scenario": HookType.AFTER,
    "before_step": HookType.BEFORE_STEP,
    "after_step": HookType.AFTER_STEP,
}


def report_hook(
    func: F | None = None, *, hook_type: HookType | None = None, name: str | None = None
) -> Any:
    """Report a behave hook as a hook item of the running scenario.

    Parameters
    ----------
    func : F | None
        Hook function; allows use as a bare decorator
    hook_type : HookType | None
        Hook kind, inferred from the function name when None
    name : str | None
        Item name (default: ``<module>.<function>()``)

    Returns
    -------
    Any
        Decorated function, or a decorator when called with options only

    Raises
    ------
    ValueError
        If the hook kind cannot be inferred from the function name
    """

    def decorate(fn: F) -> F:
        kind = hook_type or BEHAVE_HOOK_TYPES.get(fn.__name__)
        if kind is None:
            raise ValueError(
                f"Cannot infer hook type of '{fn.__name__}'; "
                f"pass hook_type for functions not named {sorted(BEHAVE_HOOK_TYPES)}"
            )
        REPORTED_HOOK_TYPES.add(kind)
        location = name or f"{fn.__module__}.{fn.__qualname__}()"

        @functools.wraps(fn)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            formatter = get_active_formatter()
            test_step = formatter.hook_started(kind, location) if formatter is not None else None
            if test_step is None:
                return fn(*args, **kwargs)

            try:
                result = fn(*args, **kwargs)
            except Exception as e:
                formatter.hook_finished(test_step, e)
                raise
            formatter.hook_finished(test_step, None)
            return result

        return wrapper  # type: ignore[return-value]

    if func is not None:
        return decorate(func)
    return decorate


def attach(data: bytes | str, mime_type: str | None = None, name: str | None = None) -> None:
    """Attach content to the running step, hook or scenario."""
    formatter = get_active_formatter()
    if formatter is None:
        logger.warning("Attachment '%s' dropped: no active bddportal formatter", name)
        return
    if isinstance(data, str):
        data = data.encode("utf-8")
    formatter.embedding(mime_type, data, name)


def write(text: str) -> None:
    """Send a text message to the running step, hook or scenario."""
    formatter = get_active_formatter()
    if formatter is None:
        logger.warning("Message dropped: no active bddportal formatter")
        return
    formatter.write(text)


def send_step(
    name: str, *messages: str, status: ItemStatus = ItemStatus.PASSED
) -> ItemHandle | None:
    """Report a nested step under the running step."""
    reporter = ScenarioReporter.get_current()
    if reporter is None:
        logger.warning("Nested step '%s' dropped: no active reporter", name)
        return None
    return reporter.step_reporter.send_step(name, *messages, status=status)
