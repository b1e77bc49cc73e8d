"""Mapping of runner statuses onto reporting statuses."""

from __future__ import annotations

import logging

from bddportal.constants import ItemStatus, RunnerStatus

logger = logging.getLogger(__name__)

STATUS_MAPPING = {
    RunnerStatus.PASSED: ItemStatus.PASSED,
    RunnerStatus.FAILED: ItemStatus.FAILED,
    RunnerStatus.SKIPPED: ItemStatus.SKIPPED,
    RunnerStatus.PENDING: ItemStatus.SKIPPED,
    RunnerStatus.AMBIGUOUS: ItemStatus.SKIPPED,
    RunnerStatus.UNDEFINED: ItemStatus.SKIPPED,
    RunnerStatus.UNUSED: ItemStatus.SKIPPED,
}

_SEVERITY = {ItemStatus.PASSED: 0, ItemStatus.SKIPPED: 1, ItemStatus.FAILED: 2}


def map_item_status(status: RunnerStatus | str | None) -> ItemStatus | None:
    """Translate a runner status into a reporting status.

    Parameters
    ----------
    status : RunnerStatus | str | None
        Runner status or its name (case-insensitive)

    Returns
    -------
    ItemStatus | None
        Mapped status; None when no status was given. Unrecognized values
        map to SKIPPED.
    """
    if status is None:
        return None

    if not isinstance(status, RunnerStatus):
        try:
            status = RunnerStatus(str(status).upper())
        except ValueError:
            logger.error("Unable to find direct mapping between runner and reporting statuses for: %s", status)
            return ItemStatus.SKIPPED

    return STATUS_MAPPING[status]


def evaluate_status(current: ItemStatus | None, new: ItemStatus | None) -> ItemStatus | None:
    """Fold a new status into an aggregated one.

    The more severe status wins (FAILED > SKIPPED > PASSED); None on either
    side leaves the other value unchanged.
    """
    if new is None:
        return current
    if current is None:
        return new
    return new if _SEVERITY[new] > _SEVERITY[current] else current
