"""Grouping of consecutive hooks under one reporting item."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING

from bddportal.client.handles import ItemHandle
from bddportal.client.messages import StartItemRequest
from bddportal.constants import (
    DEFAULT_HOOK_GROUP_NAME,
    HOOK_GROUP_NAMES,
    HookType,
    ItemStatus,
    ItemType,
    StepKind,
)
from bddportal.core.model import HookGroup, ScenarioContext, Step
from bddportal.core.status import map_item_status
from bddportal.events.model import Result

if TYPE_CHECKING:
    from bddportal.core.reporter import ScenarioReporter

logger = logging.getLogger(__name__)


def hook_group_name(hook_type: HookType) -> str:
    return HOOK_GROUP_NAMES.get(hook_type, DEFAULT_HOOK_GROUP_NAME)


class HookGrouper:
    """Wrap consecutive hooks of one kind into a single group item.

    Scenario hooks are grouped under the scenario. BEFORE_STEP groups are
    parented to a virtual step that becomes the real step once the runner
    announces it; AFTER_STEP groups are parented to the step that just
    finished.

    Parameters
    ----------
    reporter : ScenarioReporter
        Reporter owning the launch the items are sent to
    """

    def __init__(self, reporter: ScenarioReporter) -> None:
        self.reporter = reporter

    def _parent_for(
        self, scenario: ScenarioContext, hook_type: HookType, start_time: datetime
    ) -> ItemHandle | None:
        if hook_type == HookType.BEFORE_STEP:
            current = scenario.current_step
            if current is not None and current.kind == StepKind.VIRTUAL:
                return current.handle
            virtual = self.reporter.launch.create_virtual_item()
            scenario.current_step = Step(virtual, StepKind.VIRTUAL, start_time)
            return virtual

        if hook_type == HookType.AFTER_STEP:
            if scenario.previous_step is None:
                logger.warning(
                    "No previous step for after-step hook in %s:%d, attaching it to the scenario",
                    scenario.test_case.uri if scenario.test_case else "?",
                    scenario.line,
                )
                return scenario.handle
            return scenario.previous_step.handle

        return scenario.handle

    def start_hook(
        self,
        scenario: ScenarioContext,
        hook_type: HookType,
        code_location: str,
        start_time: datetime,
    ) -> ItemHandle:
        """Open a hook item, opening or switching its group first.

        Parameters
        ----------
        scenario : ScenarioContext
            Scenario the hook runs in
        hook_type : HookType
            Kind of the hook
        code_location : str
            Hook function location, used as the item name
        start_time : datetime
            Hook start time

        Returns
        -------
        ItemHandle
            Handle of the hook item
        """
        launch = self.reporter.launch
        group = scenario.hook_group

        if group is None or not group.accepts(hook_type):
            if group is not None:
                self.flush(scenario, start_time)

            parent = self._parent_for(scenario, hook_type, start_time)
            request = StartItemRequest(
                name=hook_group_name(hook_type),
                type=ItemType.STEP,
                start_time=start_time,
                has_stats=False,
            )
            group = HookGroup(launch.start_item(request, parent), hook_type)
            scenario.hook_group = group

        request = StartItemRequest(
            name=code_location,
            type=ItemType.STEP,
            start_time=start_time,
            has_stats=False,
        )
        scenario.hook_handle = launch.start_item(request, group.handle)
        return scenario.hook_handle

    def finish_hook(self, scenario: ScenarioContext, result: Result, end_time: datetime) -> None:
        handle = scenario.hook_handle
        if handle is None:
            logger.error("BUG: Trying to finish unspecified hook item.")
            return

        self.reporter.report_error(handle, result)
        status = map_item_status(result.status)
        if status == ItemStatus.FAILED:
            self.reporter.record_error(handle, result.error)
        self.reporter.finish_test_item(handle, status, end_time)
        scenario.hook_handle = None
        if scenario.hook_group is not None:
            scenario.hook_group.update_status(status)

    def flush(self, scenario: ScenarioContext, end_time: datetime) -> None:
        """Close the open group of a scenario, if any."""
        group = scenario.hook_group
        if group is None:
            return
        scenario.hook_group = None
        self.reporter.finish_test_item(group.handle, group.status or ItemStatus.PASSED, end_time)
