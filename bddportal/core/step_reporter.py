"""Manually reported steps nested under the running scenario step."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING

from bddportal.client.handles import ItemHandle
from bddportal.client.messages import Attachment, FinishItemRequest, StartItemRequest
from bddportal.constants import ItemStatus, ItemType, LogLevel, StepKind
from bddportal.core.model import ScenarioContext
from bddportal.core.status import evaluate_status
from bddportal.utils import now

if TYPE_CHECKING:
    from bddportal.core.reporter import ScenarioReporter

logger = logging.getLogger(__name__)


class StepReporter:
    """Report sub-steps from inside a step definition.

    Each `send_step` closes the previous nested step and opens a new child of
    the running step. The last nested step is closed together with its parent,
    and a failed nested step fails the parent.

    Parameters
    ----------
    reporter : ScenarioReporter
        Reporter that owns the running scenario
    """

    def __init__(self, reporter: ScenarioReporter) -> None:
        self.reporter = reporter

    def send_step(
        self,
        name: str,
        *messages: str,
        status: ItemStatus = ItemStatus.PASSED,
        level: LogLevel = LogLevel.INFO,
        attachments: tuple[Attachment, ...] = (),
    ) -> ItemHandle | None:
        """Open a nested step and attach messages to it.

        Parameters
        ----------
        name : str
            Nested step name
        *messages : str
            Log messages sent to the nested step
        status : ItemStatus
            Status the nested step is closed with
        level : LogLevel
            Level of the messages
        attachments : tuple[Attachment, ...]
            Files sent to the nested step, one log entry each

        Returns
        -------
        ItemHandle | None
            Nested step handle, or None when no step is running
        """
        scenario = self.reporter.current_scenario()
        if scenario is None or scenario.current_step is None:
            logger.warning("Nested step '%s' reported outside of a running step", name)
            return None
        if scenario.current_step.kind != StepKind.NORMAL:
            logger.warning("Nested step '%s' reported before its parent step started", name)
            return None

        start_time = now()
        self.finish_nested_step(scenario, start_time)

        request = StartItemRequest(
            name=name, type=ItemType.STEP, start_time=start_time, has_stats=False
        )
        handle = self.reporter.start_test_item(request, scenario.current_step.handle)
        scenario.nested_step = handle
        scenario.nested_step_status = status

        for message in messages:
            self.reporter.send_log(message, level, time=start_time, item=handle)
        for attachment in attachments:
            self.reporter.send_log(
                attachment.name, level, time=start_time, item=handle, attachment=attachment
            )

        if status == ItemStatus.FAILED:
            scenario.current_step.status = evaluate_status(scenario.current_step.status, status)
        return handle

    def send_step_with_files(
        self, name: str, *files: Attachment, status: ItemStatus = ItemStatus.PASSED
    ) -> ItemHandle | None:
        return self.send_step(name, status=status, attachments=files)

    def finish_previous_step(self, status: ItemStatus | None = None) -> None:
        """Close the open nested step, optionally overriding its status."""
        scenario = self.reporter.current_scenario()
        if scenario is None:
            return
        if status is not None:
            scenario.nested_step_status = status
            if status == ItemStatus.FAILED and scenario.current_step is not None:
                scenario.current_step.status = evaluate_status(scenario.current_step.status, status)
        self.finish_nested_step(scenario, now())

    def finish_nested_step(self, scenario: ScenarioContext, end_time: datetime) -> None:
        handle = scenario.nested_step
        if handle is None:
            return
        scenario.nested_step = None
        status = scenario.nested_step_status or ItemStatus.PASSED
        scenario.nested_step_status = None
        self.reporter.launch.finish_item(handle, FinishItemRequest(end_time=end_time, status=status))
