"""behave formatter that reports the run through a `ScenarioReporter`.

Enable it in ``behave.ini``::

    [behave]
    format = bddportal.runner.formatter:PortalFormatter

Options come from ``bddportal.yaml`` and may be overridden with userdata,
e.g. ``behave -D bddportal.launch="Nightly" -D bddportal.dry_run=true``.
"""

from __future__ import annotations

import logging
import threading
from typing import Any

from behave.formatter.base import Formatter

from bddportal.client.memory import InMemoryReportingService
from bddportal.constants import HookType, RunnerStatus
from bddportal.core.config import ReporterParameters, load_parameters, parse_bool
from bddportal.core.reporter import ScenarioReporter, create_service
from bddportal.events.codec import JsonLinesRecorder
from bddportal.events.model import (
    EmbedEvent,
    HookTestStep,
    PickleStepTestStep,
    Result,
    TestCase,
    TestCaseFinished,
    TestCaseStarted,
    TestRunFinished,
    TestRunStarted,
    TestSourceParsed,
    TestStepFinished,
    TestStepStarted,
    WriteEvent,
)
from bddportal.events.publisher import EventPublisher
from bddportal.logging.handlers import PortalLogHandler, to_logging_level
from bddportal.runner.convert import (
    convert_feature,
    convert_step,
    convert_test_case,
    scenario_result,
    step_result,
)

logger = logging.getLogger(__name__)

USERDATA_PREFIX = "bddportal."

REPORTED_HOOK_TYPES: set[HookType] = set()
"""Hook kinds decorated with `report_hook` in the loaded environment."""

_active_lock = threading.Lock()
_active_formatter: PortalFormatter | None = None


def get_active_formatter() -> PortalFormatter | None:
    with _active_lock:
        return _active_formatter


def _set_active_formatter(formatter: PortalFormatter | None) -> None:
    global _active_formatter
    with _active_lock:
        _active_formatter = formatter


def parameters_from_userdata(userdata: Any) -> tuple[ReporterParameters, bool]:
    """Load reporter parameters with ``bddportal.*`` userdata overrides.

    Returns
    -------
    tuple[ReporterParameters, bool]
        Parameters and the dry-run flag
    """
    values = {
        key[len(USERDATA_PREFIX) :]: value
        for key, value in dict(userdata or {}).items()
        if key.startswith(USERDATA_PREFIX)
    }
    config_path = values.pop("config", None)
    profile = values.pop("profile", None)
    dry_run = parse_bool(values.pop("dry_run", False))
    return load_parameters(config_path, profile, values), dry_run


class PortalFormatter(Formatter):
    """Translate behave callbacks into runner events.

    behave reports a scenario's steps up front and their outcomes one by one,
    but never announces the end of a scenario; a test case is finished when
    the next scenario or feature begins, or when the run closes.

    Parameters
    ----------
    stream_opener : behave.formatter.base.StreamOpener
        Output stream opener (used for the dry-run tree only)
    config : behave.configuration.Configuration
        behave configuration carrying userdata
    reporter : ScenarioReporter | None
        Pre-built reporter, mainly for tests
    """

    name = "bddportal"
    description = "Report the run to a ReportPortal-compatible service"

    def __init__(self, stream_opener: Any, config: Any, reporter: ScenarioReporter | None = None) -> None:
        super().__init__(stream_opener, config)
        self.publisher = EventPublisher()
        self.reporter = reporter
        self.service: InMemoryReportingService | None = None
        self.dry_run = False
        self._recorder: JsonLinesRecorder | None = None
        self._log_handler: PortalLogHandler | None = None
        self._run_started = False
        self._test_case: TestCase | None = None
        self._scenario: Any = None
        self._queued: list[Any] = []
        self._pending: tuple[Any, PickleStepTestStep] | None = None
        self._running: tuple[Any, PickleStepTestStep] | None = None
        self._reported: set[int] = set()

        if reporter is None:
            self.reporter = self._create_reporter()
        if self.reporter is not None:
            self.reporter.set_event_publisher(self.publisher)
            self._install_log_handler()
        _set_active_formatter(self)

    @property
    def enabled(self) -> bool:
        return self.reporter is not None

    def _create_reporter(self) -> ScenarioReporter | None:
        parameters, self.dry_run = parameters_from_userdata(getattr(self.config, "userdata", None))
        if not parameters.enabled:
            logger.info("Reporting is disabled")
            return None

        if parameters.record_events:
            self._recorder = JsonLinesRecorder(parameters.record_events)
            self._recorder.set_event_publisher(self.publisher)

        if self.dry_run:
            self.service = InMemoryReportingService()
            return ScenarioReporter(parameters, lambda _: self.service)

        if not parameters.has_connection:
            logger.error("Reporting is disabled: endpoint, project and api_key must be configured")
            return None
        return ScenarioReporter(parameters, create_service)

    def _install_log_handler(self) -> None:
        level = to_logging_level(self.reporter.parameters.log_level)
        self._log_handler = PortalLogHandler(self.reporter, level=level)
        logging.getLogger().addHandler(self._log_handler)

    def _publish(self, event: Any) -> None:
        if self.enabled or self._recorder is not None:
            self.publisher.publish(event)

    def _ensure_run_started(self) -> None:
        if not self._run_started:
            self._run_started = True
            self._publish(TestRunStarted())

    def _start_step(self, step: Any, test_step: PickleStepTestStep) -> None:
        self._publish(TestStepStarted(self._test_case, test_step))
        self._running = (step, test_step)

    def _flush_pending(self) -> None:
        if self._pending is not None:
            step, test_step = self._pending
            self._pending = None
            self._start_step(step, test_step)

    def _finish_running(self) -> None:
        if self._running is None:
            return
        step, test_step = self._running
        self._running = None
        self._reported.add(id(step))
        self._publish(TestStepFinished(self._test_case, test_step, step_result(step)))

    def _skip_queued(self) -> None:
        queued, self._queued = self._queued, []
        for step in queued:
            test_step = convert_step(step)
            self._publish(TestStepStarted(self._test_case, test_step))
            self._publish(
                TestStepFinished(self._test_case, test_step, Result(status=RunnerStatus.SKIPPED))
            )

    def _finish_test_case(self) -> None:
        if self._test_case is None:
            return
        self._flush_pending()
        self._finish_running()
        self._skip_queued()
        self._publish(TestCaseFinished(self._test_case, scenario_result(self._scenario)))
        self._test_case = None
        self._scenario = None
        self._reported.clear()

    def feature(self, feature: Any) -> None:
        self._finish_test_case()
        self._ensure_run_started()
        node = convert_feature(feature)
        self._publish(TestSourceParsed(node.uri, [node]))

    def scenario(self, scenario: Any) -> None:
        self._finish_test_case()
        self._ensure_run_started()
        self._scenario = scenario
        self._test_case = convert_test_case(scenario)
        self._queued = []
        self._publish(TestCaseStarted(self._test_case))

    def step(self, step: Any) -> None:
        self._queued.append(step)

    def match(self, match: Any) -> None:
        if self._test_case is None:
            return
        if not self._queued:
            logger.warning("Step matched without an announced step")
            return

        self._flush_pending()
        self._finish_running()
        step = self._queued.pop(0)
        test_step = convert_step(step, match)
        if HookType.BEFORE_STEP in REPORTED_HOOK_TYPES:
            self._pending = (step, test_step)
        else:
            self._start_step(step, test_step)

    def result(self, step: Any) -> None:
        if self._test_case is None:
            return
        if self._pending is not None and self._pending[0] is step:
            self._flush_pending()
        if self._running is not None and self._running[0] is step:
            self._finish_running()
            return
        if id(step) in self._reported:
            return

        if step in self._queued:
            self._queued.remove(step)
        test_step = convert_step(step)
        self._publish(TestStepStarted(self._test_case, test_step))
        self._reported.add(id(step))
        self._publish(TestStepFinished(self._test_case, test_step, step_result(step)))

    def embedding(self, mime_type: str, data: bytes, caption: str | None = None) -> None:
        self._publish(EmbedEvent(self._test_case, data, mime_type, caption))

    def write(self, text: str) -> None:
        self._publish(WriteEvent(self._test_case, text))

    def hook_started(self, hook_type: HookType, code_location: str) -> HookTestStep | None:
        """Announce a reported hook of the running test case.

        Returns
        -------
        HookTestStep | None
            The announced hook step, or None outside of a test case
        """
        if self._test_case is None:
            return None

        if hook_type in (HookType.AFTER_STEP, HookType.AFTER):
            self._flush_pending()
            self._finish_running()
        if hook_type == HookType.AFTER:
            self._skip_queued()

        test_step = HookTestStep(hook_type, code_location)
        self._publish(TestStepStarted(self._test_case, test_step))
        return test_step

    def hook_finished(self, test_step: HookTestStep, error: BaseException | None = None) -> None:
        if self._test_case is None:
            return
        status = RunnerStatus.FAILED if error is not None else RunnerStatus.PASSED
        self._publish(TestStepFinished(self._test_case, test_step, Result(status, error)))
        if test_step.hook_type == HookType.BEFORE_STEP:
            self._flush_pending()

    def eof(self) -> None:
        self._finish_test_case()

    def close(self) -> None:
        self._finish_test_case()
        if self._run_started:
            self._publish(TestRunFinished())
            self._run_started = False

        if self._log_handler is not None:
            logging.getLogger().removeHandler(self._log_handler)
            self._log_handler = None
        if self._recorder is not None:
            self._recorder.close()
        if self.dry_run and self.service is not None:
            stream = self.open()
            stream.write(self.service.render_tree() + "\n")

        if get_active_formatter() is self:
            _set_active_formatter(None)
        self.close_stream()
