"""Translate runner events into a launch -> feature -> scenario -> step tree.

`ScenarioReporter` subscribes to the events of an `EventPublisher` and opens
and closes remote items as the run progresses:

- a feature item (STORY) is opened with its first scenario and closed when
  the run finishes, at the end time of its last scenario;
- rule items (SUITE) are opened and closed as scenarios move between rules;
- every test case becomes a scenario item with steps and hook groups below.
"""

from __future__ import annotations

import logging
import platform
import threading
from collections.abc import Callable
from datetime import datetime
from typing import ClassVar

from bddportal.client.handles import ItemHandle
from bddportal.client.http import HttpReportingService
from bddportal.client.launch import Launch
from bddportal.client.messages import (
    Attachment,
    FinishItemRequest,
    FinishLaunchRequest,
    ItemAttribute,
    Parameter,
    SaveLogRequest,
    StartItemRequest,
    StartLaunchRequest,
)
from bddportal.client.service import ReportingService
from bddportal.constants import (
    AGENT_NAME,
    BACKGROUND_PREFIX,
    DATA_TABLE_PARAM,
    DOC_STRING_PARAM,
    MAX_LOG_MESSAGE_LENGTH,
    SKIPPED_ISSUE_KEY,
    UNKNOWN_PARAM,
    ItemStatus,
    ItemType,
    LogLevel,
    StepKind,
)
from bddportal.core.attachments import resolve_attachment
from bddportal.core.config import ReporterParameters
from bddportal.core.hooks import HookGrouper
from bddportal.core.item_tree import ItemTree
from bddportal.core.model import FeatureContext, RuleContext, ScenarioContext, Step
from bddportal.core.retries import RetryRegistry, unique_id
from bddportal.core.status import evaluate_status, map_item_status
from bddportal.core.step_reporter import StepReporter
from bddportal.core.tags import (
    SourceLoader,
    get_attributes,
    get_code_ref,
    get_parameters,
    get_test_case_id,
    read_source,
    to_attribute,
)
from bddportal.events.model import (
    DataTableArgument,
    DocStringArgument,
    EmbedEvent,
    Feature,
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
from bddportal.utils import (
    build_name,
    format_data_table,
    format_error_description,
    format_stack_trace,
    now,
    relative_path,
)

logger = logging.getLogger(__name__)

ServiceFactory = Callable[[ReporterParameters], ReportingService]


def create_service(parameters: ReporterParameters) -> ReportingService:
    """Build the HTTP backend from connection parameters.

    Raises
    ------
    ValueError
        If endpoint, project or api_key is missing
    """
    if not parameters.has_connection:
        raise ValueError("endpoint, project and api_key are required to report to a server")
    return HttpReportingService(
        endpoint=parameters.endpoint,
        project=parameters.project,
        api_key=parameters.api_key,
        timeout=parameters.http_timeout,
        retries=parameters.http_retries,
    )


def get_system_attributes() -> list[ItemAttribute]:
    """Describe the reporting environment as system attributes."""
    from bddportal import __version__

    return [
        ItemAttribute("agent", f"{AGENT_NAME}|{__version__}", system=True),
        ItemAttribute("os", f"{platform.system()}|{platform.release()}", system=True),
        ItemAttribute(
            "python", f"{platform.python_implementation()}|{platform.python_version()}", system=True
        ),
    ]


def build_multiline_argument(argument: object) -> str:
    """Render a step's doc string or data table for the step description."""
    if isinstance(argument, DataTableArgument):
        return format_data_table(argument.rows)
    if isinstance(argument, DocStringArgument):
        return f'\n"""\n{argument.content}\n"""\n'
    return ""


def get_step_parameters(test_step: PickleStepTestStep) -> list[Parameter]:
    """List the captured definition arguments and the multiline argument."""
    parameters = [
        Parameter(argument.parameter_type_name, argument.value)
        for argument in test_step.definition_arguments
    ]
    argument = test_step.step.argument
    if isinstance(argument, DocStringArgument):
        parameters.append(Parameter(DOC_STRING_PARAM, argument.content))
    elif isinstance(argument, DataTableArgument):
        parameters.append(Parameter(DATA_TABLE_PARAM, format_data_table(argument.rows)))
    elif argument is not None:
        parameters.append(Parameter(UNKNOWN_PARAM, str(argument)))
    return parameters


class ScenarioReporter:
    """Report runner events to a reporting service.

    Parameters
    ----------
    parameters : ReporterParameters | None
        Launch and client options (default: built-in defaults)
    service_factory : ServiceFactory | None
        Builds the backend when the launch is first needed
        (default: `create_service`)
    source_loader : SourceLoader
        Reads feature sources for example-row parameters

    Notes
    -----
    The most recently constructed reporter becomes current for its thread and
    the fallback for threads that never constructed one, so step code can
    reach it through `ScenarioReporter.get_current()`.
    """

    _thread_local: ClassVar[threading.local] = threading.local()
    _last_instance: ClassVar[ScenarioReporter | None] = None
    _instance_lock: ClassVar[threading.Lock] = threading.Lock()

    def __init__(
        self,
        parameters: ReporterParameters | None = None,
        service_factory: ServiceFactory | None = None,
        source_loader: SourceLoader = read_source,
    ) -> None:
        self.parameters = parameters or ReporterParameters()
        self._service_factory = service_factory or create_service
        self._source_loader = source_loader
        self._launch: Launch | None = None
        self._launch_lock = threading.Lock()
        self._features: dict[str, FeatureContext] = {}
        self._features_lock = threading.RLock()
        self._descriptions: dict[ItemHandle, str] = {}
        self._errors: dict[ItemHandle, BaseException | str] = {}
        self._first_attempts: dict[str, ItemHandle] = {}
        self._active = threading.local()
        self._last_scenario: ScenarioContext | None = None
        self.item_tree = ItemTree()
        self.hooks = HookGrouper(self)
        self.retries = RetryRegistry()
        self.step_reporter = StepReporter(self)
        self.set_current(self)

    @classmethod
    def set_current(cls, reporter: ScenarioReporter | None) -> None:
        cls._thread_local.reporter = reporter
        with cls._instance_lock:
            cls._last_instance = reporter

    @classmethod
    def get_current(cls) -> ScenarioReporter | None:
        """Return the reporter of the calling thread, else the latest one."""
        reporter = getattr(cls._thread_local, "reporter", None)
        if reporter is not None:
            return reporter
        with cls._instance_lock:
            return cls._last_instance

    def set_event_publisher(self, publisher: EventPublisher) -> None:
        """Register the reporter's handlers on a publisher."""
        publisher.register_handler_for(TestRunStarted, self.handle_test_run_started)
        publisher.register_handler_for(TestSourceParsed, self.handle_source_parsed)
        publisher.register_handler_for(TestCaseStarted, self.handle_test_case_started)
        publisher.register_handler_for(TestStepStarted, self.handle_test_step_started)
        publisher.register_handler_for(TestStepFinished, self.handle_test_step_finished)
        publisher.register_handler_for(TestCaseFinished, self.handle_test_case_finished)
        publisher.register_handler_for(TestRunFinished, self.handle_test_run_finished)
        publisher.register_handler_for(EmbedEvent, self.handle_embed)
        publisher.register_handler_for(WriteEvent, self.handle_write)

    def build_start_launch_request(self, start_time: datetime | None = None) -> StartLaunchRequest:
        parameters = self.parameters
        attributes = [to_attribute(attribute) for attribute in parameters.attributes]
        attributes.extend(get_system_attributes())
        if parameters.skipped_issue is not None:
            attributes.append(
                ItemAttribute(SKIPPED_ISSUE_KEY, str(parameters.skipped_issue).lower(), system=True)
            )
        return StartLaunchRequest(
            name=parameters.launch,
            start_time=start_time or now(),
            mode=parameters.mode,
            description=parameters.launch_description,
            attributes=attributes,
            rerun=parameters.rerun,
            rerun_of=parameters.rerun_of,
        )

    def get_launch(self, start_time: datetime | None = None) -> Launch:
        """Materialize and start the launch on first use."""
        with self._launch_lock:
            if self._launch is None:
                self._launch = Launch(
                    self._service_factory(self.parameters),
                    self.build_start_launch_request(start_time),
                    max_workers=self.parameters.max_workers,
                    shutdown_timeout=self.parameters.shutdown_timeout,
                )
                self._launch.start()
                self.item_tree.launch = self._launch.handle
            return self._launch

    @property
    def launch(self) -> Launch:
        return self.get_launch()

    def _get_feature(self, uri: str) -> FeatureContext | None:
        with self._features_lock:
            feature = self._features.get(uri)
        if feature is None:
            logger.warning("No parsed feature for %s, event dropped", uri)
        return feature

    def _get_scenario(self, test_case: TestCase | None) -> ScenarioContext | None:
        if test_case is None:
            return self.current_scenario()
        feature = self._get_feature(test_case.uri)
        if feature is None:
            return None
        scenario = feature.get_scenario(test_case.line)
        if scenario is None:
            logger.warning("No running scenario at %s:%d, event dropped", test_case.uri, test_case.line)
        return scenario

    def current_scenario(self) -> ScenarioContext | None:
        """Scenario running on the calling thread, else the last one started."""
        scenario = getattr(self._active, "scenario", None)
        return scenario if scenario is not None else self._last_scenario

    def _set_active(self, scenario: ScenarioContext | None) -> None:
        self._active.scenario = scenario
        self._last_scenario = scenario

    def start_test_item(
        self, request: StartItemRequest, parent: ItemHandle | None = None
    ) -> ItemHandle:
        return self.launch.start_item(request, parent)

    def finish_test_item(
        self,
        handle: ItemHandle | None,
        status: ItemStatus | None = None,
        end_time: datetime | None = None,
    ) -> None:
        """Close an item, appending the attributed error on failure.

        Parameters
        ----------
        handle : ItemHandle | None
            Item to close
        status : ItemStatus | None
            Final status; None lets the service derive it from children
        end_time : datetime | None
            End time (default: now)
        """
        if handle is None:
            logger.error("BUG: Trying to finish unspecified test item.")
            return

        description = self._descriptions.pop(handle, None)
        error = self._errors.pop(handle, None)
        request = FinishItemRequest(end_time=end_time or now(), status=status)
        if status == ItemStatus.FAILED:
            request.description = format_error_description(
                description, error, self.parameters.exception_truncate
            )
        self.launch.finish_item(handle, request)

    def send_log(
        self,
        message: str,
        level: LogLevel | str = LogLevel.INFO,
        time: datetime | None = None,
        item: ItemHandle | None = None,
        attachment: Attachment | None = None,
    ) -> None:
        """Send a log entry to an item or to the innermost open item.

        Parameters
        ----------
        message : str
            Log text
        level : LogLevel | str
            Severity
        time : datetime | None
            Log time (default: now)
        item : ItemHandle | None
            Target item; defaults to the running hook, nested step, step or
            scenario, or the launch when nothing is running
        attachment : Attachment | None
            Binary content attached to the entry
        """
        if item is None:
            scenario = self.current_scenario()
            item = scenario.log_target() if scenario is not None else None
        request = SaveLogRequest(
            time=time or now(),
            level=LogLevel(level),
            message=message[:MAX_LOG_MESSAGE_LENGTH],
            attachment=attachment,
        )
        self.launch.log(item, request)

    def attach(
        self,
        data: bytes,
        mime_type: str | None = None,
        name: str | None = None,
        item: ItemHandle | None = None,
        time: datetime | None = None,
    ) -> None:
        """Send binary content as a log entry named after the attachment."""
        effective_type, display_name = resolve_attachment(name, mime_type, data)
        self.send_log(
            display_name,
            LogLevel.INFO,
            time=time,
            item=item,
            attachment=Attachment(display_name, effective_type, data),
        )

    def record_error(self, handle: ItemHandle, error: BaseException | str | None) -> None:
        """Attribute an error to an item; it is appended to the item description on failure."""
        if error is not None:
            self._errors[handle] = error

    def report_error(self, handle: ItemHandle, result: Result, time: datetime | None = None) -> None:
        """Log the stack trace of a failed step or hook on its item."""
        if result.error is None:
            return
        trace = format_stack_trace(result.error, self.parameters.exception_truncate)
        self.send_log(trace, LogLevel.ERROR, time=time, item=handle)

    def handle_test_run_started(self, event: TestRunStarted) -> None:
        self.get_launch(event.timestamp)

    def handle_source_parsed(self, event: TestSourceParsed) -> None:
        for node in event.nodes:
            if not isinstance(node, Feature):
                logger.warning("Unsupported source node %s in %s", type(node).__name__, event.uri)
                continue
            with self._features_lock:
                if node.uri not in self._features:
                    self._features[node.uri] = FeatureContext(node)

    def _start_feature(self, feature: FeatureContext, start_time: datetime) -> None:
        if feature.handle is not None:
            return
        node = feature.feature
        request = StartItemRequest(
            name=build_name(node.keyword, ": ", node.name or relative_path(feature.uri)),
            type=ItemType.STORY,
            start_time=start_time,
            description=feature.uri,
            attributes=get_attributes(feature.tags),
        )
        handle = feature.start_once(lambda: self.start_test_item(request))
        if handle is None:
            return
        if self.parameters.callback_reporting:
            self.item_tree.add_feature(feature.uri, handle)

    def _switch_rule(
        self, feature: FeatureContext, rule: RuleContext | None, time: datetime
    ) -> None:
        current = feature.current_rule
        # a rule stays open for rule-less scenarios until the run finishes
        if current is rule or rule is None:
            return
        if current is not None:
            self.finish_test_item(current.handle, end_time=time)
            current.handle = None
        request = StartItemRequest(
            name=build_name(rule.rule.keyword, ": ", rule.rule.name),
            type=ItemType.SUITE,
            start_time=time,
            attributes=get_attributes(rule.tags),
        )
        rule.handle = self.start_test_item(request, feature.handle)
        feature.current_rule = rule

    def _build_scenario_request(
        self, feature: FeatureContext, test_case: TestCase, start_time: datetime
    ) -> StartItemRequest:
        params = get_parameters(test_case, self._source_loader)
        return StartItemRequest(
            name=build_name(test_case.keyword, ": ", test_case.name),
            type=ItemType.STEP,
            start_time=start_time,
            description=feature.uri,
            code_ref=get_code_ref(test_case, params),
            attributes=get_attributes(test_case.tags, exclude=feature.tags),
            parameters=[Parameter(key, value) for key, value in params or []],
            test_case_id=get_test_case_id(test_case, params),
            has_stats=True,
        )

    def handle_test_case_started(self, event: TestCaseStarted) -> None:
        test_case = event.test_case
        feature = self._get_feature(test_case.uri)
        if feature is None:
            return

        self._start_feature(feature, event.timestamp)
        scenario = feature.start_scenario(test_case)
        self._switch_rule(feature, scenario.rule, event.timestamp)

        request = self._build_scenario_request(feature, test_case, event.timestamp)
        uid = unique_id(test_case.uri, test_case.line)
        if self.retries.record_attempt(uid):
            request.retry = True
            request.retry_of = self._first_attempts.get(uid)

        parent = scenario.rule.handle if scenario.rule is not None else feature.handle
        scenario.handle = self.start_test_item(request, parent)
        self._first_attempts.setdefault(uid, scenario.handle)
        if request.description:
            self._descriptions[scenario.handle] = request.description
        if self.parameters.callback_reporting:
            self.item_tree.add_scenario(test_case.uri, test_case.line, scenario.handle)
        self._set_active(scenario)

    def handle_test_step_started(self, event: TestStepStarted) -> None:
        scenario = self._get_scenario(event.test_case)
        if scenario is None:
            return

        if isinstance(event.test_step, HookTestStep):
            self.hooks.start_hook(
                scenario, event.test_step.hook_type, event.test_step.code_location, event.timestamp
            )
        elif isinstance(event.test_step, PickleStepTestStep):
            self._start_step(scenario, event.test_step, event.timestamp)
        else:
            logger.warning("Unable to start unknown test step type: %s", type(event.test_step).__name__)

    def _start_step(
        self, scenario: ScenarioContext, test_step: PickleStepTestStep, start_time: datetime
    ) -> None:
        self.hooks.flush(scenario, start_time)

        step = test_step.step
        prefix = BACKGROUND_PREFIX if step.line < scenario.scenario_line else None
        multiline = build_multiline_argument(step.argument)
        request = StartItemRequest(
            name=(prefix or "") + build_name(step.keyword.strip(), " ", step.text),
            type=ItemType.STEP,
            start_time=start_time,
            description=multiline or None,
            code_ref=test_step.code_location,
            parameters=get_step_parameters(test_step),
            has_stats=False,
        )

        current = scenario.current_step
        if current is not None and current.kind == StepKind.VIRTUAL:
            request.start_time = current.timestamp
            handle = self.launch.start_virtual_item(scenario.handle, current.handle, request)
            scenario.current_step = Step(handle, StepKind.NORMAL, current.timestamp)
        else:
            if current is not None:
                logger.warning(
                    "Step '%s' started while '%s' is still running",
                    request.name,
                    current.handle.name,
                )
            handle = self.start_test_item(request, scenario.handle)
            scenario.current_step = Step(handle, StepKind.NORMAL, start_time)

        if self.parameters.callback_reporting and scenario.test_case is not None:
            self.item_tree.add_step(scenario.test_case.uri, scenario.line, step.text, handle)
        if multiline.strip():
            self.send_log(multiline, LogLevel.INFO, time=start_time, item=handle)

    def handle_test_step_finished(self, event: TestStepFinished) -> None:
        scenario = self._get_scenario(event.test_case)
        if scenario is None:
            return

        if isinstance(event.test_step, HookTestStep):
            self.hooks.finish_hook(scenario, event.result, event.timestamp)
        elif isinstance(event.test_step, PickleStepTestStep):
            self._finish_step(scenario, event.result, event.timestamp)
        else:
            logger.warning("Unable to finish unknown test step type: %s", type(event.test_step).__name__)

    def _finish_step(self, scenario: ScenarioContext, result: Result, end_time: datetime) -> None:
        current = scenario.current_step
        if current is None:
            logger.error("BUG: Trying to finish unspecified step item.")
            return
        if current.kind == StepKind.VIRTUAL:
            logger.error("BUG: Trying to finish virtual step item.")
            return

        self.step_reporter.finish_nested_step(scenario, end_time)
        self.report_error(current.handle, result, end_time)
        status = evaluate_status(map_item_status(result.status), current.status)
        if status == ItemStatus.FAILED:
            self.record_error(current.handle, result.error)
        self.finish_test_item(current.handle, status, end_time)
        scenario.previous_step = current
        scenario.current_step = None

    def _close_dangling(self, scenario: ScenarioContext, end_time: datetime) -> None:
        if scenario.hook_handle is not None:
            logger.warning("Hook '%s' was not finished before its scenario", scenario.hook_handle.name)
            self.finish_test_item(scenario.hook_handle, ItemStatus.SKIPPED, end_time)
            scenario.hook_handle = None
        self.hooks.flush(scenario, end_time)
        current = scenario.current_step
        if current is not None and current.kind == StepKind.NORMAL:
            logger.warning("Step '%s' was not finished before its scenario", current.handle.name)
            self.step_reporter.finish_nested_step(scenario, end_time)
            self.finish_test_item(current.handle, ItemStatus.SKIPPED, end_time)
        scenario.current_step = None

    def handle_test_case_finished(self, event: TestCaseFinished) -> None:
        test_case = event.test_case
        feature = self._get_feature(test_case.uri)
        if feature is None:
            return
        scenario = feature.get_scenario(test_case.line)
        if scenario is None:
            logger.warning("No running scenario at %s:%d, event dropped", test_case.uri, test_case.line)
            return

        self._close_dangling(scenario, event.timestamp)
        status = map_item_status(event.result.status)
        if status == ItemStatus.FAILED:
            self.record_error(scenario.handle, event.result.error)
        self.finish_test_item(scenario.handle, status, event.timestamp)

        feature.end_time = event.timestamp
        if self.parameters.callback_reporting:
            self.item_tree.remove_scenario(test_case.uri, test_case.line)
        feature.finish_scenario(test_case.line)
        if self.current_scenario() is scenario:
            self._set_active(None)

    def handle_end_of_feature(self, end_time: datetime) -> None:
        """Close every feature and its current rule at its last end time."""
        with self._features_lock:
            features = list(self._features.values())
            self._features.clear()

        for feature in features:
            feature_end = feature.end_time or end_time
            if feature.current_rule is not None and feature.current_rule.handle is not None:
                self.finish_test_item(feature.current_rule.handle, end_time=feature_end)
                feature.current_rule.handle = None
            if feature.handle is not None:
                self.finish_test_item(feature.handle, end_time=feature_end)
            if self.parameters.callback_reporting:
                self.item_tree.remove_feature(feature.uri)

    def handle_test_run_finished(self, event: TestRunFinished) -> None:
        try:
            self.handle_end_of_feature(event.timestamp)
        finally:
            self.launch.finish(FinishLaunchRequest(end_time=event.timestamp))
            self.retries.clear()
            self._first_attempts.clear()

    def handle_embed(self, event: EmbedEvent) -> None:
        self.attach(event.data, event.mime_type, event.name, item=self._log_target(event.test_case), time=event.timestamp)

    def handle_write(self, event: WriteEvent) -> None:
        self.send_log(event.text, LogLevel.INFO, time=event.timestamp, item=self._log_target(event.test_case))

    def _log_target(self, test_case: TestCase | None) -> ItemHandle | None:
        scenario = self._get_scenario(test_case) if test_case is not None else self.current_scenario()
        return scenario.log_target() if scenario is not None else None
