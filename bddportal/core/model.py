"""Per-feature, per-rule and per-scenario reporting state."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime

from bddportal.client.handles import ItemHandle
from bddportal.constants import HookType, ItemStatus, StepKind
from bddportal.core.status import evaluate_status
from bddportal.core.tags import get_feature_tags, get_rule_tags
from bddportal.events.model import (
    Feature,
    Rule,
    Scenario,
    ScenarioDefinition,
    ScenarioOutline,
    TestCase,
)
from bddportal.utils import now

logger = logging.getLogger(__name__)


@dataclass
class Step:
    """Remote item of a scenario step and how it was opened.

    A VIRTUAL step is a placeholder opened ahead of a BEFORE_STEP hook; when
    the runner announces the step, the placeholder handle is reused and
    `timestamp` becomes the step's start time.
    """

    handle: ItemHandle
    kind: StepKind = StepKind.NORMAL
    timestamp: datetime = field(default_factory=now)
    status: ItemStatus | None = None


@dataclass
class HookGroup:
    """Item wrapping consecutive hooks of one kind."""

    handle: ItemHandle
    hook_type: HookType
    status: ItemStatus | None = None

    def accepts(self, hook_type: HookType) -> bool:
        return self.hook_type == hook_type

    def update_status(self, status: ItemStatus | None) -> None:
        self.status = evaluate_status(self.status, status)


@dataclass
class RuleContext:
    rule: Rule
    tags: list[str] = field(default_factory=list)
    handle: ItemHandle | None = None

    @property
    def line(self) -> int:
        return self.rule.location.line


@dataclass
class ScenarioContext:
    """State of one running test case.

    Attributes
    ----------
    line : int
        Test-case line (scenario line or example row)
    rule : RuleContext | None
        Rule the scenario belongs to
    node : ScenarioDefinition | None
        Scenario or outline the test case was generated from
    current_step : Step | None
        Step in progress, possibly a VIRTUAL placeholder
    previous_step : Step | None
        Most recently finished step, parent of AFTER_STEP hooks
    hook_group : HookGroup | None
        Open group of hooks
    hook_handle : ItemHandle | None
        Hook in progress
    nested_step : ItemHandle | None
        Manually reported step nested under the current step
    """

    line: int
    rule: RuleContext | None = None
    node: ScenarioDefinition | None = None
    test_case: TestCase | None = None
    handle: ItemHandle | None = None
    current_step: Step | None = None
    previous_step: Step | None = None
    hook_group: HookGroup | None = None
    hook_handle: ItemHandle | None = None
    nested_step: ItemHandle | None = None
    nested_step_status: ItemStatus | None = None

    @property
    def scenario_line(self) -> int:
        """Line of the scenario keyword, used to recognize background steps."""
        if self.node is not None:
            return self.node.location.line
        return self.line

    def log_target(self) -> ItemHandle | None:
        """Innermost open item that logs should be attached to."""
        if self.hook_handle is not None:
            return self.hook_handle
        if self.nested_step is not None:
            return self.nested_step
        if self.current_step is not None and self.current_step.kind == StepKind.NORMAL:
            return self.current_step.handle
        return self.handle


class FeatureContext:
    """Reporting state of one feature file.

    Parameters
    ----------
    feature : Feature
        Parsed feature announced by the runner
    """

    def __init__(self, feature: Feature) -> None:
        self.uri = feature.uri
        self.feature = feature
        self.tags = get_feature_tags(feature)
        self.current_rule: RuleContext | None = None
        self.end_time: datetime | None = None
        self._handle: ItemHandle | None = None
        self._lock = threading.Lock()
        self._rules: dict[int, RuleContext] = {}
        self._nodes: dict[int, tuple[RuleContext | None, ScenarioDefinition]] = {}
        self._scenarios: dict[int, ScenarioContext] = {}
        self._index_children()

    def _index_children(self) -> None:
        for child in self.feature.children:
            if isinstance(child, Rule):
                rule_context = RuleContext(child, get_rule_tags(self.feature, child))
                self._rules[child.location.line] = rule_context
                for rule_child in child.children:
                    self._index_node(rule_context, rule_child)
            else:
                self._index_node(None, child)

    def _index_node(self, rule: RuleContext | None, node: object) -> None:
        if isinstance(node, ScenarioOutline):
            self._nodes[node.location.line] = (rule, node)
            for line in node.example_lines:
                self._nodes[line] = (rule, node)
        elif isinstance(node, Scenario):
            self._nodes[node.location.line] = (rule, node)

    @property
    def handle(self) -> ItemHandle | None:
        return self._handle

    def start_once(self, start: Callable[[], ItemHandle]) -> ItemHandle | None:
        """Assign the remote feature item unless one is already assigned.

        Parameters
        ----------
        start : Callable[[], ItemHandle]
            Opens the feature item; called at most once per feature

        Returns
        -------
        ItemHandle | None
            The new handle, or None when the feature was already started
        """
        with self._lock:
            if self._handle is not None:
                return None
            self._handle = start()
            return self._handle

    def lookup(self, line: int) -> tuple[RuleContext | None, ScenarioDefinition | None]:
        """Find the rule and scenario node a test-case line belongs to."""
        rule, node = self._nodes.get(line, (None, None))
        return rule, node

    def start_scenario(self, test_case: TestCase) -> ScenarioContext:
        rule, node = self.lookup(test_case.line)
        if node is None:
            logger.warning(
                "No scenario found at %s:%d, reporting it without rule", self.uri, test_case.line
            )
        context = ScenarioContext(line=test_case.line, rule=rule, node=node, test_case=test_case)
        with self._lock:
            self._scenarios[test_case.line] = context
        return context

    def get_scenario(self, line: int) -> ScenarioContext | None:
        with self._lock:
            return self._scenarios.get(line)

    def finish_scenario(self, line: int) -> ScenarioContext | None:
        with self._lock:
            return self._scenarios.pop(line, None)
