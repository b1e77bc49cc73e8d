"""Typed model of the runner events the reporter consumes.

The runner announces parsed sources, test cases and test steps. Source nodes
(`Feature`, `Rule`, `Scenario`, ...) mirror the structure of a feature file;
`TestCase` and the test-step variants describe what is being executed.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Union

from bddportal.constants import HookType, RunnerStatus
from bddportal.utils import now


@dataclass(frozen=True)
class Location:
    """Position of a node in its feature file (1-based line)."""

    line: int
    column: int = 0


@dataclass
class Background:
    """Steps shared by every scenario of a feature or rule."""

    keyword: str
    name: str
    location: Location


@dataclass
class Scenario:
    """A plain scenario node."""

    keyword: str
    name: str
    location: Location
    tags: list[str] = field(default_factory=list)


@dataclass
class ScenarioOutline:
    """A scenario template expanded once per example row.

    Attributes
    ----------
    example_lines : list[int]
        Source lines of the example rows (headers excluded); every test case
        generated from the outline starts on one of these lines
    """

    keyword: str
    name: str
    location: Location
    tags: list[str] = field(default_factory=list)
    example_lines: list[int] = field(default_factory=list)


@dataclass
class Rule:
    """Optional grouping of scenarios inside a feature."""

    keyword: str
    name: str
    location: Location
    children: list[Union[Background, Scenario, ScenarioOutline]] = field(default_factory=list)


FeatureChild = Union[Background, Rule, Scenario, ScenarioOutline]
ScenarioDefinition = Union[Scenario, ScenarioOutline]


@dataclass
class Feature:
    """A parsed feature file.

    Attributes
    ----------
    uri : str
        Identifier of the feature file (path or ``file:`` URI)
    keyword : str | None
        Localized feature keyword, None when the source has no feature header
    name : str
        Feature title
    location : Location
        Position of the feature keyword
    source : str
        Full text of the feature file
    children : list[FeatureChild]
        Backgrounds, rules and scenarios in source order
    """

    uri: str
    keyword: str | None
    name: str
    location: Location
    source: str = ""
    children: list[FeatureChild] = field(default_factory=list)


@dataclass(frozen=True)
class DocStringArgument:
    """Multi-line text attached to a step."""

    content: str
    media_type: str | None = None


@dataclass(frozen=True)
class DataTableArgument:
    """Table attached to a step, header row first."""

    rows: tuple[tuple[str, ...], ...]


StepMultilineArgument = Union[DocStringArgument, DataTableArgument]


@dataclass(frozen=True)
class StepArgument:
    """Value captured from step text by a step definition."""

    parameter_type_name: str
    value: str | None


@dataclass
class PickleStep:
    """A step of a test case as written in the feature file."""

    keyword: str
    text: str
    line: int
    argument: StepMultilineArgument | str | None = None


@dataclass
class PickleStepTestStep:
    """Execution of a feature-file step."""

    step: PickleStep
    definition_arguments: list[StepArgument] = field(default_factory=list)
    code_location: str | None = None


@dataclass
class HookTestStep:
    """Execution of a scenario or step hook."""

    hook_type: HookType
    code_location: str


TestStep = Union[PickleStepTestStep, HookTestStep]


@dataclass
class TestCase:
    """A scenario (or example row) scheduled for execution.

    Attributes
    ----------
    uri : str
        Feature URI the test case comes from
    line : int
        Scenario line, or example row line for outline instances
    keyword : str
        Scenario keyword
    name : str
        Scenario name
    tags : list[str]
        Tags in effect, inherited feature and rule tags included
    """

    __test__ = False

    uri: str
    line: int
    keyword: str
    name: str
    tags: list[str] = field(default_factory=list)


@dataclass
class Result:
    """Outcome of a test step or test case."""

    status: RunnerStatus | str
    error: BaseException | str | None = None
    duration: float | None = None


@dataclass
class TestRunStarted:
    __test__ = False

    timestamp: datetime = field(default_factory=now)


@dataclass
class TestSourceParsed:
    __test__ = False

    uri: str
    nodes: list[object]
    timestamp: datetime = field(default_factory=now)


@dataclass
class TestCaseStarted:
    __test__ = False

    test_case: TestCase
    timestamp: datetime = field(default_factory=now)


@dataclass
class TestStepStarted:
    __test__ = False

    test_case: TestCase
    test_step: TestStep
    timestamp: datetime = field(default_factory=now)


@dataclass
class TestStepFinished:
    __test__ = False

    test_case: TestCase
    test_step: TestStep
    result: Result
    timestamp: datetime = field(default_factory=now)


@dataclass
class TestCaseFinished:
    __test__ = False

    test_case: TestCase
    result: Result
    timestamp: datetime = field(default_factory=now)


@dataclass
class TestRunFinished:
    __test__ = False

    timestamp: datetime = field(default_factory=now)


@dataclass
class EmbedEvent:
    """Binary attachment produced while a test case runs."""

    test_case: TestCase | None
    data: bytes
    mime_type: str | None
    name: str | None = None
    timestamp: datetime = field(default_factory=now)


@dataclass
class WriteEvent:
    """Text written by step code while a test case runs."""

    test_case: TestCase | None
    text: str
    timestamp: datetime = field(default_factory=now)


EVENT_TYPES = (
    TestRunStarted,
    TestSourceParsed,
    TestCaseStarted,
    TestStepStarted,
    TestStepFinished,
    TestCaseFinished,
    TestRunFinished,
    EmbedEvent,
    WriteEvent,
)
