"""Conversion of behave model objects into runner events."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

from bddportal.constants import RunnerStatus
from bddportal.events.model import (
    Background,
    DataTableArgument,
    DocStringArgument,
    Feature,
    Location,
    PickleStep,
    PickleStepTestStep,
    Result,
    Rule,
    Scenario,
    ScenarioOutline,
    StepArgument,
    TestCase,
)

logger = logging.getLogger(__name__)

BEHAVE_STATUSES = {
    "passed": RunnerStatus.PASSED,
    "failed": RunnerStatus.FAILED,
    "error": RunnerStatus.FAILED,
    "hook_error": RunnerStatus.FAILED,
    "skipped": RunnerStatus.SKIPPED,
    "untested": RunnerStatus.SKIPPED,
    "pending": RunnerStatus.PENDING,
    "pending_warn": RunnerStatus.PENDING,
    "undefined": RunnerStatus.UNDEFINED,
}


def to_runner_status(status: Any) -> RunnerStatus | str:
    """Map a behave `Status` (or its name) to a runner status.

    Unknown statuses are returned by name so the status mapper can report them.
    """
    name = getattr(status, "name", status)
    return BEHAVE_STATUSES.get(str(name).lower(), str(name))


def tag_names(tags: Any) -> list[str]:
    return [tag if str(tag).startswith("@") else f"@{tag}" for tag in tags or ()]


def read_feature_source(filename: str) -> str:
    try:
        return Path(filename).read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        logger.warning("Unable to read feature source %s: %s", filename, e)
        return ""


def _outline_example_lines(outline: Any) -> list[int]:
    lines = []
    for examples in getattr(outline, "examples", None) or ():
        table = getattr(examples, "table", None)
        for row in getattr(table, "rows", None) or ():
            lines.append(row.line)
    return lines


def _convert_scenario(node: Any) -> Scenario | ScenarioOutline:
    location = Location(node.line)
    if hasattr(node, "examples"):
        return ScenarioOutline(
            keyword=node.keyword,
            name=node.name,
            location=location,
            tags=tag_names(node.tags),
            example_lines=_outline_example_lines(node),
        )
    return Scenario(keyword=node.keyword, name=node.name, location=location, tags=tag_names(node.tags))


def _convert_background(node: Any) -> Background:
    return Background(keyword=node.keyword, name=node.name or "", location=Location(node.line))


def convert_feature(feature: Any, source: str | None = None) -> Feature:
    """Build a `Feature` node from a behave feature.

    Parameters
    ----------
    feature : behave.model.Feature
        Parsed behave feature
    source : str | None
        Feature text; read from `feature.filename` when None

    Returns
    -------
    Feature
        Source node with backgrounds, rules, scenarios and outlines
    """
    children: list[Any] = []
    if getattr(feature, "background", None) is not None:
        children.append(_convert_background(feature.background))

    for node in getattr(feature, "scenarios", None) or ():
        children.append(_convert_scenario(node))

    for rule in getattr(feature, "rules", None) or ():
        rule_children: list[Any] = []
        if getattr(rule, "background", None) is not None:
            rule_children.append(_convert_background(rule.background))
        for node in getattr(rule, "scenarios", None) or ():
            rule_children.append(_convert_scenario(node))
        children.append(
            Rule(
                keyword=rule.keyword,
                name=rule.name,
                location=Location(rule.line),
                children=rule_children,
            )
        )

    children.sort(key=lambda child: child.location.line)
    return Feature(
        uri=str(feature.filename),
        keyword=feature.keyword,
        name=feature.name,
        location=Location(feature.line),
        source=read_feature_source(feature.filename) if source is None else source,
        children=children,
    )


def example_row_line(scenario: Any) -> int:
    """Line of a behave scenario, or of its example row for outline instances."""
    row = getattr(scenario, "_row", None)
    if row is not None and getattr(row, "line", None):
        return row.line
    return scenario.line


def convert_test_case(scenario: Any) -> TestCase:
    tags: list[str] = []
    feature = getattr(scenario, "feature", None)
    rule = getattr(scenario, "rule", None)
    for source in (
        getattr(feature, "tags", None),
        getattr(rule, "tags", None),
        getattr(scenario, "tags", None),
        getattr(scenario, "effective_tags", None),
    ):
        for tag in tag_names(sorted(source) if isinstance(source, (set, frozenset)) else source):
            if tag not in tags:
                tags.append(tag)

    return TestCase(
        uri=str(scenario.filename),
        line=example_row_line(scenario),
        keyword=scenario.keyword,
        name=scenario.name,
        tags=tags,
    )


def convert_step(step: Any, match: Any = None) -> PickleStepTestStep:
    """Build a pickle test step from a behave step and its match."""
    argument: Any = None
    if getattr(step, "table", None) is not None:
        table = step.table
        rows = [tuple(str(cell) for cell in table.headings)]
        rows.extend(tuple(str(cell) for cell in row.cells) for row in table.rows)
        argument = DataTableArgument(tuple(rows))
    elif getattr(step, "text", None) is not None:
        argument = DocStringArgument(str(step.text))

    definition_arguments = []
    code_location = None
    if match is not None:
        for match_argument in getattr(match, "arguments", None) or ():
            name = getattr(match_argument, "name", None) or type(match_argument.value).__name__
            original = getattr(match_argument, "original", None)
            value = original if original is not None else match_argument.value
            definition_arguments.append(StepArgument(name, None if value is None else str(value)))
        location = getattr(match, "location", None)
        code_location = str(location) if location is not None else None

    return PickleStepTestStep(
        step=PickleStep(keyword=step.keyword, text=step.name, line=step.line, argument=argument),
        definition_arguments=definition_arguments,
        code_location=code_location,
    )


def step_result(step: Any) -> Result:
    """Result of a finished behave step."""
    error = getattr(step, "exception", None) or getattr(step, "error_message", None)
    return Result(
        status=to_runner_status(step.status),
        error=error,
        duration=getattr(step, "duration", None),
    )


def scenario_result(scenario: Any) -> Result:
    """Result of a finished behave scenario, carrying its first step error."""
    error = None
    for step in getattr(scenario, "all_steps", None) or getattr(scenario, "steps", ()):
        step_error = getattr(step, "exception", None) or getattr(step, "error_message", None)
        if step_error:
            error = step_error
            break
    if error is None and getattr(scenario, "hook_failed", False):
        error = getattr(scenario, "error_message", None) or "Hook failed"
    return Result(status=to_runner_status(scenario.status), error=error)
