"""JSON-lines codec for recording runner events and replaying them later."""

from __future__ import annotations

import base64
import json
import logging
import threading
from collections.abc import Iterator
from datetime import datetime
from pathlib import Path
from typing import Any, TextIO

from bddportal.constants import HookType, RunnerStatus
from bddportal.events.model import (
    EVENT_TYPES,
    Background,
    DataTableArgument,
    DocStringArgument,
    EmbedEvent,
    Feature,
    HookTestStep,
    Location,
    PickleStep,
    PickleStepTestStep,
    Result,
    Rule,
    Scenario,
    ScenarioOutline,
    StepArgument,
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
from bddportal.utils import format_stack_trace

logger = logging.getLogger(__name__)

_EVENTS_BY_NAME = {event_type.__name__: event_type for event_type in EVENT_TYPES}


class EventDecodeError(ValueError):
    """Raised when a recorded event cannot be decoded."""


def _encode_node(node: Any) -> dict[str, Any]:
    if isinstance(node, Feature):
        return {
            "kind": "Feature",
            "uri": node.uri,
            "keyword": node.keyword,
            "name": node.name,
            "line": node.location.line,
            "source": node.source,
            "children": [_encode_node(child) for child in node.children],
        }
    if isinstance(node, Rule):
        return {
            "kind": "Rule",
            "keyword": node.keyword,
            "name": node.name,
            "line": node.location.line,
            "children": [_encode_node(child) for child in node.children],
        }
    if isinstance(node, ScenarioOutline):
        return {
            "kind": "ScenarioOutline",
            "keyword": node.keyword,
            "name": node.name,
            "line": node.location.line,
            "tags": list(node.tags),
            "example_lines": list(node.example_lines),
        }
    if isinstance(node, Scenario):
        return {
            "kind": "Scenario",
            "keyword": node.keyword,
            "name": node.name,
            "line": node.location.line,
            "tags": list(node.tags),
        }
    if isinstance(node, Background):
        return {
            "kind": "Background",
            "keyword": node.keyword,
            "name": node.name,
            "line": node.location.line,
        }
    raise TypeError(f"Unsupported source node: {type(node).__name__}")


def _decode_node(data: dict[str, Any]) -> Any:
    kind = data.get("kind")
    location = Location(int(data.get("line", 0)))
    if kind == "Feature":
        return Feature(
            uri=data["uri"],
            keyword=data.get("keyword"),
            name=data.get("name", ""),
            location=location,
            source=data.get("source", ""),
            children=[_decode_node(child) for child in data.get("children", [])],
        )
    if kind == "Rule":
        return Rule(
            keyword=data["keyword"],
            name=data.get("name", ""),
            location=location,
            children=[_decode_node(child) for child in data.get("children", [])],
        )
    if kind == "ScenarioOutline":
        return ScenarioOutline(
            keyword=data["keyword"],
            name=data.get("name", ""),
            location=location,
            tags=list(data.get("tags", [])),
            example_lines=[int(line) for line in data.get("example_lines", [])],
        )
    if kind == "Scenario":
        return Scenario(
            keyword=data["keyword"],
            name=data.get("name", ""),
            location=location,
            tags=list(data.get("tags", [])),
        )
    if kind == "Background":
        return Background(keyword=data["keyword"], name=data.get("name", ""), location=location)
    raise EventDecodeError(f"Unknown source node kind: {kind!r}")


def _encode_test_case(test_case: TestCase | None) -> dict[str, Any] | None:
    if test_case is None:
        return None
    return {
        "uri": test_case.uri,
        "line": test_case.line,
        "keyword": test_case.keyword,
        "name": test_case.name,
        "tags": list(test_case.tags),
    }


def _decode_test_case(data: dict[str, Any] | None) -> TestCase | None:
    if data is None:
        return None
    return TestCase(
        uri=data["uri"],
        line=int(data["line"]),
        keyword=data.get("keyword", ""),
        name=data.get("name", ""),
        tags=list(data.get("tags", [])),
    )


def _encode_test_step(test_step: Any) -> dict[str, Any]:
    if isinstance(test_step, HookTestStep):
        return {
            "kind": "hook",
            "hook_type": test_step.hook_type.value,
            "code_location": test_step.code_location,
        }

    step = test_step.step
    argument: Any = None
    if isinstance(step.argument, DocStringArgument):
        argument = {
            "kind": "doc_string",
            "content": step.argument.content,
            "media_type": step.argument.media_type,
        }
    elif isinstance(step.argument, DataTableArgument):
        argument = {"kind": "data_table", "rows": [list(row) for row in step.argument.rows]}
    elif step.argument is not None:
        argument = {"kind": "other", "value": str(step.argument)}

    return {
        "kind": "pickle",
        "keyword": step.keyword,
        "text": step.text,
        "line": step.line,
        "argument": argument,
        "definition_arguments": [
            {"parameter_type_name": arg.parameter_type_name, "value": arg.value}
            for arg in test_step.definition_arguments
        ],
        "code_location": test_step.code_location,
    }


def _decode_test_step(data: dict[str, Any]) -> Any:
    if data.get("kind") == "hook":
        return HookTestStep(HookType(data["hook_type"]), data.get("code_location", ""))

    argument_data = data.get("argument")
    argument: Any = None
    if argument_data:
        if argument_data["kind"] == "doc_string":
            argument = DocStringArgument(
                argument_data.get("content", ""), argument_data.get("media_type")
            )
        elif argument_data["kind"] == "data_table":
            argument = DataTableArgument(
                tuple(tuple(str(cell) for cell in row) for row in argument_data["rows"])
            )
        else:
            argument = argument_data.get("value")

    return PickleStepTestStep(
        step=PickleStep(
            keyword=data.get("keyword", ""),
            text=data.get("text", ""),
            line=int(data.get("line", 0)),
            argument=argument,
        ),
        definition_arguments=[
            StepArgument(arg["parameter_type_name"], arg.get("value"))
            for arg in data.get("definition_arguments", [])
        ],
        code_location=data.get("code_location"),
    )


def _encode_result(result: Result) -> dict[str, Any]:
    status = result.status.value if isinstance(result.status, RunnerStatus) else str(result.status)
    error = None
    if result.error is not None:
        error = format_stack_trace(result.error, truncate=False)
    return {"status": status, "error": error, "duration": result.duration}


def _decode_result(data: dict[str, Any]) -> Result:
    status = data.get("status", "")
    try:
        status = RunnerStatus(str(status).upper())
    except ValueError:
        logger.warning("Unknown status in recorded result: %s", status)
    return Result(status=status, error=data.get("error"), duration=data.get("duration"))


def event_to_dict(event: Any) -> dict[str, Any]:
    """Encode a runner event as a JSON-compatible dictionary.

    Parameters
    ----------
    event : Any
        One of the events in `bddportal.events.model`

    Returns
    -------
    dict[str, Any]
        Encoded event with a ``type`` discriminator

    Raises
    ------
    TypeError
        If the event type is not supported
    """
    data: dict[str, Any] = {
        "type": type(event).__name__,
        "timestamp": event.timestamp.isoformat(),
    }

    if isinstance(event, (TestRunStarted, TestRunFinished)):
        return data
    if isinstance(event, TestSourceParsed):
        data["uri"] = event.uri
        data["nodes"] = [_encode_node(node) for node in event.nodes]
        return data

    data["test_case"] = _encode_test_case(event.test_case)
    if isinstance(event, (TestStepStarted, TestStepFinished)):
        data["test_step"] = _encode_test_step(event.test_step)
    if isinstance(event, (TestStepFinished, TestCaseFinished)):
        data["result"] = _encode_result(event.result)
    if isinstance(event, EmbedEvent):
        data["data"] = base64.b64encode(event.data).decode("ascii")
        data["mime_type"] = event.mime_type
        data["name"] = event.name
    if isinstance(event, WriteEvent):
        data["text"] = event.text
    if type(event).__name__ not in _EVENTS_BY_NAME:
        raise TypeError(f"Unsupported event: {type(event).__name__}")
    return data


def event_from_dict(data: dict[str, Any]) -> Any:
    """Decode a dictionary produced by `event_to_dict`.

    Raises
    ------
    EventDecodeError
        If the type discriminator or a required field is missing
    """
    event_type = _EVENTS_BY_NAME.get(data.get("type", ""))
    if event_type is None:
        raise EventDecodeError(f"Unknown event type: {data.get('type')!r}")

    try:
        timestamp = datetime.fromisoformat(data["timestamp"])
        if event_type in (TestRunStarted, TestRunFinished):
            return event_type(timestamp=timestamp)
        if event_type is TestSourceParsed:
            return TestSourceParsed(
                uri=data["uri"],
                nodes=[_decode_node(node) for node in data.get("nodes", [])],
                timestamp=timestamp,
            )

        test_case = _decode_test_case(data.get("test_case"))
        if event_type is TestCaseStarted:
            return TestCaseStarted(test_case, timestamp=timestamp)
        if event_type is TestStepStarted:
            return TestStepStarted(
                test_case, _decode_test_step(data["test_step"]), timestamp=timestamp
            )
        if event_type is TestStepFinished:
            return TestStepFinished(
                test_case,
                _decode_test_step(data["test_step"]),
                _decode_result(data["result"]),
                timestamp=timestamp,
            )
        if event_type is TestCaseFinished:
            return TestCaseFinished(test_case, _decode_result(data["result"]), timestamp=timestamp)
        if event_type is EmbedEvent:
            return EmbedEvent(
                test_case,
                base64.b64decode(data.get("data", "")),
                data.get("mime_type"),
                data.get("name"),
                timestamp=timestamp,
            )
        return WriteEvent(test_case, data.get("text", ""), timestamp=timestamp)
    except EventDecodeError:
        raise
    except (KeyError, TypeError, ValueError) as e:
        raise EventDecodeError(f"Malformed {data.get('type')} event: {e}") from e


def read_events(path: str | Path) -> Iterator[Any]:
    """Yield the events recorded in a JSON-lines file.

    Parameters
    ----------
    path : str | Path
        Recording produced by `JsonLinesRecorder`

    Yields
    ------
    Any
        Decoded events in recording order

    Raises
    ------
    EventDecodeError
        If a line is not valid JSON or not a known event
    """
    with open(path, encoding="utf-8") as stream:
        for number, line in enumerate(stream, start=1):
            if not line.strip():
                continue
            try:
                data = json.loads(line)
            except json.JSONDecodeError as e:
                raise EventDecodeError(f"{path}:{number}: invalid JSON: {e}") from e
            yield event_from_dict(data)


class JsonLinesRecorder:
    """Append every published event to a JSON-lines file.

    Parameters
    ----------
    path : str | Path
        Output file, truncated when the recorder opens it
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self._lock = threading.RLock()
        self._stream: TextIO | None = None

    def set_event_publisher(self, publisher: Any) -> None:
        for event_type in EVENT_TYPES:
            publisher.register_handler_for(event_type, self.record)

    def record(self, event: Any) -> None:
        line = json.dumps(event_to_dict(event))
        with self._lock:
            if self._stream is None:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                self._stream = open(self.path, "w", encoding="utf-8")
            self._stream.write(line + "\n")
            self._stream.flush()
            if isinstance(event, TestRunFinished):
                self.close()

    def close(self) -> None:
        with self._lock:
            if self._stream is not None:
                self._stream.close()
                self._stream = None
