"""Fixtures wiring a reporter to an in-memory reporting service."""

from collections.abc import Callable
from pathlib import Path

import pytest

from bddportal.client.memory import InMemoryReportingService
from bddportal.core.config import ReporterParameters
from bddportal.core.reporter import ScenarioReporter
from bddportal.events.publisher import EventPublisher
from fakes.events import EventScript, load_source, record_run


@pytest.fixture
def service() -> InMemoryReportingService:
    return InMemoryReportingService()


@pytest.fixture
def make_reporter(
    service: InMemoryReportingService,
) -> Callable[..., tuple[ScenarioReporter, EventScript]]:
    """Build a reporter subscribed to a fresh publisher.

    Returns
    -------
    Callable[..., tuple[ScenarioReporter, EventScript]]
        Factory accepting `ReporterParameters` fields as keyword arguments
    """

    def _make(**options) -> tuple[ScenarioReporter, EventScript]:
        options.setdefault("max_workers", 1)
        options.setdefault("shutdown_timeout", 10)
        parameters = ReporterParameters(**options)
        reporter = ScenarioReporter(parameters, lambda _: service, source_loader=load_source)
        publisher = EventPublisher()
        reporter.set_event_publisher(publisher)
        return reporter, EventScript(publisher)

    return _make


@pytest.fixture
def recording(tmp_path: Path) -> Path:
    """Record a short run with a data table, a failing hook and attachments.

    Parameters
    ----------
    tmp_path : Path
        Pytest temporary directory path

    Returns
    -------
    Path
        JSON-lines file holding the recorded events
    """
    return record_run(tmp_path / "run" / "events.jsonl")
