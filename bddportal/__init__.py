"""bddportal - report behavior-driven test runs to a reporting service."""

from __future__ import annotations

__version__ = "0.1.0"

from bddportal.core.reporter import ScenarioReporter  # noqa: E402


def get_current() -> ScenarioReporter | None:
    """Return the reporter of the running test, if any."""
    return ScenarioReporter.get_current()


__all__ = ["ScenarioReporter", "__version__", "get_current"]
