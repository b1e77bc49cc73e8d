"""Core bddportal functionality: the event translator and its state."""

from __future__ import annotations

from bddportal.core.config import ConfigLoader, ReporterParameters, load_parameters
from bddportal.core.reporter import ScenarioReporter, create_service
from bddportal.core.retries import RetryRegistry
from bddportal.core.status import evaluate_status, map_item_status
from bddportal.core.step_reporter import StepReporter

__all__ = [
    "ConfigLoader",
    "ReporterParameters",
    "RetryRegistry",
    "ScenarioReporter",
    "StepReporter",
    "create_service",
    "evaluate_status",
    "load_parameters",
    "map_item_status",
]
