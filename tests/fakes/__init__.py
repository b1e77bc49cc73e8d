"""Test doubles and scripted event sources."""

from fakes.behave_model import make_feature, make_match, make_scenario, make_step
from fakes.events import EventScript
from fakes.failing_service import FailingReportingService

__all__ = [
    "EventScript",
    "FailingReportingService",
    "make_feature",
    "make_match",
    "make_scenario",
    "make_step",
]
