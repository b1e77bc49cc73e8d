"""Reporting service client: request messages, handles and backends."""

from __future__ import annotations

from bddportal.client.handles import ItemHandle, VirtualItemNotStartedError
from bddportal.client.http import HttpReportingService
from bddportal.client.launch import DependencyFailedError, Launch
from bddportal.client.memory import InMemoryReportingService
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
from bddportal.client.service import ReportingService, ReportingServiceError

__all__ = [
    "Attachment",
    "DependencyFailedError",
    "FinishItemRequest",
    "FinishLaunchRequest",
    "HttpReportingService",
    "InMemoryReportingService",
    "ItemAttribute",
    "ItemHandle",
    "Launch",
    "Parameter",
    "ReportingService",
    "ReportingServiceError",
    "SaveLogRequest",
    "StartItemRequest",
    "StartLaunchRequest",
    "VirtualItemNotStartedError",
]
