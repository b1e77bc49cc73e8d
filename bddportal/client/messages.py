"""Request messages sent to the reporting service."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any

from bddportal.constants import ItemStatus, ItemType, LaunchMode, LogLevel
from bddportal.utils import to_epoch_millis

if TYPE_CHECKING:
    from bddportal.client.handles import ItemHandle


@dataclass(frozen=True)
class ItemAttribute:
    """Key/value label of a launch or item; the key is optional."""

    key: str | None
    value: str
    system: bool = False

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"value": self.value}
        if self.key is not None:
            payload["key"] = self.key
        if self.system:
            payload["system"] = True
        return payload


@dataclass(frozen=True)
class Parameter:
    key: str
    value: str | None

    def to_payload(self) -> dict[str, Any]:
        return {"key": self.key, "value": self.value}


@dataclass(frozen=True)
class Attachment:
    """Binary content attached to a log entry."""

    name: str
    mime_type: str
    data: bytes


@dataclass
class StartLaunchRequest:
    name: str
    start_time: datetime
    mode: LaunchMode = LaunchMode.DEFAULT
    description: str | None = None
    attributes: list[ItemAttribute] = field(default_factory=list)
    rerun: bool = False
    rerun_of: str | None = None

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "name": self.name,
            "startTime": to_epoch_millis(self.start_time),
            "mode": self.mode.value,
            "attributes": [attribute.to_payload() for attribute in self.attributes],
        }
        if self.description:
            payload["description"] = self.description
        if self.rerun:
            payload["rerun"] = True
            if self.rerun_of:
                payload["rerunOf"] = self.rerun_of
        return payload


@dataclass
class FinishLaunchRequest:
    end_time: datetime

    def to_payload(self) -> dict[str, Any]:
        return {"endTime": to_epoch_millis(self.end_time)}


@dataclass
class StartItemRequest:
    """Request opening a test item.

    Attributes
    ----------
    retry_of : ItemHandle | None
        Handle of the first attempt of a retried item; resolved to its remote
        ID before the request is sent
    """

    name: str
    type: ItemType
    start_time: datetime
    description: str | None = None
    code_ref: str | None = None
    attributes: list[ItemAttribute] = field(default_factory=list)
    parameters: list[Parameter] = field(default_factory=list)
    test_case_id: str | None = None
    has_stats: bool = True
    retry: bool | None = None
    retry_of: ItemHandle | None = None

    def to_payload(self, launch_id: str, retry_of_id: str | None = None) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "name": self.name,
            "type": self.type.value,
            "startTime": to_epoch_millis(self.start_time),
            "launchUuid": launch_id,
            "hasStats": self.has_stats,
        }
        if self.description is not None:
            payload["description"] = self.description
        if self.code_ref is not None:
            payload["codeRef"] = self.code_ref
        if self.attributes:
            payload["attributes"] = [attribute.to_payload() for attribute in self.attributes]
        if self.parameters:
            payload["parameters"] = [parameter.to_payload() for parameter in self.parameters]
        if self.test_case_id is not None:
            payload["testCaseId"] = self.test_case_id
        if self.retry is not None:
            payload["retry"] = self.retry
        if retry_of_id is not None:
            payload["retryOf"] = retry_of_id
        return payload


@dataclass
class FinishItemRequest:
    end_time: datetime
    status: ItemStatus | None = None
    description: str | None = None

    def to_payload(self, launch_id: str) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "endTime": to_epoch_millis(self.end_time),
            "launchUuid": launch_id,
        }
        if self.status is not None:
            payload["status"] = self.status.value
        if self.description is not None:
            payload["description"] = self.description
        return payload


@dataclass
class SaveLogRequest:
    time: datetime
    level: LogLevel
    message: str
    attachment: Attachment | None = None

    def to_payload(self, launch_id: str, item_id: str | None = None) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "launchUuid": launch_id,
            "time": to_epoch_millis(self.time),
            "level": self.level.value,
            "message": self.message,
        }
        if item_id is not None:
            payload["itemUuid"] = item_id
        if self.attachment is not None:
            payload["file"] = {"name": self.attachment.name}
        return payload
