"""Global constants for bddportal.

This module contains the enumerations and fixed strings shared by the event
translator, the reporting client and the runner integration.
"""

from enum import Enum


class ItemStatus(str, Enum):
    """Terminal status of a reported test item."""

    PASSED = "PASSED"
    FAILED = "FAILED"
    SKIPPED = "SKIPPED"


class ItemType(str, Enum):
    """Kind of a reported test item."""

    STORY = "STORY"
    SUITE = "SUITE"
    STEP = "STEP"


class LogLevel(str, Enum):
    """Severity of a log entry sent to the reporting service."""

    TRACE = "TRACE"
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARN = "WARN"
    ERROR = "ERROR"
    FATAL = "FATAL"


class LaunchMode(str, Enum):
    """Launch visibility mode on the reporting service."""

    DEFAULT = "DEFAULT"
    DEBUG = "DEBUG"


class HookType(str, Enum):
    """Kind of a before/after procedure surrounding a scenario or a step."""

    BEFORE = "BEFORE"
    AFTER = "AFTER"
    BEFORE_STEP = "BEFORE_STEP"
    AFTER_STEP = "AFTER_STEP"


class RunnerStatus(str, Enum):
    """Outcome of a test step or test case as announced by the runner."""

    PASSED = "PASSED"
    FAILED = "FAILED"
    SKIPPED = "SKIPPED"
    PENDING = "PENDING"
    AMBIGUOUS = "AMBIGUOUS"
    UNDEFINED = "UNDEFINED"
    UNUSED = "UNUSED"


class StepKind(str, Enum):
    """Whether a scenario step was announced by the runner or opened ahead of it."""

    NORMAL = "NORMAL"
    VIRTUAL = "VIRTUAL"


HOOK_GROUP_NAMES = {
    HookType.BEFORE: "Before hooks",
    HookType.AFTER: "After hooks",
    HookType.BEFORE_STEP: "Before step",
    HookType.AFTER_STEP: "After step",
}
"""Display names of the items that wrap consecutive hooks of one kind."""

DEFAULT_HOOK_GROUP_NAME = "Hook"

BACKGROUND_PREFIX = "BACKGROUND: "
"""Name prefix of steps that come from a feature or rule background."""

TEST_CASE_ID_PREFIX = "@tc_id:"
"""Tag prefix that overrides the generated test-case ID of a scenario."""

ERROR_FORMAT = "Error:\n%s"
"""Template of the error block appended to the description of failed items."""

DESCRIPTION_SEPARATOR = "\n---\n"
"""Separator between a start description and the error block."""

DOC_STRING_PARAM = "DocString"
DATA_TABLE_PARAM = "DataTable"
UNKNOWN_PARAM = "arg"

SKIPPED_ISSUE_KEY = "skippedIssue"
"""System attribute telling the service whether skipped items need triage."""

AGENT_NAME = "bddportal"

CONFIG_ENV_VAR = "BDDPORTAL_CONFIG"
DEFAULT_CONFIG_FILE = "bddportal.yaml"
ENV_OVERRIDE_PREFIX = "BDDPORTAL_"
DEBUG_ENV_VAR = "BDDPORTAL_DEBUG"

DEFAULT_LAUNCH_NAME = "bddportal launch"

HTTP_TIMEOUT_SECONDS = 10
"""Timeout in seconds for a single request to the reporting service."""

HTTP_RETRIES = 3
"""Transport-level retries for idempotent-safe failures (connect, 5xx)."""

SHUTDOWN_TIMEOUT_SECONDS = 60
"""Time allowed for pending reporting work to drain when a launch finishes.

Items are sent on a worker pool; a run that produced many items may still be
uploading when the runner exits.
"""

MAX_LOG_MESSAGE_LENGTH = 65535

EXIT_SUCCESS = 0
EXIT_ERROR = 1
EXIT_CONFIG_ERROR = 2
EXIT_INTERRUPTED = 130
