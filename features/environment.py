"""Behave environment configuration for bddportal acceptance tests."""

import logging
import os
import shutil
import sys
import tempfile
from pathlib import Path

from behave.model import Scenario
from behave.runner import Context

from bddportal.core.reporter import ScenarioReporter

tests_root = Path(__file__).resolve().parent.parent / "tests"
if str(tests_root) not in sys.path:
    sys.path.insert(0, str(tests_root))

logger = logging.getLogger(__name__)


class LogCapture(logging.Handler):
    """Custom logging handler for capturing log records in tests."""

    def __init__(self) -> None:
        super().__init__()
        self.records: list[logging.LogRecord] = []

    def emit(self, record: logging.LogRecord) -> None:
        self.records.append(record)


def before_scenario(context: Context, scenario: Scenario) -> None:
    """Run each scenario in its own working directory with a clean environment."""
    context.original_cwd = os.getcwd()
    context.work_dir = Path(tempfile.mkdtemp(prefix="bddportal-"))
    os.chdir(context.work_dir)

    context.saved_env = {
        key: value for key, value in os.environ.items() if key.startswith("BDDPORTAL_")
    }
    for key in context.saved_env:
        del os.environ[key]
    os.environ["BDDPORTAL_CONFIG"] = str(context.work_dir / "bddportal.yaml")

    context.log_capture = LogCapture()
    logging.getLogger().addHandler(context.log_capture)


def after_scenario(context: Context, scenario: Scenario) -> None:
    """Restore the working directory and the environment."""
    logging.getLogger().removeHandler(context.log_capture)
    ScenarioReporter.set_current(None)

    os.chdir(context.original_cwd)
    for key in [key for key in os.environ if key.startswith("BDDPORTAL_")]:
        del os.environ[key]
    os.environ.update(context.saved_env)

    try:
        shutil.rmtree(context.work_dir)
    except OSError as e:
        logger.warning(f"Could not remove {context.work_dir}: {e}")
