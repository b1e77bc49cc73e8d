"""Pytest configuration and fixtures for bddportal tests."""

import os
import sys
from collections.abc import Generator
from pathlib import Path

import pytest
import yaml

tests_root = Path(__file__).parent
if str(tests_root) not in sys.path:
    sys.path.insert(0, str(tests_root))

from bddportal.core.reporter import ScenarioReporter  # noqa: E402
from bddportal.runner import formatter as formatter_module  # noqa: E402


@pytest.fixture(autouse=True)
def clean_bddportal_env() -> Generator[None, None, None]:
    """Remove BDDPORTAL_* variables so tests see built-in defaults.

    Yields
    ------
    None
        Control back to test after cleaning the environment
    """
    saved = {key: value for key, value in os.environ.items() if key.startswith("BDDPORTAL_")}
    for key in saved:
        del os.environ[key]

    yield

    for key in [key for key in os.environ if key.startswith("BDDPORTAL_")]:
        del os.environ[key]
    os.environ.update(saved)


@pytest.fixture(autouse=True)
def reset_current_reporter() -> Generator[None, None, None]:
    """Forget the process-wide reporter and formatter state between tests."""
    yield
    ScenarioReporter.set_current(None)
    formatter_module.REPORTED_HOOK_TYPES.clear()
    formatter_module._set_active_formatter(None)


@pytest.fixture
def config_file(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Point BDDPORTAL_CONFIG at a temporary config file path.

    Parameters
    ----------
    tmp_path : Path
        Pytest temporary directory path
    monkeypatch : pytest.MonkeyPatch
        Environment patcher

    Returns
    -------
    Path
        Path to the (not yet written) config file
    """
    config_path = tmp_path / "bddportal.yaml"
    monkeypatch.setenv("BDDPORTAL_CONFIG", str(config_path))
    return config_path


@pytest.fixture
def write_config(config_file: Path):
    """Helper fixture to write config data to file.

    Parameters
    ----------
    config_file : Path
        Path to config file from config_file fixture

    Returns
    -------
    Callable[[dict], Path]
        Function writing a configuration dictionary as YAML
    """

    def _write(data: dict) -> Path:
        config_file.write_text(yaml.dump(data))
        return config_file

    return _write
