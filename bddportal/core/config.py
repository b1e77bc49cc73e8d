"""Configuration loading for bddportal."""

from __future__ import annotations

import copy
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml
from omegaconf import OmegaConf
from omegaconf.errors import InterpolationResolutionError

from bddportal.constants import (
    CONFIG_ENV_VAR,
    DEFAULT_CONFIG_FILE,
    DEFAULT_LAUNCH_NAME,
    ENV_OVERRIDE_PREFIX,
    HTTP_RETRIES,
    HTTP_TIMEOUT_SECONDS,
    SHUTDOWN_TIMEOUT_SECONDS,
    LaunchMode,
    LogLevel,
)

logger = logging.getLogger(__name__)

BUILT_IN_DEFAULTS: dict[str, Any] = {
    "enabled": True,
    "endpoint": None,
    "project": None,
    "api_key": None,
    "launch": DEFAULT_LAUNCH_NAME,
    "launch_description": None,
    "mode": LaunchMode.DEFAULT.value,
    "attributes": [],
    "rerun": False,
    "rerun_of": None,
    "skipped_issue": True,
    "callback_reporting": False,
    "exception_truncate": True,
    "http_timeout": HTTP_TIMEOUT_SECONDS,
    "http_retries": HTTP_RETRIES,
    "max_workers": 1,
    "shutdown_timeout": SHUTDOWN_TIMEOUT_SECONDS,
    "log_level": LogLevel.INFO.value,
    "record_events": None,
}

BOOL_FIELDS = ("enabled", "rerun", "skipped_issue", "callback_reporting", "exception_truncate")
INT_FIELDS = ("http_retries", "max_workers")
NUMBER_FIELDS = ("http_timeout", "shutdown_timeout")
STRING_FIELDS = (
    "endpoint",
    "project",
    "api_key",
    "launch",
    "launch_description",
    "rerun_of",
    "record_events",
)

TRUE_VALUES = ("1", "true", "yes", "on")
FALSE_VALUES = ("0", "false", "no", "off")


def parse_bool(value: Any) -> bool:
    """Interpret a boolean flag given as bool or text.

    Raises
    ------
    ValueError
        If the value is not a recognized boolean spelling
    """
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in TRUE_VALUES:
        return True
    if text in FALSE_VALUES:
        return False
    raise ValueError(f"Invalid boolean value: '{value}'")


def coerce_value(key: str, value: Any) -> Any:
    """Convert a textual override (environment, command line) to its field type.

    Parameters
    ----------
    key : str
        Configuration key
    value : Any
        Override value; non-string values are returned unchanged

    Returns
    -------
    Any
        Typed value

    Raises
    ------
    ValueError
        If the text cannot be converted
    """
    if not isinstance(value, str):
        return value
    if key in BOOL_FIELDS:
        return parse_bool(value)
    if key in INT_FIELDS:
        return int(value)
    if key in NUMBER_FIELDS:
        return float(value)
    if key == "attributes":
        return [item.strip() for item in value.split(";") if item.strip()]
    return value


class ConfigLoader:
    """Load and merge YAML configuration with defaults."""

    def __init__(self) -> None:
        self.BUILT_IN_DEFAULTS = copy.deepcopy(BUILT_IN_DEFAULTS)

    def load_config(self, config_path: str | None = None) -> dict[str, Any]:
        """Load configuration from YAML file.

        Parameters
        ----------
        config_path : str | None
            Path to YAML config file. If None, checks BDDPORTAL_CONFIG env var,
            then falls back to bddportal.yaml

        Returns
        -------
        dict[str, Any]
            Parsed configuration with defaults and profiles sections,
            with all variable interpolations resolved

        Raises
        ------
        omegaconf.errors.InterpolationResolutionError
            If undefined variables are referenced or circular references exist
        ValueError
            If the file is not valid YAML
        """
        if config_path is None:
            config_path = os.environ.get(CONFIG_ENV_VAR, DEFAULT_CONFIG_FILE)

        config_file = Path(config_path)

        if not config_file.exists():
            return {"defaults": {}}

        try:
            cfg = OmegaConf.load(config_file)
        except yaml.YAMLError as e:
            logger.error("Failed to parse YAML config file %s: %s", config_file, e)
            raise ValueError(f"Invalid YAML in {config_file}: {e}") from e
        except OSError as e:
            logger.error("Failed to read config file %s: %s", config_file, e)
            raise RuntimeError(f"Failed to read config file {config_file}: {e}") from e

        if cfg is None:
            return {"defaults": {}}

        if "vars" in cfg:
            vars_dict = OmegaConf.to_container(cfg.vars, resolve=False)
            for key, value in vars_dict.items():
                if key not in cfg:
                    cfg[key] = value

        try:
            config = OmegaConf.to_container(cfg, resolve=True, throw_on_missing=True)
        except InterpolationResolutionError as e:
            logger.error("Failed to resolve configuration variables: %s", e)
            raise
        except (ValueError, KeyError, AttributeError) as e:
            logger.error("Failed to resolve configuration variables: %s", e)
            raise ValueError(f"Configuration variable resolution error: {e}") from e

        if not isinstance(config, dict):
            raise ValueError(f"Configuration in {config_file} must be a mapping")
        config.setdefault("defaults", {})
        return config

    def get_profile_config(
        self, config: dict[str, Any], profile_name: str | None = None
    ) -> dict[str, Any]:
        """Get merged configuration for a profile or defaults.

        Parameters
        ----------
        config : dict[str, Any]
            Full configuration from YAML
        profile_name : str | None
            Name of profile to use, or None for defaults only

        Returns
        -------
        dict[str, Any]
            Merged configuration (built-in defaults + YAML defaults + profile
            settings + BDDPORTAL_* environment overrides)

        Raises
        ------
        ValueError
            If the profile is not defined
        """
        merged = copy.deepcopy(self.BUILT_IN_DEFAULTS)

        yaml_defaults = config.get("defaults") or {}
        for key, value in yaml_defaults.items():
            merged[key] = value

        if profile_name is not None:
            profiles = config.get("profiles") or {}

            if profile_name not in profiles:
                available = list(profiles.keys())

                if not available:
                    raise ValueError(
                        f"Profile '{profile_name}' not found in configuration. "
                        f"No profiles are defined in the config file."
                    )

                raise ValueError(
                    f"Profile '{profile_name}' not found in configuration. "
                    f"Available profiles: {available}"
                )

            for key, value in profiles[profile_name].items():
                merged[key] = value

        self._apply_env_overrides(merged)
        return merged

    def _apply_env_overrides(self, config: dict[str, Any]) -> None:
        for key in self.BUILT_IN_DEFAULTS:
            env_value = os.environ.get(f"{ENV_OVERRIDE_PREFIX}{key.upper()}")
            if env_value is not None:
                config[key] = coerce_value(key, env_value)

    def validate_config(self, config: dict[str, Any]) -> None:
        """Validate configuration has correct types and values.

        Parameters
        ----------
        config : dict[str, Any]
            Configuration to validate

        Raises
        ------
        ValueError
            If configuration is invalid
        """
        self._validate_types(config)
        self._validate_mode(config)
        self._validate_attributes(config)
        self._validate_limits(config)
        self._validate_connection(config)

    def _validate_types(self, config: dict[str, Any]) -> None:
        for field_name in BOOL_FIELDS:
            if field_name in config and not isinstance(config[field_name], bool):
                raise ValueError(f"{field_name} must be a boolean")

        for field_name in INT_FIELDS:
            value = config.get(field_name)
            if field_name in config and (isinstance(value, bool) or not isinstance(value, int)):
                raise ValueError(f"{field_name} must be an integer")

        for field_name in NUMBER_FIELDS:
            value = config.get(field_name)
            if field_name in config and (
                isinstance(value, bool) or not isinstance(value, (int, float))
            ):
                raise ValueError(f"{field_name} must be a number")

        for field_name in STRING_FIELDS:
            value = config.get(field_name)
            if value is not None and not isinstance(value, str):
                raise ValueError(f"{field_name} must be a string")

    def _validate_mode(self, config: dict[str, Any]) -> None:
        mode = config.get("mode", LaunchMode.DEFAULT.value)
        if str(mode).upper() not in LaunchMode.__members__:
            raise ValueError(
                f"mode must be one of {list(LaunchMode.__members__)}, got '{mode}'"
            )

        log_level = config.get("log_level", LogLevel.INFO.value)
        if str(log_level).upper() not in LogLevel.__members__:
            raise ValueError(
                f"log_level must be one of {list(LogLevel.__members__)}, got '{log_level}'"
            )

    def _validate_attributes(self, config: dict[str, Any]) -> None:
        attributes = config.get("attributes", [])
        if not isinstance(attributes, list):
            raise ValueError("attributes must be a list")

        for attribute in attributes:
            if not isinstance(attribute, str) or not attribute.strip():
                raise ValueError("attributes entries must be non-empty strings")

    def _validate_limits(self, config: dict[str, Any]) -> None:
        if config.get("max_workers", 1) < 1:
            raise ValueError("max_workers must be at least 1")
        if config.get("http_retries", 0) < 0:
            raise ValueError("http_retries must not be negative")
        for field_name in NUMBER_FIELDS:
            if config.get(field_name, 1) <= 0:
                raise ValueError(f"{field_name} must be positive")

    def _validate_connection(self, config: dict[str, Any]) -> None:
        if config.get("rerun_of") and not config.get("rerun"):
            raise ValueError("rerun_of requires rerun to be enabled")

        endpoint = config.get("endpoint")
        if endpoint and not str(endpoint).startswith(("http://", "https://")):
            raise ValueError(f"endpoint must be an http(s) URL, got '{endpoint}'")


@dataclass
class ReporterParameters:
    """Typed options of the reporter and its client."""

    enabled: bool = True
    endpoint: str | None = None
    project: str | None = None
    api_key: str | None = None
    launch: str = DEFAULT_LAUNCH_NAME
    launch_description: str | None = None
    mode: LaunchMode = LaunchMode.DEFAULT
    attributes: list[str] = field(default_factory=list)
    rerun: bool = False
    rerun_of: str | None = None
    skipped_issue: bool | None = True
    callback_reporting: bool = False
    exception_truncate: bool = True
    http_timeout: float = HTTP_TIMEOUT_SECONDS
    http_retries: int = HTTP_RETRIES
    max_workers: int = 1
    shutdown_timeout: float = SHUTDOWN_TIMEOUT_SECONDS
    log_level: LogLevel = LogLevel.INFO
    record_events: str | None = None

    @classmethod
    def from_config(cls, config: dict[str, Any]) -> ReporterParameters:
        """Build parameters from a merged configuration dictionary.

        Unknown keys are ignored.
        """
        values = {key: value for key, value in config.items() if key in cls.__dataclass_fields__}
        if "mode" in values:
            values["mode"] = LaunchMode(str(values["mode"]).upper())
        if "log_level" in values:
            values["log_level"] = LogLevel(str(values["log_level"]).upper())
        if "attributes" in values:
            values["attributes"] = list(values["attributes"] or [])
        return cls(**values)

    @property
    def has_connection(self) -> bool:
        return bool(self.endpoint and self.project and self.api_key)


def load_parameters(
    config_path: str | None = None,
    profile: str | None = None,
    overrides: dict[str, Any] | None = None,
) -> ReporterParameters:
    """Load, merge, validate and type the reporter configuration.

    Parameters
    ----------
    config_path : str | None
        YAML file; see `ConfigLoader.load_config`
    profile : str | None
        Profile merged on top of the defaults
    overrides : dict[str, Any] | None
        Values taking precedence over the file, e.g. from the command line

    Returns
    -------
    ReporterParameters
        Validated parameters

    Raises
    ------
    ValueError
        If the configuration is invalid
    """
    loader = ConfigLoader()
    merged = loader.get_profile_config(loader.load_config(config_path), profile)
    for key, value in (overrides or {}).items():
        if value is not None:
            merged[key] = coerce_value(key, value)
    loader.validate_config(merged)
    return ReporterParameters.from_config(merged)
