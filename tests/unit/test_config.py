from pathlib import Path

import pytest
import yaml
from omegaconf.errors import InterpolationResolutionError

from bddportal.constants import DEFAULT_LAUNCH_NAME, LaunchMode, LogLevel
from bddportal.core.config import (
    ConfigLoader,
    ReporterParameters,
    coerce_value,
    load_parameters,
    parse_bool,
)


class TestConfigLoader:
    def test_load_config_with_defaults_only(self, tmp_path: Path) -> None:
        config_file = tmp_path / "bddportal.yaml"
        config_file.write_text(
            yaml.dump({"defaults": {"endpoint": "https://portal.example.com", "project": "shop"}})
        )

        config = ConfigLoader().load_config(str(config_file))

        assert config["defaults"]["endpoint"] == "https://portal.example.com"
        assert config["defaults"]["project"] == "shop"

    def test_load_config_missing_file_uses_built_in_defaults(self) -> None:
        loader = ConfigLoader()
        config = loader.load_config("/nonexistent/path/bddportal.yaml")

        assert config == {"defaults": {}}

        merged = loader.get_profile_config(config)
        assert merged["launch"] == DEFAULT_LAUNCH_NAME
        assert merged["enabled"] is True
        assert merged["max_workers"] == 1

    def test_load_config_from_env_variable(self, write_config) -> None:
        write_config({"defaults": {"launch": "From env"}})

        config = ConfigLoader().load_config()

        assert config["defaults"]["launch"] == "From env"

    def test_empty_file_yields_empty_defaults(self, tmp_path: Path) -> None:
        config_file = tmp_path / "bddportal.yaml"
        config_file.write_text("")

        assert ConfigLoader().load_config(str(config_file)) == {"defaults": {}}

    def test_vars_are_interpolated(self, tmp_path: Path) -> None:
        config_file = tmp_path / "bddportal.yaml"
        config_file.write_text(
            yaml.dump(
                {
                    "vars": {"project_name": "shop"},
                    "defaults": {
                        "project": "${project_name}",
                        "launch": "${project_name} nightly",
                    },
                }
            )
        )

        config = ConfigLoader().load_config(str(config_file))

        assert config["defaults"]["project"] == "shop"
        assert config["defaults"]["launch"] == "shop nightly"

    def test_undefined_variable_raises(self, tmp_path: Path) -> None:
        config_file = tmp_path / "bddportal.yaml"
        config_file.write_text(yaml.dump({"defaults": {"project": "${missing}"}}))

        with pytest.raises(InterpolationResolutionError):
            ConfigLoader().load_config(str(config_file))

    def test_invalid_yaml_raises_value_error(self, tmp_path: Path) -> None:
        config_file = tmp_path / "bddportal.yaml"
        config_file.write_text("defaults: [unclosed\n")

        with pytest.raises(ValueError, match="Invalid YAML"):
            ConfigLoader().load_config(str(config_file))

    def test_top_level_must_be_mapping(self, tmp_path: Path) -> None:
        config_file = tmp_path / "bddportal.yaml"
        config_file.write_text(yaml.dump(["a", "b"]))

        with pytest.raises(ValueError):
            ConfigLoader().load_config(str(config_file))


class TestProfiles:
    def test_profile_overrides_defaults(self) -> None:
        config = {
            "defaults": {"launch": "Nightly", "mode": "DEFAULT"},
            "profiles": {"debug": {"mode": "DEBUG", "launch": "Local"}},
        }

        merged = ConfigLoader().get_profile_config(config, "debug")

        assert merged["mode"] == "DEBUG"
        assert merged["launch"] == "Local"

    def test_unknown_profile_lists_available(self) -> None:
        config = {"defaults": {}, "profiles": {"debug": {}, "record": {}}}

        with pytest.raises(ValueError, match=r"Available profiles: \['debug', 'record'\]"):
            ConfigLoader().get_profile_config(config, "ci")

    def test_unknown_profile_without_profiles(self) -> None:
        with pytest.raises(ValueError, match="No profiles are defined"):
            ConfigLoader().get_profile_config({"defaults": {}}, "ci")

    def test_environment_overrides_file(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("BDDPORTAL_LAUNCH", "From env")
        monkeypatch.setenv("BDDPORTAL_CALLBACK_REPORTING", "yes")
        monkeypatch.setenv("BDDPORTAL_MAX_WORKERS", "4")
        monkeypatch.setenv("BDDPORTAL_ATTRIBUTES", "env:ci; smoke")

        merged = ConfigLoader().get_profile_config({"defaults": {"launch": "From file"}})

        assert merged["launch"] == "From env"
        assert merged["callback_reporting"] is True
        assert merged["max_workers"] == 4
        assert merged["attributes"] == ["env:ci", "smoke"]

    def test_loader_defaults_are_isolated(self) -> None:
        loader = ConfigLoader()
        loader.get_profile_config({"defaults": {}})["attributes"].append("leak")

        assert ConfigLoader().BUILT_IN_DEFAULTS["attributes"] == []
        assert loader.BUILT_IN_DEFAULTS["attributes"] == []


class TestValidation:
    def _valid(self, **overrides) -> dict:
        config = ConfigLoader().get_profile_config({"defaults": {}})
        config.update(overrides)
        return config

    def test_defaults_are_valid(self) -> None:
        ConfigLoader().validate_config(self._valid())

    @pytest.mark.parametrize(
        "overrides,message",
        [
            ({"enabled": "yes"}, "enabled must be a boolean"),
            ({"max_workers": 1.5}, "max_workers must be an integer"),
            ({"max_workers": True}, "max_workers must be an integer"),
            ({"http_timeout": "slow"}, "http_timeout must be a number"),
            ({"project": 42}, "project must be a string"),
            ({"mode": "FAST"}, "mode must be one of"),
            ({"log_level": "LOUD"}, "log_level must be one of"),
            ({"attributes": "smoke"}, "attributes must be a list"),
            ({"attributes": ["smoke", " "]}, "attributes entries must be non-empty strings"),
            ({"max_workers": 0}, "max_workers must be at least 1"),
            ({"http_retries": -1}, "http_retries must not be negative"),
            ({"shutdown_timeout": 0}, "shutdown_timeout must be positive"),
            ({"rerun_of": "launch-uuid"}, "rerun_of requires rerun"),
            ({"endpoint": "portal.example.com"}, "endpoint must be an http"),
        ],
    )
    def test_invalid_values(self, overrides: dict, message: str) -> None:
        with pytest.raises(ValueError, match=message):
            ConfigLoader().validate_config(self._valid(**overrides))

    def test_lowercase_mode_is_accepted(self) -> None:
        ConfigLoader().validate_config(self._valid(mode="debug", log_level="warn"))


class TestCoercion:
    @pytest.mark.parametrize("text", ["1", "true", "Yes", " ON "])
    def test_true_spellings(self, text: str) -> None:
        assert parse_bool(text) is True

    @pytest.mark.parametrize("text", ["0", "false", "No", "off"])
    def test_false_spellings(self, text: str) -> None:
        assert parse_bool(text) is False

    def test_invalid_boolean(self) -> None:
        with pytest.raises(ValueError, match="Invalid boolean value: 'maybe'"):
            parse_bool("maybe")

    def test_coerce_value_by_field(self) -> None:
        assert coerce_value("rerun", "true") is True
        assert coerce_value("http_retries", "5") == 5
        assert coerce_value("http_timeout", "2.5") == 2.5
        assert coerce_value("launch", "Nightly") == "Nightly"
        assert coerce_value("max_workers", 3) == 3


class TestReporterParameters:
    def test_from_config_types_values(self) -> None:
        parameters = ReporterParameters.from_config(
            {"mode": "debug", "log_level": "warn", "attributes": None, "unknown": 1}
        )

        assert parameters.mode == LaunchMode.DEBUG
        assert parameters.log_level == LogLevel.WARN
        assert parameters.attributes == []

    def test_has_connection(self) -> None:
        assert not ReporterParameters().has_connection
        assert ReporterParameters(
            endpoint="https://portal.example.com", project="shop", api_key="key"
        ).has_connection

    def test_load_parameters_applies_overrides_last(
        self, write_config, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        write_config(
            {
                "defaults": {"launch": "From file", "attributes": ["team:cart"]},
                "profiles": {"ci": {"mode": "DEBUG"}},
            }
        )
        monkeypatch.setenv("BDDPORTAL_LAUNCH", "From env")

        parameters = load_parameters(
            profile="ci", overrides={"launch": "From CLI", "rerun": "true", "project": None}
        )

        assert parameters.launch == "From CLI"
        assert parameters.mode == LaunchMode.DEBUG
        assert parameters.attributes == ["team:cart"]
        assert parameters.rerun is True
        assert parameters.project is None

    def test_load_parameters_validates(self, write_config) -> None:
        write_config({"defaults": {"max_workers": 0}})

        with pytest.raises(ValueError, match="max_workers"):
            load_parameters()
