#!/usr/bin/env python3
"""bddportal - report behavior-driven test runs to a reporting service."""

from __future__ import annotations

import logging
import os
import sys
from pathlib import Path

for _noisy_module in ["urllib3", "requests"]:
    logging.getLogger(_noisy_module).setLevel(logging.WARNING)

import yaml  # noqa: E402

from bddportal.cli.main import main  # noqa: E402
from bddportal.cli.parsing import apply_cli_overrides, parse_flag  # noqa: E402
from bddportal.client.memory import InMemoryReportingService  # noqa: E402
from bddportal.constants import CONFIG_ENV_VAR, DEFAULT_CONFIG_FILE  # noqa: E402
from bddportal.core.config import ConfigLoader, load_parameters  # noqa: E402
from bddportal.core.reporter import ScenarioReporter, ServiceFactory, create_service  # noqa: E402
from bddportal.core.tags import read_source  # noqa: E402
from bddportal.events.codec import read_events  # noqa: E402
from bddportal.events.model import Feature, TestRunFinished, TestSourceParsed  # noqa: E402
from bddportal.events.publisher import EventPublisher  # noqa: E402
from bddportal.templates import CONFIG_TEMPLATE  # noqa: E402
from bddportal.utils import log_and_print_error, mask_secret  # noqa: E402

logger = logging.getLogger(__name__)


class BddPortal:
    """Main CLI interface for bddportal."""

    def __init__(self, service_factory: ServiceFactory | None = None) -> None:
        """Initialize the CLI with an optional reporting backend factory."""
        self._config_loader = ConfigLoader()
        self._service_factory = service_factory or create_service

    def replay(
        self,
        events: str,
        config: str | None = None,
        profile: str | None = None,
        dry_run: bool | str = False,
        launch: str | None = None,
        attributes: str | list[str] | tuple[str, ...] | None = None,
        description: str | None = None,
        mode: str | None = None,
        rerun_of: str | None = None,
    ) -> str | None:
        """Publish a recorded run as a new launch.

        Parameters
        ----------
        events : str
            JSON-lines recording written with ``record_events``
        config : str | None
            Configuration file (default: BDDPORTAL_CONFIG or bddportal.yaml)
        profile : str | None
            Configuration profile to apply
        dry_run : bool | str
            Report to memory and print the item tree instead of sending
        launch : str | None
            Launch name override
        attributes : str | list[str] | tuple[str, ...] | None
            Launch attributes override, ``key:value`` or ``value`` entries
        description : str | None
            Launch description override
        mode : str | None
            Launch mode override (DEFAULT or DEBUG)
        rerun_of : str | None
            ID of a launch to report this run as a rerun of

        Returns
        -------
        str | None
            Rendered item tree on dry runs, None otherwise

        Raises
        ------
        ValueError
            If the configuration is invalid or has no connection settings
        """
        dry_run = parse_flag("dry_run", dry_run)
        overrides = apply_cli_overrides(
            launch=launch,
            attributes=attributes,
            description=description,
            mode=mode,
            rerun_of=rerun_of,
        )
        parameters = load_parameters(config, profile, overrides)
        if not parameters.enabled:
            logger.warning("Reporting is disabled in the configuration, nothing replayed")
            return None

        service: InMemoryReportingService | None = None
        if dry_run:
            service = InMemoryReportingService()
            factory: ServiceFactory = lambda _: service  # noqa: E731
        elif not parameters.has_connection:
            raise ValueError(
                "endpoint, project and api_key must be configured to replay a run "
                "(use --dry_run to preview it)"
            )
        else:
            factory = self._service_factory

        recorded = list(read_events(events))
        sources = {
            node.uri: node.source
            for event in recorded
            if isinstance(event, TestSourceParsed)
            for node in event.nodes
            if isinstance(node, Feature) and node.source
        }

        def load_source(uri: str) -> str:
            if uri in sources:
                return sources[uri]
            return read_source(uri)

        publisher = EventPublisher()
        reporter = ScenarioReporter(parameters, factory, source_loader=load_source)
        reporter.set_event_publisher(publisher)

        for event in recorded:
            publisher.publish(event)
        if not any(isinstance(event, TestRunFinished) for event in recorded):
            logger.warning("Recording %s ends before the run finished, closing the launch", events)
            publisher.publish(TestRunFinished())

        logger.info("Replayed %d events from %s", len(recorded), events)
        if service is not None:
            return service.render_tree()
        return None

    def check(self, config: str | None = None, profile: str | None = None) -> str:
        """Validate the configuration and show the effective options.

        Parameters
        ----------
        config : str | None
            Configuration file (default: BDDPORTAL_CONFIG or bddportal.yaml)
        profile : str | None
            Configuration profile to apply

        Returns
        -------
        str
            Effective options as YAML, with the API key masked

        Raises
        ------
        ValueError
            If the configuration is invalid
        """
        loaded = self._config_loader.load_config(config)
        merged = self._config_loader.get_profile_config(loaded, profile)
        self._config_loader.validate_config(merged)

        if merged.get("enabled") and not (
            merged.get("endpoint") and merged.get("project") and merged.get("api_key")
        ):
            logger.warning("endpoint, project and api_key are not all set; only dry runs will work")

        merged["api_key"] = mask_secret(merged.get("api_key"))
        return yaml.safe_dump(merged, sort_keys=True, default_flow_style=False).rstrip()

    def init(self, force: bool = False) -> None:
        """Create a default bddportal.yaml configuration file."""
        config_path = os.environ.get(CONFIG_ENV_VAR, DEFAULT_CONFIG_FILE)
        config_file = Path(config_path)

        if config_file.exists() and not force:
            log_and_print_error(
                "%s already exists. Use --force to overwrite.",
                config_path,
            )
            sys.exit(1)

        config_file.parent.mkdir(parents=True, exist_ok=True)

        with open(config_file, "w") as f:
            f.write(CONFIG_TEMPLATE)

        print(f"Created {config_path} configuration file.")


if __name__ == "__main__":
    main()
