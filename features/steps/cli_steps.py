import io
import logging
import shlex
import sys
from contextlib import redirect_stderr, redirect_stdout
from pathlib import Path
from unittest.mock import patch

import yaml
from behave import given, then, when
from behave.runner import Context

from bddportal.__main__ import BddPortal
from bddportal.cli.main import main
from bddportal.client.memory import InMemoryReportingService
from fakes.events import record_run

logger = logging.getLogger(__name__)


def execute_command(context: Context, command: str) -> None:
    """Run a bddportal command line in-process and keep its outcome.

    Parameters
    ----------
    context : Context
        Behave context receiving ``stdout``, ``stderr`` and ``exit_code``
    command : str
        Full command line starting with ``bddportal``
    """
    argv = shlex.split(command)
    stdout = io.StringIO()
    stderr = io.StringIO()
    exit_code = 0

    with patch.object(sys, "argv", argv), redirect_stdout(stdout), redirect_stderr(stderr):
        try:
            main()
        except SystemExit as e:
            exit_code = e.code if isinstance(e.code, int) else 1

    context.stdout = stdout.getvalue()
    context.stderr = stderr.getvalue()
    context.exit_code = exit_code
    logger.debug(f"{command} exited with {exit_code}")


@given("a recorded run of the shopping feature")
def step_recorded_run(context: Context) -> None:
    context.recording = record_run(context.work_dir / "events.jsonl")


@given("the recording stops before the run finished")
def step_truncated_recording(context: Context) -> None:
    lines = context.recording.read_text().splitlines()
    context.recording.write_text("\n".join(lines[:-1]) + "\n")


@given("the recording has a damaged line")
def step_damaged_recording(context: Context) -> None:
    lines = context.recording.read_text().splitlines()
    lines[2] = lines[2][: len(lines[2]) // 2]
    context.recording.write_text("\n".join(lines) + "\n")


@given("the configuration")
def step_configuration(context: Context) -> None:
    (context.work_dir / "bddportal.yaml").write_text(context.text)


@when('I run "{command}"')
def step_run_command(context: Context, command: str) -> None:
    execute_command(context, command)


@when('I replay the recording to the reporting service as a rerun of "{launch_id}"')
def step_replay_to_service(context: Context, launch_id: str) -> None:
    context.service = InMemoryReportingService()
    cli = BddPortal(service_factory=lambda _: context.service)
    context.result = cli.replay(str(context.recording), rerun_of=launch_id)


@then("the command succeeds")
def step_command_succeeds(context: Context) -> None:
    assert context.exit_code == 0, (
        f"Expected exit code 0, got {context.exit_code}\nstderr: {context.stderr}"
    )


@then("the command exits with code {exit_code:d}")
def step_command_exit_code(context: Context, exit_code: int) -> None:
    assert context.exit_code == exit_code, (
        f"Expected exit code {exit_code}, got {context.exit_code}\nstderr: {context.stderr}"
    )


@then('the output contains "{text}"')
def step_output_contains(context: Context, text: str) -> None:
    assert text in context.stdout, f"{text!r} not found in output:\n{context.stdout}"


@then('stderr contains "{text}"')
def step_stderr_contains(context: Context, text: str) -> None:
    assert text in context.stderr, f"{text!r} not found in stderr:\n{context.stderr}"


@then('a warning mentions "{text}"')
def step_warning_mentions(context: Context, text: str) -> None:
    warnings = [
        record.getMessage()
        for record in context.log_capture.records
        if record.levelno == logging.WARNING
    ]
    assert any(text in message for message in warnings), f"No warning with {text!r}: {warnings}"


@then("the configuration file exists")
def step_config_exists(context: Context) -> None:
    assert Path(context.work_dir / "bddportal.yaml").exists()


@then('the effective option "{key}" is "{value}"')
def step_effective_option(context: Context, key: str, value: str) -> None:
    effective = yaml.safe_load(context.stdout)
    assert effective[key] == value, f"{key} is {effective[key]!r}, expected {value!r}"


@then('the reporting service has a launch named "{name}"')
def step_launch_named(context: Context, name: str) -> None:
    assert context.result is None
    (launch,) = context.service.launches.values()
    assert launch["name"] == name
    assert context.service.finished_launches


@then('the launch is a rerun of "{launch_id}"')
def step_launch_rerun(context: Context, launch_id: str) -> None:
    (launch,) = context.service.launches.values()
    assert launch["rerun"] is True
    assert launch["rerunOf"] == launch_id


@then('the launch has the attribute "{attribute}"')
def step_launch_attribute(context: Context, attribute: str) -> None:
    (launch,) = context.service.launches.values()
    key, _, value = attribute.rpartition(":")
    expected = {"key": key, "value": value} if key else {"value": value}
    assert expected in launch["attributes"], launch["attributes"]


@then('the scenario "{name}" finished as {status}')
def step_scenario_status(context: Context, name: str, status: str) -> None:
    assert context.service.find_item(name).status == status


@then('the item "{name}" has a description containing "{text}"')
def step_item_description(context: Context, name: str, text: str) -> None:
    item = context.service.find_item(name)
    assert text in item.finish["description"], item.finish
