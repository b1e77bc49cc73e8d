"""Tests for translating runner events into reported items."""

import logging

import pytest

from bddportal.client.memory import InMemoryReportingService
from bddportal.constants import HookType, ItemStatus, LaunchMode, RunnerStatus
from bddportal.core.config import ReporterParameters
from bddportal.core.reporter import ScenarioReporter
from bddportal.core.retries import unique_id
from bddportal.events.model import (
    DataTableArgument,
    DocStringArgument,
    Result,
    StepArgument,
    TestCase,
    TestStepFinished,
    TestStepStarted,
)
from bddportal.events.publisher import EventPublisher
from bddportal.utils import format_data_table, to_epoch_millis
from fakes.events import (
    FEATURE_URI,
    START,
    EventScript,
    add_item_case,
    child_names,
    outline_case,
    raised,
    remove_item_case,
    shopping_feature,
)
from fakes.failing_service import FailingReportingService

ADD_ITEM_STEPS = [
    "BACKGROUND: Given an empty cart",
    'When I add "apple" to the cart',
    "Then the cart has 1 item",
]


class TestLaunch:
    def test_launch_request_carries_options_and_system_attributes(self, make_reporter, service) -> None:
        _, script = make_reporter(
            launch="Nightly",
            launch_description="Full regression",
            attributes=["env:ci", "regression"],
            mode=LaunchMode.DEBUG,
            rerun=True,
            rerun_of="launch-uuid",
        )
        script.run_started().run_finished()

        (launch,) = service.launches.values()
        assert launch["name"] == "Nightly"
        assert launch["description"] == "Full regression"
        assert launch["mode"] == "DEBUG"
        assert launch["rerun"] is True
        assert launch["rerunOf"] == "launch-uuid"
        assert launch["startTime"] == to_epoch_millis(START) + 1000
        assert launch["attributes"][:2] == [{"key": "env", "value": "ci"}, {"value": "regression"}]

        system = {attr["key"]: attr for attr in launch["attributes"] if attr.get("system")}
        assert system["agent"]["value"].startswith("bddportal|")
        assert system["skippedIssue"]["value"] == "true"
        assert "os" in system and "python" in system

    def test_skipped_issue_none_omits_attribute(self, make_reporter, service) -> None:
        _, script = make_reporter(skipped_issue=None)
        script.run_started().run_finished()

        (launch,) = service.launches.values()
        assert all(attr.get("key") != "skippedIssue" for attr in launch["attributes"])

    def test_launch_is_finished_and_service_closed(self, make_reporter, service) -> None:
        _, script = make_reporter()
        script.run_started().run_finished()

        assert list(service.finished_launches) == list(service.launches)
        assert service.closed is True


class TestScenarioReporting:
    def test_simple_scenario_builds_feature_scenario_and_steps(self, make_reporter, service) -> None:
        _, script = make_reporter()
        script.run_started().source_parsed(shopping_feature()).add_item_scenario().run_finished()

        feature = service.find_item("Feature: Shopping cart")
        assert feature.parent_id is None
        assert feature.start["type"] == "STORY"
        assert feature.start["description"] == FEATURE_URI
        assert feature.start["attributes"] == [{"value": "smoke"}, {"key": "owner", "value": "alice"}]

        scenario = service.find_item("Scenario: Add an item")
        assert scenario.parent_id == feature.id
        assert scenario.start["type"] == "STEP"
        assert scenario.start["hasStats"] is True
        assert scenario.start["codeRef"] == "features/shopping.feature/[SCENARIO:Add an item]"
        assert scenario.start["testCaseId"] == scenario.start["codeRef"]
        assert "attributes" not in scenario.start
        assert scenario.status == "PASSED"

        assert child_names(service, scenario.id) == ADD_ITEM_STEPS
        for step in service.children_of(scenario.id):
            assert step.start["hasStats"] is False
            assert step.start["codeRef"] == "steps/cart.py:10"
            assert step.status == "PASSED"

    def test_feature_closes_at_end_of_its_last_scenario(self, make_reporter, service) -> None:
        _, script = make_reporter()
        script.run_started().source_parsed(shopping_feature()).add_item_scenario().run_finished()

        feature = service.find_item("Feature: Shopping cart")
        scenario = service.find_item("Scenario: Add an item")
        assert feature.finish["endTime"] == scenario.finish["endTime"]
        assert "status" not in feature.finish

    def test_outline_example_row_becomes_parameters(self, make_reporter, service) -> None:
        _, script = make_reporter()
        script.run_started().source_parsed(shopping_feature())
        for line in (23, 24):
            test_case = outline_case(line)
            script.case_started(test_case)
            script.step(test_case, "Given ", "an empty cart", 5)
            script.case_finished(test_case)
        script.run_finished()

        apple, banana = sorted(
            service.find_items("Scenario Outline: Add several items"),
            key=lambda item: item.start["startTime"],
        )
        assert apple.start["codeRef"] == (
            "features/shopping.feature/[EXAMPLE:Add several items[count:2;item:apple]]"
        )
        assert apple.start["parameters"] == [
            {"key": "item", "value": "apple"},
            {"key": "count", "value": "2"},
        ]
        assert banana.start["parameters"][0] == {"key": "item", "value": "banana"}
        assert apple.start["attributes"] == [{"value": "fast"}]
        assert child_names(service, apple.id) == ["BACKGROUND: Given an empty cart"]

    def test_test_case_id_tag_overrides_code_ref(self, make_reporter, service) -> None:
        _, script = make_reporter()
        test_case = remove_item_case()
        script.run_started().source_parsed(shopping_feature()).case_started(test_case)
        script.case_finished(test_case).run_finished()

        scenario = service.find_item("Scenario: Remove an item")
        assert scenario.start["testCaseId"] == "cart-remove"
        assert scenario.start["codeRef"] == "features/shopping.feature/[SCENARIO:Remove an item]"
        assert "attributes" not in scenario.start

    def test_unparsed_feature_is_dropped_with_warning(
        self, make_reporter, service, caplog: pytest.LogCaptureFixture
    ) -> None:
        _, script = make_reporter()
        test_case = TestCase("features/unknown.feature", 3, "Scenario", "Ghost")

        with caplog.at_level(logging.WARNING):
            script.run_started().case_started(test_case).case_finished(test_case).run_finished()

        assert service.items == {}
        assert "No parsed feature for features/unknown.feature" in caplog.text


class TestFailures:
    def test_failed_step_carries_error_in_description_and_log(self, make_reporter, service) -> None:
        _, script = make_reporter()
        error = raised(AssertionError("cart has 0 items"))
        test_case = add_item_case()

        script.run_started().source_parsed(shopping_feature()).case_started(test_case)
        script.step(test_case, "Given ", "an empty cart", 5)
        script.step(test_case, "Then ", "the cart has 1 item", 9, RunnerStatus.FAILED, error)
        script.case_finished(test_case, RunnerStatus.FAILED, error).run_finished()

        step = service.find_item("Then the cart has 1 item")
        assert step.status == "FAILED"
        assert step.finish["description"].startswith("Error:\nTraceback")
        assert "AssertionError: cart has 0 items" in step.finish["description"]
        assert [log["level"] for log in step.logs] == ["ERROR"]
        assert "AssertionError" in step.logs[0]["message"]

        scenario = service.find_item("Scenario: Add an item")
        assert scenario.status == "FAILED"
        assert scenario.finish["description"].startswith(f"{FEATURE_URI}\n---\nError:\n")

    def test_string_errors_are_reported_verbatim(self, make_reporter, service) -> None:
        _, script = make_reporter()
        test_case = add_item_case()

        script.run_started().source_parsed(shopping_feature()).case_started(test_case)
        script.step(test_case, "Given ", "an empty cart", 5, RunnerStatus.FAILED, "expected 1 got 0")
        script.case_finished(test_case, RunnerStatus.FAILED).run_finished()

        step = service.find_item("BACKGROUND: Given an empty cart")
        assert step.finish["description"] == "Error:\nexpected 1 got 0"

    @pytest.mark.parametrize(
        ("status", "expected"),
        [
            (RunnerStatus.SKIPPED, "SKIPPED"),
            (RunnerStatus.UNDEFINED, "SKIPPED"),
            (RunnerStatus.PENDING, "SKIPPED"),
            ("exploded", "SKIPPED"),
        ],
    )
    def test_non_passing_statuses_map_to_skipped(
        self, make_reporter, service, status, expected
    ) -> None:
        _, script = make_reporter()
        test_case = add_item_case()

        script.run_started().source_parsed(shopping_feature()).case_started(test_case)
        script.step(test_case, "Given ", "an empty cart", 5, status)
        script.case_finished(test_case, status).run_finished()

        assert service.find_item("BACKGROUND: Given an empty cart").status == expected
        assert service.find_item("Scenario: Add an item").status == expected

    def test_rejected_scenario_does_not_break_the_run(self) -> None:
        service = FailingReportingService(reject_names=("Scenario: Add an item",))
        reporter = ScenarioReporter(
            ReporterParameters(shutdown_timeout=10), lambda _: service, source_loader=lambda _: ""
        )
        publisher = EventPublisher()
        reporter.set_event_publisher(publisher)

        EventScript(publisher).run_started().source_parsed(
            shopping_feature()
        ).add_item_scenario().run_finished()

        assert service.rejected == ["Scenario: Add an item"]
        assert service.find_items("BACKGROUND: Given an empty cart") == []
        assert service.find_item("Feature: Shopping cart").finish is not None
        assert service.finished_launches

    def test_finishing_unknown_step_logs_bug(
        self, make_reporter, service, caplog: pytest.LogCaptureFixture
    ) -> None:
        reporter, script = make_reporter()
        test_case = add_item_case()
        script.run_started().source_parsed(shopping_feature()).case_started(test_case)
        test_step = script.step_started(test_case, "Given ", "an empty cart", 5)
        script.step_finished(test_case, test_step)

        with caplog.at_level(logging.ERROR):
            script.step_finished(test_case, test_step)
            reporter.finish_test_item(None)

        assert "BUG: Trying to finish unspecified step item." in caplog.text
        assert "BUG: Trying to finish unspecified test item." in caplog.text
        script.case_finished(test_case).run_finished()

    def test_step_started_while_another_runs_opens_new_step(
        self, make_reporter, service, caplog: pytest.LogCaptureFixture
    ) -> None:
        _, script = make_reporter(shutdown_timeout=1)
        test_case = add_item_case()
        script.run_started().source_parsed(shopping_feature()).case_started(test_case)
        script.step_started(test_case, "Given ", "an empty cart", 5)

        with caplog.at_level(logging.WARNING):
            second = script.step_started(test_case, "When ", 'I add "apple" to the cart', 8)

        assert (
            "Step 'When I add \"apple\" to the cart' started while "
            "'BACKGROUND: Given an empty cart' is still running" in caplog.text
        )
        script.step_finished(test_case, second).case_finished(test_case).run_finished()

        scenario = service.find_item("Scenario: Add an item")
        assert child_names(service, scenario.id) == [
            "BACKGROUND: Given an empty cart",
            'When I add "apple" to the cart',
        ]
        assert service.find_item('When I add "apple" to the cart').status == "PASSED"
        assert service.find_item("BACKGROUND: Given an empty cart").finish is None

    def test_unknown_test_step_type_is_ignored(
        self, make_reporter, service, caplog: pytest.LogCaptureFixture
    ) -> None:
        _, script = make_reporter()
        test_case = add_item_case()
        script.run_started().source_parsed(shopping_feature()).case_started(test_case)

        with caplog.at_level(logging.WARNING):
            script.publisher.publish(TestStepStarted(test_case, "custom step", timestamp=script.tick()))
            script.publisher.publish(
                TestStepFinished(
                    test_case, "custom step", Result(RunnerStatus.PASSED), timestamp=script.tick()
                )
            )

        assert "Unable to start unknown test step type: str" in caplog.text
        assert "Unable to finish unknown test step type: str" in caplog.text
        script.case_finished(test_case).run_finished()

        scenario = service.find_item("Scenario: Add an item")
        assert child_names(service, scenario.id) == []
        assert scenario.status == "PASSED"


class TestHooks:
    def test_before_step_hook_is_nested_under_its_step(self, make_reporter, service) -> None:
        _, script = make_reporter()
        test_case = add_item_case()

        script.run_started().source_parsed(shopping_feature()).case_started(test_case)
        script.hook(test_case, HookType.BEFORE_STEP, "environment.before_step()")
        script.step(test_case, "Given ", "an empty cart", 5)
        script.case_finished(test_case).run_finished()

        scenario = service.find_item("Scenario: Add an item")
        step = service.find_item("BACKGROUND: Given an empty cart")
        assert step.parent_id == scenario.id
        assert child_names(service, scenario.id) == ["BACKGROUND: Given an empty cart"]

        group = service.find_item("Before step")
        assert group.parent_id == step.id
        assert group.status == "PASSED"
        hook = service.find_item("environment.before_step()")
        assert hook.parent_id == group.id
        assert step.start["startTime"] == hook.start["startTime"]
        assert step.status == "PASSED"

    def test_consecutive_scenario_hooks_share_a_group(self, make_reporter, service) -> None:
        _, script = make_reporter()
        test_case = add_item_case()

        script.run_started().source_parsed(shopping_feature()).case_started(test_case)
        script.hook(test_case, HookType.BEFORE, "environment.open_browser()")
        script.hook(test_case, HookType.BEFORE, "environment.login()")
        script.step(test_case, "Given ", "an empty cart", 5)
        script.hook(test_case, HookType.AFTER, "environment.logout()")
        script.case_finished(test_case).run_finished()

        scenario = service.find_item("Scenario: Add an item")
        assert child_names(service, scenario.id) == [
            "Before hooks",
            "BACKGROUND: Given an empty cart",
            "After hooks",
        ]
        before = service.find_item("Before hooks")
        assert child_names(service, before.id) == [
            "environment.open_browser()",
            "environment.login()",
        ]
        after = service.find_item("After hooks")
        assert after.status == "PASSED"
        assert child_names(service, after.id) == ["environment.logout()"]

    def test_after_step_hook_attaches_to_previous_step(self, make_reporter, service) -> None:
        _, script = make_reporter()
        test_case = add_item_case()

        script.run_started().source_parsed(shopping_feature()).case_started(test_case)
        script.step(test_case, "Given ", "an empty cart", 5)
        script.hook(test_case, HookType.AFTER_STEP, "environment.after_step()")
        script.case_finished(test_case).run_finished()

        step = service.find_item("BACKGROUND: Given an empty cart")
        group = service.find_item("After step")
        assert group.parent_id == step.id
        assert step.finish_count == 1

    def test_after_step_hook_without_step_attaches_to_scenario(
        self, make_reporter, service, caplog: pytest.LogCaptureFixture
    ) -> None:
        _, script = make_reporter()
        test_case = add_item_case()

        with caplog.at_level(logging.WARNING):
            script.run_started().source_parsed(shopping_feature()).case_started(test_case)
            script.hook(test_case, HookType.AFTER_STEP, "environment.after_step()")
            script.case_finished(test_case).run_finished()

        scenario = service.find_item("Scenario: Add an item")
        assert service.find_item("After step").parent_id == scenario.id
        assert "No previous step for after-step hook" in caplog.text

    def test_failed_hook_fails_its_group(self, make_reporter, service) -> None:
        _, script = make_reporter()
        test_case = add_item_case()
        error = raised(RuntimeError("browser crashed"))

        script.run_started().source_parsed(shopping_feature()).case_started(test_case)
        script.hook(test_case, HookType.BEFORE, "environment.ok()")
        script.hook(test_case, HookType.BEFORE, "environment.crash()", RunnerStatus.FAILED, error)
        script.case_finished(test_case, RunnerStatus.FAILED, error).run_finished()

        hook = service.find_item("environment.crash()")
        assert hook.status == "FAILED"
        assert "RuntimeError: browser crashed" in hook.finish["description"]
        assert hook.logs[0]["level"] == "ERROR"
        assert service.find_item("environment.ok()").status == "PASSED"
        assert service.find_item("Before hooks").status == "FAILED"


class TestRetries:
    def test_second_attempt_is_a_retry_of_the_first(self, make_reporter, service) -> None:
        _, script = make_reporter()
        script.run_started().source_parsed(shopping_feature())
        script.add_item_scenario(RunnerStatus.FAILED).add_item_scenario().run_finished()

        first, second = sorted(
            service.find_items("Scenario: Add an item"), key=lambda item: item.start["startTime"]
        )
        assert "retry" not in first.start
        assert second.start["retry"] is True
        assert second.start["retryOf"] == first.id
        assert first.status == "FAILED"
        assert second.status == "PASSED"

    def test_marked_first_attempt_is_flagged_without_retry_of(self, make_reporter, service) -> None:
        reporter, script = make_reporter()
        reporter.retries.mark(unique_id(FEATURE_URI, 7))
        script.run_started().source_parsed(shopping_feature()).add_item_scenario().run_finished()

        scenario = service.find_item("Scenario: Add an item")
        assert scenario.start["retry"] is True
        assert "retryOf" not in scenario.start


class TestStepArguments:
    def test_data_table_becomes_description_parameter_and_log(self, make_reporter, service) -> None:
        _, script = make_reporter()
        test_case = add_item_case()
        rows = (("item", "qty"), ("apple", "2"))

        script.run_started().source_parsed(shopping_feature()).case_started(test_case)
        script.step(test_case, "When ", "I add the items", 8, argument=DataTableArgument(rows))
        script.case_finished(test_case).run_finished()

        step = service.find_item("When I add the items")
        table = format_data_table(rows)
        assert step.start["description"] == table
        assert step.start["parameters"] == [{"key": "DataTable", "value": table}]
        assert [log["message"] for log in step.logs] == [table]
        assert step.logs[0]["level"] == "INFO"

    def test_doc_string_and_definition_arguments(self, make_reporter, service) -> None:
        _, script = make_reporter()
        test_case = add_item_case()

        script.run_started().source_parsed(shopping_feature()).case_started(test_case)
        test_step = script.step_started(
            test_case,
            "When ",
            "I add 2 items",
            8,
            argument=DocStringArgument("apple\nbanana"),
            arguments=[StepArgument("int", "2")],
        )
        script.step_finished(test_case, test_step).case_finished(test_case).run_finished()

        step = service.find_item("When I add 2 items")
        assert step.start["description"] == '\n"""\napple\nbanana\n"""\n'
        assert step.start["parameters"] == [
            {"key": "int", "value": "2"},
            {"key": "DocString", "value": "apple\nbanana"},
        ]


class TestLogsAndAttachments:
    def test_written_text_goes_to_running_step(self, make_reporter, service) -> None:
        _, script = make_reporter()
        test_case = add_item_case()

        script.run_started().source_parsed(shopping_feature()).case_started(test_case)
        test_step = script.step_started(test_case, "Given ", "an empty cart", 5)
        script.write(test_case, "cart cleared")
        script.step_finished(test_case, test_step)
        script.write(test_case, "between steps")
        script.case_finished(test_case).run_finished()

        step = service.find_item("BACKGROUND: Given an empty cart")
        scenario = service.find_item("Scenario: Add an item")
        assert [log["message"] for log in step.logs] == ["cart cleared"]
        assert [log["message"] for log in scenario.logs] == ["between steps"]

    def test_embedded_png_is_sent_as_attachment(self, make_reporter, service) -> None:
        _, script = make_reporter()
        test_case = add_item_case()
        png = b"\x89PNG\r\n\x1a\n" + b"\x00" * 16

        script.run_started().source_parsed(shopping_feature()).case_started(test_case)
        script.embed(test_case, png, None)
        script.case_finished(test_case).run_finished()

        (log,) = [log for log in service.logs if log.attachment is not None]
        assert log.message == "image"
        assert log.attachment.mime_type == "image/png"
        assert log.attachment.data == png
        assert log.payload["file"] == {"name": "image"}
        assert log.item_id == service.find_item("Scenario: Add an item").id

    def test_output_outside_scenarios_goes_to_launch(self, make_reporter, service) -> None:
        _, script = make_reporter()
        script.run_started().write(None, "environment ready").run_finished()

        (log,) = service.logs
        assert log.message == "environment ready"
        assert log.item_id is None


class TestCurrentReporter:
    def test_latest_reporter_is_current(self, make_reporter) -> None:
        reporter, _ = make_reporter()

        assert ScenarioReporter.get_current() is reporter

    def test_current_scenario_is_cleared_after_finish(self, make_reporter, service) -> None:
        reporter, script = make_reporter()
        test_case = add_item_case()
        script.run_started().source_parsed(shopping_feature()).case_started(test_case)

        assert reporter.current_scenario().test_case is test_case

        script.case_finished(test_case)
        assert reporter.current_scenario() is None
        script.run_finished()


def test_in_memory_service_renders_tree(make_reporter, service: InMemoryReportingService) -> None:
    _, script = make_reporter(launch="Tree")
    script.run_started().source_parsed(shopping_feature()).add_item_scenario().run_finished()

    tree = service.render_tree().splitlines()
    assert tree[0].startswith("Tree [launch-")
    assert tree[1] == "  STORY Feature: Shopping cart (-)"
    assert tree[2] == "    STEP Scenario: Add an item (PASSED)"
    assert ItemStatus.PASSED.value in tree[3]
