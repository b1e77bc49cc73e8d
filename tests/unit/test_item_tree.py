"""Tests for callback reporting through the item tree."""

from bddportal.constants import ItemStatus, LogLevel
from bddportal.core.item_tree import ItemTree, finish_item, send_log
from fakes.events import FEATURE_URI, add_item_case, shopping_feature


class TestItemTree:
    def test_retrieve_leaf_walks_levels(self) -> None:
        tree = ItemTree()
        feature, scenario, step = object(), object(), object()
        tree.add_feature("a.feature", feature)
        tree.add_scenario("a.feature", 3, scenario)
        tree.add_step("a.feature", 3, "a step", step)

        assert tree.retrieve_leaf("a.feature").handle is feature
        assert tree.retrieve_leaf("a.feature", 3).handle is scenario
        assert tree.retrieve_leaf("a.feature", 3, "a step").handle is step
        assert tree.retrieve_leaf("a.feature", 3, "a step").parent is scenario
        assert tree.retrieve_leaf("a.feature", 4) is None
        assert tree.retrieve_leaf("b.feature", 3, "a step") is None

    def test_scenario_needs_its_feature(self) -> None:
        tree = ItemTree()

        assert tree.add_scenario("missing.feature", 3, object()) is None
        assert tree.add_step("missing.feature", 3, "a step", object()) is None


class TestCallbackReporting:
    def test_step_status_can_be_changed_after_it_finished(self, make_reporter, service) -> None:
        reporter, script = make_reporter(callback_reporting=True)
        test_case = add_item_case()
        script.run_started().source_parsed(shopping_feature()).case_started(test_case)
        script.step(test_case, "Given ", "an empty cart", 5)

        leaf = reporter.item_tree.retrieve_leaf(FEATURE_URI, 7, "an empty cart")
        finish_item(reporter.launch, leaf, ItemStatus.FAILED, "cart service timed out")
        send_log(reporter.launch, leaf, LogLevel.ERROR, "late failure")

        script.case_finished(test_case).run_finished()

        step = service.find_item("BACKGROUND: Given an empty cart")
        assert step.finish_count == 2
        assert step.status == "FAILED"
        assert step.finish["description"] == "cart service timed out"
        assert [log["message"] for log in step.logs] == ["late failure"]

    def test_scenario_and_feature_leaves_are_registered(self, make_reporter) -> None:
        reporter, script = make_reporter(callback_reporting=True)
        test_case = add_item_case()
        script.run_started().source_parsed(shopping_feature()).case_started(test_case)

        feature = reporter.item_tree.retrieve_leaf(FEATURE_URI)
        scenario = reporter.item_tree.retrieve_leaf(FEATURE_URI, 7)
        assert feature.parent is reporter.launch.handle
        assert scenario.parent is feature.handle

        script.case_finished(test_case)
        assert reporter.item_tree.retrieve_leaf(FEATURE_URI, 7) is None
        assert reporter.item_tree.retrieve_leaf(FEATURE_URI) is not None

        script.run_finished()
        assert reporter.item_tree.retrieve_leaf(FEATURE_URI) is None

    def test_tree_is_empty_without_callback_reporting(self, make_reporter) -> None:
        reporter, script = make_reporter()
        script.run_started().source_parsed(shopping_feature()).add_item_scenario()

        assert reporter.item_tree.children == {}
        script.run_finished()
