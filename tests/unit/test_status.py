import logging

import pytest

from bddportal.constants import ItemStatus, RunnerStatus
from bddportal.core.retries import RetryRegistry, unique_id
from bddportal.core.status import evaluate_status, map_item_status


class TestMapItemStatus:
    @pytest.mark.parametrize(
        "status,expected",
        [
            (RunnerStatus.PASSED, ItemStatus.PASSED),
            (RunnerStatus.FAILED, ItemStatus.FAILED),
            (RunnerStatus.SKIPPED, ItemStatus.SKIPPED),
            (RunnerStatus.PENDING, ItemStatus.SKIPPED),
            (RunnerStatus.UNDEFINED, ItemStatus.SKIPPED),
            ("failed", ItemStatus.FAILED),
            (None, None),
        ],
    )
    def test_mapping(self, status, expected) -> None:
        assert map_item_status(status) == expected

    def test_unknown_status_is_skipped(self, caplog: pytest.LogCaptureFixture) -> None:
        with caplog.at_level(logging.ERROR):
            assert map_item_status("exploded") == ItemStatus.SKIPPED
        assert "exploded" in caplog.text


class TestEvaluateStatus:
    @pytest.mark.parametrize(
        "current,new,expected",
        [
            (None, ItemStatus.PASSED, ItemStatus.PASSED),
            (ItemStatus.PASSED, None, ItemStatus.PASSED),
            (ItemStatus.PASSED, ItemStatus.SKIPPED, ItemStatus.SKIPPED),
            (ItemStatus.FAILED, ItemStatus.PASSED, ItemStatus.FAILED),
            (ItemStatus.SKIPPED, ItemStatus.FAILED, ItemStatus.FAILED),
        ],
    )
    def test_most_severe_wins(self, current, new, expected) -> None:
        assert evaluate_status(current, new) == expected


class TestRetryRegistry:
    def test_second_attempt_is_a_retry(self) -> None:
        registry = RetryRegistry()
        uid = unique_id("features/shopping.feature", 7)

        assert uid == "features/shopping.feature:7"
        assert registry.record_attempt(uid) is False
        assert registry.record_attempt(uid) is True

    def test_marked_case_is_a_retry_on_first_attempt(self) -> None:
        registry = RetryRegistry()
        registry.mark("a.feature:3")

        assert registry.is_retry("a.feature:3")
        assert registry.record_attempt("a.feature:3") is True

    def test_clear_forgets_attempts(self) -> None:
        registry = RetryRegistry()
        registry.record_attempt("a.feature:3")
        registry.mark("b.feature:1")
        registry.clear()

        assert registry.record_attempt("a.feature:3") is False
        assert not registry.is_retry("b.feature:1")
