"""Tests for result rollup and summaries."""

import pytest

from lockstep.config import RunConfig
from lockstep.runner import (
    ExpectedFailure,
    GroupResult,
    GroupStatus,
    RunnerState,
    Task,
    TaskResult,
    TaskStatus,
    TestCase,
    UnexpectedSuccess,
    get_results,
    result_count_string,
    update_results,
)


def make_state(name: str = "t") -> tuple[RunnerState, Task]:
    task = Task(
        id=name, name=name, group=name, test_case=TestCase(name=name, run=lambda c: None)
    )
    result = GroupResult(id=name, name=name, group=name, status=GroupStatus.TODO)
    return RunnerState(tasks=[task], result_by_group={name: result}), task


def group(name: str, status: GroupStatus, outcome=None, expected_to_fail=None) -> GroupResult:
    result = GroupResult(
        id=name, name=name, group=name, status=status, expected_to_fail=expected_to_fail
    )
    if outcome is not None:
        result.task_results.append(
            TaskResult(status=TaskStatus.SUCCESS, duration=0.1, outcome=outcome)
        )
    return result


class TestUpdateResults:
    @pytest.mark.parametrize(
        "runs, status, expected",
        [
            (1, TaskStatus.SUCCESS, GroupStatus.SUCCESS),
            (1, TaskStatus.ERROR, GroupStatus.TODO),
            (2, TaskStatus.ERROR, GroupStatus.TODO),
            (2, TaskStatus.SUCCESS, GroupStatus.FLAKY),
            (3, TaskStatus.SUCCESS, GroupStatus.FLAKY),
            (3, TaskStatus.ERROR, GroupStatus.ERROR),
        ],
    )
    def test_rollup(self, runs, status, expected):
        config = RunConfig(repeat_flaky=3)
        state, task = make_state()
        state.flaky_counts["t"] = runs
        task.status = status

        result = update_results(config, state, task)
        assert result.status == expected
        assert len(result.task_results) == 1

    def test_without_flaky_detection(self):
        state, task = make_state()
        state.flaky_counts["t"] = 1
        task.status = TaskStatus.ERROR
        assert update_results(RunConfig(), state, task).status == GroupStatus.ERROR

    def test_running_is_not_recorded(self):
        state, task = make_state()
        task.status = TaskStatus.RUNNING
        result = update_results(RunConfig(), state, task)
        assert result.status == GroupStatus.TODO
        assert result.task_results == []


class TestSummary:
    def test_buckets(self):
        results = [
            group("ok", GroupStatus.SUCCESS),
            group("bad", GroupStatus.ERROR),
            group("flaky", GroupStatus.FLAKY),
            group("skipped", GroupStatus.SKIPPED),
            group("known", GroupStatus.ERROR, expected_to_fail="BUG-1"),
            group(
                "section",
                GroupStatus.SUCCESS,
                outcome=ExpectedFailure(reason="BUG-2", error=RuntimeError()),
                expected_to_fail="BUG-2",
            ),
            group("fixed", GroupStatus.SUCCESS, outcome=UnexpectedSuccess(reason="BUG-3")),
        ]
        res = get_results(RunConfig(), results)

        assert [r.id for r in res.success] == ["ok"]
        assert [r.id for r in res.errored] == ["bad"]
        assert [r.id for r in res.flaky] == ["flaky"]
        assert [r.id for r in res.skipped] == ["skipped"]
        assert [r.id for r in res.expected_to_fail] == ["known", "section"]
        assert [r.id for r in res.expected_to_fail_but_passed] == ["fixed"]
        assert len(res.all) == 7

        assert result_count_string(RunConfig(), results) == (
            "1 tests passed, 1 failed, 1 flaky, 1 skipped, 2 failed as expected, "
            "1 were expected to fail but passed"
        )

    def test_expect_nothing(self):
        results = [
            group("known", GroupStatus.ERROR, expected_to_fail="BUG-1"),
            group("fixed", GroupStatus.SUCCESS, outcome=UnexpectedSuccess(reason="BUG-3")),
        ]
        config = RunConfig(expect_nothing=True)
        assert result_count_string(config, results) == "1 tests passed, 1 failed"

    def test_minimal_summary(self):
        assert result_count_string(RunConfig(), []) == "0 tests passed, 0 failed"
