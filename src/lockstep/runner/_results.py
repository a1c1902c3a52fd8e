"""Attempt bookkeeping and result rollup.

Everything in here runs in the scheduler loop; test bodies never touch the
run state.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field

from lockstep.config import RunConfig
from lockstep.locking._local import LocalLockManager
from lockstep.runner._base import (
    ExpectedFailure,
    GroupResult,
    GroupStatus,
    RunnerState,
    Task,
    TaskResult,
    TaskStatus,
    UnexpectedSuccess,
)

logger = logging.getLogger(__name__)


# =============================================================================
# Flaky detection
# =============================================================================


def should_retry(config: RunConfig, state: RunnerState, task: Task) -> bool:
    """Whether a finished attempt gets another attempt of the same group."""
    runs = state.flaky_counts.get(task.group, 1)
    return (
        task.status == TaskStatus.ERROR
        and runs < config.repeat_flaky
        and not task.expected_to_fail
    )


def update_results(config: RunConfig, state: RunnerState, task: Task) -> GroupResult:
    """Roll the latest attempt of a group up into its group result.

    - First attempt succeeded: success
    - Attempt errored and another one is scheduled: todo (flakiness not decided yet)
    - Attempt succeeded after earlier errors: flaky
    - Otherwise: error
    """
    result = state.result_by_group[task.group]

    if task.status in (TaskStatus.SUCCESS, TaskStatus.ERROR):
        runs = state.flaky_counts.get(task.group, 1)
        if runs == 1 and task.status == TaskStatus.SUCCESS:
            result.status = GroupStatus.SUCCESS
        elif should_retry(config, state, task):
            result.status = GroupStatus.TODO
        elif task.status == TaskStatus.SUCCESS:
            result.status = GroupStatus.FLAKY
        else:
            result.status = GroupStatus.ERROR
    elif task.status == TaskStatus.SKIPPED:
        result.status = GroupStatus.SKIPPED
    else:
        result.status = GroupStatus.TODO

    if task.status in (TaskStatus.SUCCESS, TaskStatus.ERROR, TaskStatus.SKIPPED):
        result.task_results.append(
            TaskResult(
                status=task.status,
                duration=task.duration,
                error_text=task.error_text,
                outcome=task.outcome,
            )
        )
        if task.expected_to_fail and not result.expected_to_fail:
            result.expected_to_fail = task.expected_to_fail
    return result


def start_attempt(state: RunnerState, task: Task) -> None:
    """Count the attempt for flaky detection and mark the task running."""
    state.flaky_counts[task.group] = state.flaky_counts.get(task.group, 0) + 1
    task.status = TaskStatus.RUNNING
    task.start = time.perf_counter()


async def finish_attempt(
    config: RunConfig,
    state: RunnerState,
    lock_manager: LocalLockManager,
    task: Task,
) -> Task | None:
    """Release the resources of a finished attempt and record its result.

    Returns:
        The retry appended to `state.tasks`, if flaky detection scheduled one.
    """
    await lock_manager.release(task)

    retry = None
    if should_retry(config, state, task):
        attempt = state.flaky_counts[task.group]
        logger.info(
            f"[runner] Retrying {task.group} for flaky detection "
            f"(attempt {attempt + 1} of {config.repeat_flaky})"
        )
        retry = Task(
            id=f"{task.group}_{attempt}",
            name=f"{task.group}[{attempt}]",
            group=task.group,
            test_case=task.test_case,
            resources=task.resources,
            expected_to_fail=task.expected_to_fail,
        )
        state.tasks.append(retry)

    update_results(config, state, task)
    return retry


# =============================================================================
# Summary
# =============================================================================


@dataclass
class Results:
    """Group results bucketed for reporting."""

    success: list[GroupResult] = field(default_factory=list)
    errored: list[GroupResult] = field(default_factory=list)
    flaky: list[GroupResult] = field(default_factory=list)
    skipped: list[GroupResult] = field(default_factory=list)
    expected_to_fail: list[GroupResult] = field(default_factory=list)
    expected_to_fail_but_passed: list[GroupResult] = field(default_factory=list)
    todo: list[GroupResult] = field(default_factory=list)
    all: list[GroupResult] = field(default_factory=list)


def get_results(config: RunConfig, results: list[GroupResult]) -> Results:
    """Sort group results into the buckets shown in summaries.

    With `config.expect_nothing` all expected-to-fail markers are ignored:
    results count as plain successes or failures.
    """
    expect = not config.expect_nothing
    res = Results(all=list(results))
    for result in results:
        outcome = result.last_outcome
        if result.status == GroupStatus.SUCCESS:
            if expect and isinstance(outcome, ExpectedFailure):
                res.expected_to_fail.append(result)
            elif expect and (
                isinstance(outcome, UnexpectedSuccess) or result.expected_to_fail
            ):
                res.expected_to_fail_but_passed.append(result)
            else:
                res.success.append(result)
        elif result.status == GroupStatus.ERROR:
            if expect and result.expected_to_fail:
                res.expected_to_fail.append(result)
            else:
                res.errored.append(result)
        elif result.status == GroupStatus.FLAKY:
            res.flaky.append(result)
        elif result.status == GroupStatus.SKIPPED:
            res.skipped.append(result)
        else:
            res.todo.append(result)
    return res


def result_count_string(config: RunConfig, results: list[GroupResult]) -> str:
    """E.g. `5 tests passed, 1 failed, 1 flaky, 2 skipped`."""
    res = get_results(config, results)
    summary = f"{len(res.success)} tests passed, {len(res.errored)} failed"
    if res.flaky:
        summary += f", {len(res.flaky)} flaky"
    if res.skipped:
        summary += f", {len(res.skipped)} skipped"
    if res.expected_to_fail:
        summary += f", {len(res.expected_to_fail)} failed as expected"
    if res.expected_to_fail_but_passed:
        summary += (
            f", {len(res.expected_to_fail_but_passed)} were expected to fail but passed"
        )
    return summary
