"""Expansion of test cases into schedulable tasks."""

from __future__ import annotations

import asyncio
import inspect
import logging

from lockstep.config import RunConfig
from lockstep.locking._local import validate_resources
from lockstep.runner._base import (
    GroupResult,
    GroupStatus,
    Task,
    TaskStatus,
    TestCase,
)

logger = logging.getLogger(__name__)


async def _skip_reason(config: RunConfig, test_case: TestCase) -> str | bool | None:
    if test_case.skip is None:
        return None
    res = test_case.skip(config)
    if inspect.isawaitable(res):
        res = await res
    return res


def _expected_to_fail(config: RunConfig, test_case: TestCase) -> bool | str | None:
    if config.expect_nothing or test_case.expected_to_fail is None:
        return None
    if callable(test_case.expected_to_fail):
        return test_case.expected_to_fail(config) or None
    return test_case.expected_to_fail or None


def init_group_result(result_by_group: dict[str, GroupResult], task: Task) -> None:
    result_by_group[task.group] = GroupResult(
        id=task.id,
        name=task.name,
        group=task.group,
        status=GroupStatus(task.status.value),
        description=task.test_case.description,
        skip_reason=task.skip_reason,
        expected_to_fail=task.expected_to_fail,
    )


async def test_cases_to_tasks(
    config: RunConfig,
    test_cases: list[TestCase],
    result_by_group: dict[str, GroupResult],
) -> list[Task]:
    """Create the initial task list of a run.

    With `config.repeat > 1` every test case becomes `repeat` tasks, each in
    a group of its own (`name_0`, `name_1`, ...). Tasks are ordered by
    repetition first, so all test cases run once before any runs twice.
    Skipped test cases are never repeated.

    Skip predicates are evaluated concurrently. A group result is registered
    in `result_by_group` for every created task.

    Raises:
        ValueError: If two test cases share a name.
        InvalidResourceError: If locking is enabled and a resource name is invalid.
    """
    names = [tc.name for tc in test_cases]
    duplicates = sorted({name for name in names if names.count(name) > 1})
    if duplicates:
        raise ValueError(f"Duplicate test case names: {', '.join(duplicates)}")

    repeat = config.repeat
    slots: list[Task | None] = [None] * (len(test_cases) * repeat)

    skip_reasons = await asyncio.gather(
        *(_skip_reason(config, test_case) for test_case in test_cases)
    )

    for position, (test_case, skip_reason) in enumerate(zip(test_cases, skip_reasons)):
        task = Task(
            id=test_case.name,
            name=test_case.name,
            group=test_case.name,
            test_case=test_case,
            resources=tuple(test_case.resources),
        )

        if skip_reason:
            task.status = TaskStatus.SKIPPED
            if isinstance(skip_reason, str):
                task.skip_reason = skip_reason

        task.expected_to_fail = _expected_to_fail(config, test_case)

        if not config.no_locking:
            validate_resources(task)

        if skip_reason or repeat == 1:
            slots[position] = task
            init_group_result(result_by_group, task)
            continue

        for run_id in range(repeat):
            repeat_task = Task(
                id=f"{test_case.name}_{run_id}",
                name=f"{test_case.name}[{run_id}]",
                group=f"{test_case.name}_{run_id}",
                test_case=test_case,
                resources=task.resources,
                status=task.status,
                skip_reason=task.skip_reason,
                expected_to_fail=task.expected_to_fail,
            )
            slots[run_id * len(test_cases) + position] = repeat_task
            init_group_result(result_by_group, repeat_task)

    tasks = [task for task in slots if task is not None]
    logger.debug(f"Created {len(tasks)} tasks from {len(test_cases)} test cases")
    return tasks


# Not a test function
test_cases_to_tasks.__test__ = False  # type: ignore[attr-defined]
