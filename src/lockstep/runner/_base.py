"""Data structures for the scheduler.

This module contains:
- Status enums: TaskStatus, GroupStatus
- Definitions: TestCase
- Execution state: Task, TaskResult, GroupResult, RunnerState
- Outcomes of a single attempt: Success, ExpectedFailure, UnexpectedSuccess, Failure
- Run output: RunReport
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING, Awaitable, Callable, Union

if TYPE_CHECKING:
    from lockstep.config import RunConfig
    from lockstep.runner._execution import TaskConfig


# =============================================================================
# Statuses
# =============================================================================


class TaskStatus(StrEnum):
    TODO = "todo"
    RUNNING = "running"
    SUCCESS = "success"
    ERROR = "error"
    SKIPPED = "skipped"


class GroupStatus(StrEnum):
    """Rolled-up status of all attempts of a task group.

    TODO means the group is still being retried to decide whether it is flaky.
    """

    TODO = "todo"
    SUCCESS = "success"
    ERROR = "error"
    FLAKY = "flaky"
    SKIPPED = "skipped"


# =============================================================================
# Test case definitions
# =============================================================================

TestBody = Callable[["TaskConfig"], Union[Awaitable[None], None]]
SkipPredicate = Callable[["RunConfig"], Union[bool, str, None, Awaitable[Union[bool, str, None]]]]
ExpectedToFail = Union[bool, str, Callable[["RunConfig"], Union[bool, str]]]


@dataclass(frozen=True)
class TestCase:
    """A test definition supplied by the caller.

    Attributes:
        name: Unique name; also the task id and group for unrepeated runs.
        run: The test body. Coroutine functions run on the event loop,
            plain functions in a worker thread.
        resources: Names of mutually exclusive resources the body uses.
        skip: Called with the run configuration before the run; a truthy
            return value (optionally a reason string) skips the test.
        expected_to_fail: Marks the test as known broken, either directly or
            as a function of the run configuration.
        description: Free text for reports.
    """

    __test__ = False  # not a pytest class

    name: str
    run: TestBody
    resources: tuple[str, ...] = ()
    skip: SkipPredicate | None = None
    expected_to_fail: ExpectedToFail | None = None
    description: str | None = None


# =============================================================================
# Attempt outcomes
# =============================================================================


@dataclass(frozen=True)
class Success:
    pass


@dataclass(frozen=True)
class ExpectedFailure:
    """The body failed inside a section marked as expected to fail."""

    reason: str
    error: BaseException


@dataclass(frozen=True)
class UnexpectedSuccess:
    """Something expected to fail passed (whole test or marked section)."""

    reason: str


@dataclass(frozen=True)
class Failure:
    error: BaseException


Outcome = Union[Success, ExpectedFailure, UnexpectedSuccess, Failure]


# =============================================================================
# Execution state
# =============================================================================


@dataclass
class Task:
    """One schedulable attempt of a test case.

    `id`, `name`, `group` and `resources` never change after creation; the
    scheduler updates status, timing and outcome fields.
    """

    id: str
    name: str
    group: str
    test_case: TestCase
    resources: tuple[str, ...] = ()
    status: TaskStatus = TaskStatus.TODO
    start: float = 0.0
    duration: float | None = None
    error: BaseException | None = None
    error_text: str | None = None
    breadcrumb: str | None = None
    skip_reason: str | None = None
    expected_to_fail: bool | str | None = None
    outcome: Outcome | None = None


@dataclass
class TaskResult:
    """Append-only record of one finished attempt of a group."""

    status: TaskStatus
    duration: float | None
    error_text: str | None = None
    outcome: Outcome | None = None


@dataclass
class GroupResult:
    """Result of a task group (a test case repetition plus its flaky retries)."""

    id: str
    name: str
    group: str
    status: GroupStatus
    description: str | None = None
    skip_reason: str | None = None
    expected_to_fail: bool | str | None = None
    task_results: list[TaskResult] = field(default_factory=list)

    @property
    def last_outcome(self) -> Outcome | None:
        if not self.task_results:
            return None
        return self.task_results[-1].outcome


@dataclass
class RunnerState:
    """State of exactly one scheduling run.

    Only the scheduler loop mutates the maps and sets below; test bodies
    report back solely by finishing.
    """

    tasks: list[Task]
    result_by_group: dict[str, GroupResult]
    # Attempts started so far, per group
    flaky_counts: dict[str, int] = field(default_factory=dict)
    # Resources held by currently running tasks of this process
    locks: set[str] = field(default_factory=set)
    # Resources released during this run and not re-acquired since
    released_locks: set[str] = field(default_factory=set)
    # Set when a keep-alive refresh of held leases failed
    refresh_failed: bool = False
    lock_refresh_task: asyncio.Task | None = None
    # Test bodies that timed out and are still running in the background
    abandoned: set[asyncio.Future] = field(default_factory=set)


@dataclass
class RunReport:
    """Everything a report renderer needs about a finished run."""

    test_start: float
    test_end: float
    state: RunnerState
    version: str
    client_name: str | None = None

    @property
    def tasks(self) -> list[Task]:
        return self.state.tasks

    @property
    def results(self) -> list[GroupResult]:
        return list(self.state.result_by_group.values())
