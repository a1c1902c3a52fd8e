"""Scheduling of test cases.

- run(): run test cases and return a RunReport
- sequential_run() / parallel_run(): the two engines
- run_task(): execution of a single attempt
"""

from lockstep.runner._base import (
    ExpectedFailure,
    Failure,
    GroupResult,
    GroupStatus,
    Outcome,
    RunnerState,
    RunReport,
    Success,
    Task,
    TaskResult,
    TaskStatus,
    TestCase,
    UnexpectedSuccess,
)
from lockstep.runner._execution import TaskConfig, classify_error, run_task
from lockstep.runner._parallel import parallel_run
from lockstep.runner._results import (
    Results,
    finish_attempt,
    get_results,
    result_count_string,
    start_attempt,
    update_results,
)
from lockstep.runner._run import run
from lockstep.runner._sequential import sequential_run
from lockstep.runner._tasks import test_cases_to_tasks

__all__ = [
    "ExpectedFailure",
    "Failure",
    "GroupResult",
    "GroupStatus",
    "Outcome",
    "Results",
    "RunReport",
    "RunnerState",
    "Success",
    "Task",
    "TaskConfig",
    "TaskResult",
    "TaskStatus",
    "TestCase",
    "UnexpectedSuccess",
    "classify_error",
    "finish_attempt",
    "get_results",
    "parallel_run",
    "result_count_string",
    "run",
    "run_task",
    "sequential_run",
    "start_attempt",
    "test_cases_to_tasks",
    "update_results",
]
