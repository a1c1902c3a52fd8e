"""Execution of a single task attempt."""

from __future__ import annotations

import asyncio
import inspect
import logging
import sys
import time
import traceback
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Union

from lockstep.config import RunConfig
from lockstep.exceptions import (
    ExpectedToFailError,
    ExpectedToSucceedError,
    TaskTimeoutError,
)
from lockstep.runner._base import (
    ExpectedFailure,
    Failure,
    Outcome,
    RunnerState,
    Success,
    Task,
    TaskStatus,
    TestCase,
    UnexpectedSuccess,
)

logger = logging.getLogger(__name__)

TeardownHook = Callable[["TaskConfig"], Union[Awaitable[None], None]]


@dataclass
class TaskConfig:
    """What a test body gets to see of its run.

    Run-wide settings are read through `config`; everything else is local to
    one attempt.

    Attributes:
        config: Run configuration.
        test_case: The test case being run.
        task_name: Name of this attempt, e.g. `login[2]` for a repetition.
        task_group: Group the attempt reports to.
        resources: Resources held while the body runs.
        start: `time.perf_counter()` at the start of the attempt.
        breadcrumb: Free text the body may set to describe how far it got;
            shown with the error if the attempt fails.
        teardown_hooks: Registered with `on_teardown()`; always run after
            the body, concurrently.
    """

    config: RunConfig
    test_case: TestCase
    task_name: str
    task_group: str
    resources: tuple[str, ...] = ()
    start: float = 0.0
    breadcrumb: str | None = None
    teardown_hooks: list[TeardownHook] = field(default_factory=list)

    @property
    def test_name(self) -> str:
        return self.test_case.name

    @property
    def params(self) -> dict[str, Any]:
        return self.config.params

    @property
    def expect_nothing(self) -> bool:
        return self.config.expect_nothing

    def on_teardown(self, hook: TeardownHook) -> None:
        """Register `hook` to run once the body finished (or timed out)."""
        self.teardown_hooks.append(hook)


def format_error(error: BaseException) -> str:
    return "".join(traceback.format_exception(error)).rstrip()


def classify_error(error: BaseException) -> Outcome:
    """Map an error raised by a test body to the outcome of the attempt."""
    if isinstance(error, ExpectedToFailError):
        cause = error.__cause__ if error.__cause__ is not None else error
        return ExpectedFailure(reason=error.reason, error=cause)
    if isinstance(error, ExpectedToSucceedError):
        return UnexpectedSuccess(reason=error.reason)
    return Failure(error=error)


def _describe_expected(expected_to_fail: bool | str | None) -> str:
    if isinstance(expected_to_fail, str):
        return expected_to_fail
    return "expected_to_fail was set"


async def _run_body(task_config: TaskConfig) -> None:
    run = task_config.test_case.run
    if inspect.iscoroutinefunction(run):
        await run(task_config)
        return
    res = await asyncio.to_thread(run, task_config)
    if inspect.isawaitable(res):
        await res


def _forget(state: RunnerState | None, body: asyncio.Future) -> None:
    """Keep a timed out body referenced until it settles."""

    def _settled(fut: asyncio.Future) -> None:
        if state is not None:
            state.abandoned.discard(fut)
        if not fut.cancelled() and fut.exception() is not None:
            logger.debug(f"Abandoned test body finished with {fut.exception()!r}")

    if state is not None:
        state.abandoned.add(body)
    body.add_done_callback(_settled)


async def _call_hook(hook: TeardownHook, task_config: TaskConfig) -> None:
    if inspect.iscoroutinefunction(hook):
        await hook(task_config)
        return
    res = await asyncio.to_thread(hook, task_config)
    if inspect.isawaitable(res):
        await res


async def run_teardown(task_config: TaskConfig, task: Task) -> None:
    """Run all teardown hooks of an attempt concurrently.

    Failures and timeouts are logged and never raised.
    """
    hooks = list(task_config.teardown_hooks)
    if not hooks:
        return
    logger.debug(f"[runner] Executing {len(hooks)} teardown hooks for {task.id}")
    try:
        await asyncio.wait_for(
            asyncio.gather(*(_call_hook(hook, task_config) for hook in hooks)),
            timeout=task_config.config.teardown_timeout,
        )
    except asyncio.TimeoutError:
        logger.error(
            f"INTERNAL ERROR: failed to run teardown for #{task.id} ({task.name}): "
            f"teardown took longer than {task_config.config.teardown_timeout:g}s"
        )
    except Exception as e:
        logger.error(
            f"INTERNAL ERROR: failed to run teardown for #{task.id} ({task.name}): {e!r}",
            exc_info=True,
        )


async def run_task(
    config: RunConfig, task: Task, state: RunnerState | None = None
) -> Task:
    """Run one attempt of a task and record its outcome on the task.

    The body is raced against `config.timeout`. On timeout the body is not
    cancelled; it is left running in the background (tracked in
    `state.abandoned`) and the attempt fails with a TaskTimeoutError.

    Errors raised by the body never propagate. With `config.fail_fast` the
    process exits with status 3 after the teardown of a failed attempt.

    Returns:
        The updated task.
    """
    task_config = TaskConfig(
        config=config,
        test_case=task.test_case,
        task_name=task.name,
        task_group=task.group,
        resources=task.resources,
        start=task.start or time.perf_counter(),
    )
    if not task.start:
        task.start = task_config.start

    error: BaseException | None = None
    try:
        body = asyncio.ensure_future(_run_body(task_config))
        done, _ = await asyncio.wait({body}, timeout=config.timeout)
        if body in done:
            body.result()
        else:
            _forget(state, body)
            raise TaskTimeoutError(task.test_case.name, config.timeout)
    except asyncio.CancelledError as e:
        current = asyncio.current_task()
        if current is not None and current.cancelling():
            raise
        # The body cancelled itself, the attempt is still ours to finish
        error = e
    except Exception as e:
        error = e

    task.duration = time.perf_counter() - task.start

    if error is None:
        if task.expected_to_fail and not config.expect_nothing:
            reason = _describe_expected(task.expected_to_fail)
            task.outcome = UnexpectedSuccess(reason=reason)
            logger.warning(
                f"PASSED test case {task.name}, but expected_to_fail was set ({reason})"
            )
        else:
            task.outcome = Success()
        task.status = TaskStatus.SUCCESS
        logger.debug(f"[task] Marked {task.id} as success")
    else:
        task.error = error
        task.error_text = format_error(error)
        task.breadcrumb = task_config.breadcrumb
        task.outcome = classify_error(error)
        breadcrumb = f" (breadcrumb: {task.breadcrumb})" if task.breadcrumb else ""

        outcome = task.outcome
        if isinstance(outcome, ExpectedFailure):
            task.status = TaskStatus.SUCCESS
            task.expected_to_fail = outcome.reason
            logger.info(f"Test case {task.name} failed as expected ({outcome.reason})")
        elif isinstance(outcome, UnexpectedSuccess):
            task.status = TaskStatus.SUCCESS
            logger.warning(f"Test case {task.name}: {error}")
        else:
            task.status = TaskStatus.ERROR
            if task.expected_to_fail:
                logger.info(
                    f"Test case {task.name} failed as expected "
                    f"({_describe_expected(task.expected_to_fail)}): {error}"
                )
            else:
                logger.error(
                    f"FAILED test case {task.name}{breadcrumb}",
                    exc_info=error,
                )

    await run_teardown(task_config, task)

    if config.fail_fast and task.status == TaskStatus.ERROR:
        logger.error(f"Exiting after failure of {task.name} (fail_fast)")
        sys.exit(3)

    return task
